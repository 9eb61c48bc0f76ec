#!/usr/bin/env python3
"""
Tests for build graph resolution over Kbuild .cmd records.
"""

import unittest
import tempfile
import shutil
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from livepatch_build.errors import ResolutionError
from livepatch_build.build.build_graph import (BuildGraphResolver, DependencyIndex,
                                              cmd_file_target, is_vmlinux_terminal)


class KbuildTree:
    """Writes .cmd records into a scratch kernel tree."""

    def __init__(self, root: Path):
        self.root = root

    def record(self, target: str, command: str):
        target_path = self.root / target
        target_path.parent.mkdir(parents=True, exist_ok=True)
        target_path.write_bytes(b"")
        cmd_file = target_path.parent / f".{target_path.name}.cmd"
        cmd_file.write_text(f"savedcmd_{target} := {command}\n\nsource_{target} := x.c\n")


class TestHelpers(unittest.TestCase):

    def test_cmd_file_target(self):
        root = Path("/src")
        self.assertEqual(cmd_file_target(root / "fs/ext4/.inode.o.cmd", root), "fs/ext4/inode.o")
        self.assertEqual(cmd_file_target(root / ".vmlinux.o.cmd", root), "vmlinux.o")
        self.assertIsNone(cmd_file_target(root / "fs/Makefile", root))

    def test_vmlinux_terminals(self):
        self.assertTrue(is_vmlinux_terminal("fs/built-in.a"))
        self.assertTrue(is_vmlinux_terminal("lib/lib.a"))
        self.assertTrue(is_vmlinux_terminal("arch/x86/kernel/head_64.o"))
        self.assertFalse(is_vmlinux_terminal("fs/ext4/inode.o"))


class TestBuildGraphResolver(unittest.TestCase):
    """Test cases for BuildGraphResolver."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.root = Path(self.test_dir) / "linux"
        self.root.mkdir()
        self.tree = KbuildTree(self.root)
        self.vmlinux = self.root / "vmlinux"
        self.vmlinux.write_bytes(b"")

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def resolver(self, oot_module=None):
        return BuildGraphResolver(str(self.root), str(self.vmlinux), oot_module)

    def test_object_in_vmlinux(self):
        self.tree.record("fs/ext4/built-in.a",
                         "rm -f fs/ext4/built-in.a; ar cDPrST fs/ext4/built-in.a fs/ext4/inode.o fs/ext4/super.o")

        owner = self.resolver().resolve_owner("fs/ext4/inode.o")

        self.assertTrue(owner.is_vmlinux)
        self.assertEqual(owner.name, "vmlinux")

    def test_object_in_module(self):
        self.tree.record("drivers/net/dummy/dummy.o",
                         "ld -m elf_x86_64 -r -o drivers/net/dummy/dummy.o drivers/net/dummy/main.o drivers/net/dummy/ops.o")
        self.tree.record("drivers/net/dummy/dummy.ko",
                         "ld -r -m elf_x86_64 -o drivers/net/dummy/dummy.ko drivers/net/dummy/dummy.o drivers/net/dummy/dummy.mod.o")

        owner = self.resolver().resolve_owner("drivers/net/dummy/ops.o")

        self.assertFalse(owner.is_vmlinux)
        self.assertEqual(owner.name, "dummy")
        self.assertEqual(owner.path, str(self.root.absolute() / "drivers/net/dummy/dummy.ko"))

    def test_archive_members_relative_to_directory(self):
        """Bare member names are taken relative to the archive's directory."""
        self.tree.record("mm/built-in.a", "rm -f mm/built-in.a; ar cDPrST mm/built-in.a slab.o")

        self.assertTrue(self.resolver().resolve_owner("mm/slab.o").is_vmlinux)

    def test_response_file(self):
        (self.root / "drivers/foo").mkdir(parents=True)
        (self.root / "drivers/foo/foo.mod").write_text("drivers/foo/a.o drivers/foo/b.o\n")
        self.tree.record("drivers/foo/foo.o", "ld -r -o drivers/foo/foo.o @drivers/foo/foo.mod")
        self.tree.record("drivers/foo/foo.ko", "ld -r -o drivers/foo/foo.ko drivers/foo/foo.o")

        self.assertEqual(self.resolver().resolve_owner("drivers/foo/b.o").name, "foo")

    def test_two_parents_is_ambiguous(self):
        """An object linked into two parents resolves but is flagged."""
        self.tree.record("lib/crc/crc-a.o", "ld -r -o lib/crc/crc-a.o lib/crc/table.o lib/crc/a.o")
        self.tree.record("lib/crc/crc-b.o", "ld -r -o lib/crc/crc-b.o lib/crc/table.o lib/crc/b.o")
        self.tree.record("lib/crc/built-in.a", "ar cDPrST lib/crc/built-in.a lib/crc/crc-a.o lib/crc/crc-b.o")
        resolver = self.resolver()

        owner = resolver.resolve_owner("lib/crc/table.o")

        self.assertTrue(owner.is_vmlinux)
        self.assertTrue(resolver.is_ambiguous("lib/crc/table.o"))
        self.assertEqual(resolver.ambiguities["lib/crc/table.o"], ["lib/crc/crc-a.o", "lib/crc/crc-b.o"])
        self.assertFalse(resolver.is_ambiguous("lib/crc/a.o"))

    def test_broad_search(self):
        """A parent recorded in another directory is found through the tree index."""
        self.tree.record("arch/x86/kernel/built-in.a",
                         "ar cDPrST arch/x86/kernel/built-in.a arch/x86/kernel/cpu/amd.o arch/x86/kernel/cpu/intel.o")
        resolver = self.resolver()

        self.assertEqual(resolver.local_parents("arch/x86/kernel/cpu/amd.o"), [])
        self.assertTrue(resolver.resolve_owner("arch/x86/kernel/cpu/amd.o").is_vmlinux)
        self.assertEqual(resolver.last_broad_dir, "arch/x86/kernel")

        self.assertEqual(resolver.broad_parents("arch/x86/kernel/cpu/intel.o"), ["arch/x86/kernel/built-in.a"])

    def test_unresolvable_object(self):
        (self.root / "kernel").mkdir()

        with self.assertRaises(ResolutionError) as context:
            self.resolver().resolve_owner("kernel/orphan.o")
        self.assertIn("invalid ancestor kernel/orphan.o", str(context.exception))

    def test_dependency_cycle(self):
        self.tree.record("kernel/a.o", "ld -r -o kernel/a.o kernel/b.o")
        self.tree.record("kernel/b.o", "ld -r -o kernel/b.o kernel/a.o")

        with self.assertRaises(ResolutionError) as context:
            self.resolver().resolve_owner("kernel/a.o")
        self.assertIn("cycle", str(context.exception))

    def test_out_of_tree_module(self):
        module = Path(self.test_dir) / "ext" / "ext.ko"
        module.parent.mkdir()
        module.write_bytes(b"")

        owner = self.resolver(str(module)).resolve_owner("ext/core.o")

        self.assertEqual(owner.name, "ext")
        self.assertFalse(owner.is_vmlinux)

    def test_resolution_memoized(self):
        self.tree.record("fs/built-in.a", "ar cDPrST fs/built-in.a fs/open.o")
        resolver = self.resolver()
        first = resolver.resolve_owner("fs/open.o")

        shutil.rmtree(self.root / "fs")

        self.assertIs(resolver.resolve_owner("fs/open.o"), first)


class TestDependencyIndex(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.root = Path(self.test_dir)
        self.tree = KbuildTree(self.root)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_flags_and_target_ignored(self):
        self.tree.record("net/core/built-in.a",
                         "rm -f net/core/built-in.a; ar cDPrST net/core/built-in.a net/core/sock.o")
        index = DependencyIndex(str(self.root))
        index.add_tree()

        self.assertEqual(index.parents("net/core/sock.o"), ["net/core/built-in.a"])
        self.assertEqual(index.parents("net/core/built-in.a"), [])
        self.assertEqual(index.parents("net/core/unknown.o"), [])


if __name__ == '__main__':
    unittest.main()
