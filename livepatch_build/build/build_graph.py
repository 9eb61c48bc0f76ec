#!/usr/bin/env python3
"""
Build graph resolution.

Kbuild records the command that produced every target in a ".<target>.cmd"
file next to it. Each recorded command lists the objects that were linked or
archived into the target, which gives the edges "object -> parent". Walking
those edges upward from a compiled object ends either at a module (.ko) or
at one of the aggregates that only ever end up in vmlinux.
"""

import os
import re
import logging
import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import networkx as nx

from livepatch_build.errors import ResolutionError
from .changed_object import KernelBinary

logger = logging.getLogger(__name__)

AGGREGATE_NAMES = {"built-in.o", "built-in.a"}

# Objects and archives linked straight into vmlinux
VMLINUX_TERMINALS = [
    "vmlinux.o",
    "vmlinux.a",
    "lib/lib.a",
    "arch/x86/lib/lib.a",
    "arch/x86/kernel/head*.o",
    "arch/x86/kernel/ebda.o",
    "arch/x86/kernel/platform-quirks.o",
]

PARENT_SUFFIXES = (".o", ".a", ".ko")

COMMAND_LINE = re.compile(r'^(?:saved)?cmd_\S+\s*:=\s*(.*)$')
TOKEN = re.compile(r"""[^\s;'"|<>(){}]+""")


def is_module(path: str) -> bool:
    return path.endswith(".ko")


def is_vmlinux_terminal(path: str) -> bool:
    if os.path.basename(path) in AGGREGATE_NAMES:
        return True
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in VMLINUX_TERMINALS)


def cmd_file_target(cmd_file: Path, source_dir: Path) -> Optional[str]:
    """".foo.o.cmd" in drivers/x -> "drivers/x/foo.o", relative to the tree."""
    name = cmd_file.name
    if not (name.startswith('.') and name.endswith('.cmd')):
        return None
    target = name[1:-len('.cmd')]
    relative_dir = os.path.relpath(cmd_file.parent, source_dir)
    if relative_dir == '.':
        return target
    return os.path.normpath(os.path.join(relative_dir, target))


class DependencyIndex:
    """
    Object -> parent edges parsed from the .cmd files of a set of directories.
    """

    def __init__(self, source_dir: str):
        self.source_dir = Path(source_dir)
        self.graph = nx.DiGraph()
        self.indexed_dirs: Set[str] = set()

    def add_directory(self, relative_dir: str):
        """Parse every .cmd file directly inside relative_dir."""
        relative_dir = os.path.normpath(relative_dir)
        if relative_dir in self.indexed_dirs:
            return
        self.indexed_dirs.add(relative_dir)

        directory = self.source_dir / relative_dir
        if not directory.is_dir():
            return
        for cmd_file in sorted(directory.glob('.*.cmd')):
            self._add_cmd_file(cmd_file)

    def add_tree(self):
        """Parse every .cmd file in the tree."""
        for dirpath, dirnames, filenames in os.walk(self.source_dir):
            dirnames[:] = sorted(d for d in dirnames if d != '.git')
            relative_dir = os.path.normpath(os.path.relpath(dirpath, self.source_dir))
            if relative_dir in self.indexed_dirs:
                continue
            self.indexed_dirs.add(relative_dir)
            for filename in sorted(filenames):
                if filename.startswith('.') and filename.endswith('.cmd'):
                    self._add_cmd_file(Path(dirpath) / filename)
        logger.debug(f"Indexed {self.graph.number_of_edges()} build edges in {self.source_dir}")

    def parents(self, object_path: str) -> List[str]:
        """Targets whose recorded command lists object_path as an input."""
        object_path = os.path.normpath(object_path)
        if object_path not in self.graph:
            return []
        return sorted(self.graph.successors(object_path))

    def _add_cmd_file(self, cmd_file: Path):
        target = cmd_file_target(cmd_file, self.source_dir)
        if target is None or not target.endswith(PARENT_SUFFIXES):
            return

        try:
            text = cmd_file.read_text(errors='replace')
        except (IOError, OSError) as e:
            logger.warning(f"Could not read {cmd_file}: {e}")
            return

        target_dir = os.path.dirname(target)
        for line in text.splitlines():
            match = COMMAND_LINE.match(line)
            if not match:
                continue
            for input_object in self._command_inputs(match.group(1), target_dir):
                if input_object != target:
                    self.graph.add_edge(input_object, target)

    def _command_inputs(self, command: str, target_dir: str) -> Iterable[str]:
        for token in TOKEN.findall(command):
            if token.startswith('@'):
                yield from self._response_file_inputs(token[1:], target_dir)
            elif token.endswith(PARENT_SUFFIXES) and not token.startswith('-'):
                yield self._normalize(token, target_dir)

    def _response_file_inputs(self, response_file: str, target_dir: str) -> Iterable[str]:
        """Objects listed in a Kbuild "@foo.mod" response file."""
        path = self.source_dir / response_file
        if not path.is_file():
            return
        mod_dir = os.path.dirname(os.path.normpath(response_file))
        for token in path.read_text(errors='replace').split():
            if token.endswith(PARENT_SUFFIXES):
                yield self._normalize(token, mod_dir or target_dir)

    @staticmethod
    def _normalize(token: str, directory: str) -> str:
        if token.startswith('./'):
            token = token[2:]
        if '/' in token or not directory:
            return os.path.normpath(token)
        # Kbuild archives list members relative to their own directory
        return os.path.normpath(os.path.join(directory, token))


class BuildGraphResolver:
    """
    Resolves the kernel binary (a module or vmlinux) that links an object.

    Local search only parses the object's own directory. When it finds no
    parent, the broad strategy first retries the directory of the last broad
    match, then falls back to an index of the whole tree, built once.
    """

    def __init__(self, source_dir: str, vmlinux: str, oot_module: Optional[str] = None):
        self.source_dir = Path(source_dir).absolute()
        self.vmlinux = KernelBinary(path=str(Path(vmlinux).absolute()), is_vmlinux=True)
        self.oot_module = KernelBinary(path=str(Path(oot_module).absolute())) if oot_module else None
        self.ambiguities: Dict[str, List[str]] = {}
        self.last_broad_dir: Optional[str] = None

        self._local_index = DependencyIndex(str(self.source_dir))
        self._tree_index: Optional[DependencyIndex] = None
        self._resolved: Dict[str, KernelBinary] = {}

    def resolve_owner(self, object_path: str) -> KernelBinary:
        """
        Walk build edges upward from object_path to its kernel binary.

        Args:
            object_path: Object path relative to the source tree

        Returns:
            KernelBinary owning the object

        Raises:
            ResolutionError: if neither strategy finds a parent before a
                terminal was reached
        """
        object_path = os.path.normpath(object_path)
        if self.oot_module:
            return self.oot_module
        if object_path in self._resolved:
            return self._resolved[object_path]

        current = object_path
        visited = set()
        while True:
            if is_module(current):
                owner = KernelBinary(path=str(self.source_dir / current))
                break
            if is_vmlinux_terminal(current):
                owner = self.vmlinux
                break
            if current in visited:
                raise ResolutionError(object_path, f"dependency cycle at {current}")
            visited.add(current)

            candidates = self.local_parents(current)
            if not candidates:
                candidates = self.broad_parents(current)
            if not candidates:
                raise ResolutionError(object_path, f"invalid ancestor {current}")

            if len(candidates) > 1:
                logger.debug(f"{current} has {len(candidates)} parents: {', '.join(candidates)}")
                self.ambiguities.setdefault(object_path, []).extend(candidates)
            current = candidates[0]

        logger.debug(f"{object_path} is linked into {owner.name}")
        self._resolved[object_path] = owner
        return owner

    def is_ambiguous(self, object_path: str) -> bool:
        return os.path.normpath(object_path) in self.ambiguities

    def local_parents(self, object_path: str) -> List[str]:
        """Parents recorded in the object's own directory."""
        directory = os.path.dirname(object_path)
        self._local_index.add_directory(directory)
        return [p for p in self._local_index.parents(object_path)
                if os.path.dirname(p) == directory]

    def broad_parents(self, object_path: str) -> List[str]:
        """Parents recorded anywhere in the tree; the slow strategy."""
        if self.last_broad_dir is not None:
            self._local_index.add_directory(self.last_broad_dir)
            candidates = [p for p in self._local_index.parents(object_path)
                          if os.path.dirname(p) == self.last_broad_dir]
            if candidates:
                return candidates

        if self._tree_index is None:
            logger.debug(f"Indexing the whole tree to find the parent of {object_path}")
            self._tree_index = DependencyIndex(str(self.source_dir))
            self._tree_index.add_tree()

        candidates = self._tree_index.parents(object_path)
        if len(candidates) == 1:
            self.last_broad_dir = os.path.dirname(candidates[0])
        return candidates
