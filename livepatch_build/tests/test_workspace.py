#!/usr/bin/env python3
"""
Tests for the staging workspace.
"""

import logging
import unittest
import tempfile
import shutil
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from livepatch_build.pipeline.workspace import BuildWorkspace
from livepatch_build.utils.log_utils import close_file_handlers


class TestBuildWorkspace(unittest.TestCase):
    """Test cases for BuildWorkspace."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.cache_dir = Path(self.test_dir) / "cache"

    def tearDown(self):
        close_file_handlers()
        shutil.rmtree(self.test_dir)

    def test_success_removes_scratch_and_log(self):
        with BuildWorkspace(str(self.cache_dir)) as workspace:
            self.assertTrue(workspace.tmp_dir.is_dir())
            logging.getLogger("livepatch_build.test").info("building")
            self.assertTrue(workspace.log_file.exists())

        self.assertFalse(workspace.tmp_dir.exists())
        self.assertFalse(workspace.log_file.exists())

    def test_failure_keeps_log(self):
        workspace = BuildWorkspace(str(self.cache_dir))

        with self.assertRaises(RuntimeError):
            with workspace:
                logging.getLogger("livepatch_build.test").error("build broke")
                raise RuntimeError("build broke")

        self.assertFalse(workspace.tmp_dir.exists())
        self.assertIn("build broke", workspace.log_file.read_text())

    def test_cleanup_runs_on_failure(self):
        calls = []
        workspace = BuildWorkspace(str(self.cache_dir))

        with self.assertRaises(RuntimeError):
            with workspace:
                workspace.register_cleanup(lambda: calls.append("first"))
                workspace.register_cleanup(lambda: calls.append("second"))
                raise RuntimeError("interrupted")

        self.assertEqual(calls, ["second", "first"])

    def test_cleanup_error_does_not_mask_original(self):
        def broken():
            raise OSError("revert failed")

        with self.assertRaises(RuntimeError):
            with BuildWorkspace(str(self.cache_dir)) as workspace:
                workspace.register_cleanup(broken)
                raise RuntimeError("original")

    def test_cleanup_error_raised_after_success(self):
        def broken():
            raise OSError("revert failed")

        with self.assertRaises(OSError):
            with BuildWorkspace(str(self.cache_dir)) as workspace:
                workspace.register_cleanup(broken)

    def test_debug_keeps_everything(self):
        with BuildWorkspace(str(self.cache_dir), debug=True) as workspace:
            (workspace.tmp_dir / "orig").mkdir()

        self.assertTrue((workspace.tmp_dir / "orig").exists())
        self.assertTrue(workspace.log_file.exists())

    def test_stale_scratch_removed_on_entry(self):
        stale = self.cache_dir / "tmp" / "stale.o"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"")

        with BuildWorkspace(str(self.cache_dir), skip_cleanup=True):
            self.assertFalse(stale.exists())


if __name__ == '__main__':
    unittest.main()
