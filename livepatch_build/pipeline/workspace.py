#!/usr/bin/env python3
"""
Staging workspace for one pipeline run.

Owns the cache directory, the scratch directory and the build log for the
duration of a with-block. Leaving the block, for any reason, runs the
registered cleanup actions (reverting the patch transaction among them),
removes the scratch directory and drops the log after a successful run.
"""

import shutil
import logging
from pathlib import Path
from typing import Callable, List, Optional

from livepatch_build.errors import StagingError
from livepatch_build.utils.file_utils import ensure_directory
from livepatch_build.utils.log_utils import setup_logging, close_file_handlers

logger = logging.getLogger(__name__)


class BuildWorkspace:
    """Cache dir, scratch dir and log file, released on every exit path"""
    
    def __init__(self, cache_dir: str, debug: bool = False, skip_cleanup: bool = False):
        self.cache_dir = Path(cache_dir).expanduser()
        self.tmp_dir = self.cache_dir / "tmp"
        self.log_file = self.cache_dir / "build.log"
        self.debug = debug
        self.skip_cleanup = skip_cleanup
        self._cleanup_actions: List[Callable[[], None]] = []
    
    def register_cleanup(self, action: Callable[[], None]):
        """Run action on exit, before the scratch directory is removed."""
        self._cleanup_actions.append(action)
    
    def __enter__(self) -> "BuildWorkspace":
        try:
            ensure_directory(str(self.cache_dir))
            if self.tmp_dir.exists():
                shutil.rmtree(self.tmp_dir)
            ensure_directory(str(self.tmp_dir))
            if self.log_file.exists():
                self.log_file.unlink()
        except OSError as e:
            raise StagingError(f"can't prepare workspace in {self.cache_dir}: {e}") from e
        
        setup_logging(str(self.log_file), self.debug)
        logger.debug(f"Using work directory {self.tmp_dir}")
        return self
    
    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        cleanup_error: Optional[Exception] = None
        
        for action in reversed(self._cleanup_actions):
            try:
                action()
            except Exception as e:
                logger.error(f"Cleanup failed: {e}")
                if cleanup_error is None:
                    cleanup_error = e
        self._cleanup_actions = []
        
        if self.debug or self.skip_cleanup:
            logger.info(f"Keeping work directory {self.tmp_dir}")
        else:
            shutil.rmtree(self.tmp_dir, ignore_errors=True)
        
        close_file_handlers()
        if exc_type is None and cleanup_error is None and not self.debug:
            self.log_file.unlink(missing_ok=True)
        
        if exc_type is None and cleanup_error is not None:
            raise cleanup_error
        return False
