#!/usr/bin/env python3
"""
Kernel source cache.

A kernel tree and its build output are reused across runs as long as the
version tag recorded with them matches the requested kernel version. Any
mismatch discards the cached tree as a whole and asks the acquisition tool
for a fresh one.
"""

import shutil
import logging
from pathlib import Path
from typing import List, Optional

from livepatch_build.errors import ConfigurationError, StagingError
from livepatch_build.utils.file_utils import ensure_directory
from livepatch_build.utils.process import run_command


class SourceCache:
    """Version-tagged kernel tree under the cache directory"""
    
    def __init__(self, cache_dir: str):
        self.cache_dir = Path(cache_dir)
        self.source_dir = self.cache_dir / "src"
        self.version_file = self.cache_dir / "version"
        self.logger = logging.getLogger(__name__)
    
    def cached_version(self) -> Optional[str]:
        if not self.version_file.exists() or not self.source_dir.is_dir():
            return None
        return self.version_file.read_text().strip() or None
    
    def is_current(self, version: str) -> bool:
        return self.cached_version() == version
    
    def invalidate(self):
        """Drop the cached tree and its version tag."""
        self.logger.info(f"Clearing cached kernel source in {self.source_dir}")
        try:
            if self.source_dir.exists():
                shutil.rmtree(self.source_dir)
            if self.version_file.exists():
                self.version_file.unlink()
        except OSError as e:
            raise StagingError(f"failed to clear source cache: {e}") from e
    
    def ensure(self, version: str, fetch_command: Optional[List[str]] = None) -> Path:
        """
        Return a cached tree for version, acquiring it when needed.
        
        Args:
            version: Kernel version the tree must match (uname -r style)
            fetch_command: External acquisition tool, invoked as
                fetch_command + [version, source_dir]
                
        Returns:
            Path of the cached source tree
        """
        if self.is_current(version):
            self.logger.info(f"Using cache at {self.source_dir}")
            return self.source_dir
        
        cached = self.cached_version()
        if cached is not None:
            self.logger.info(f"Cached source is {cached}, {version} requested")
        self.invalidate()
        
        if not fetch_command:
            raise ConfigurationError(f"no cached source for kernel {version} and no fetch command given")
        
        ensure_directory(str(self.cache_dir))
        self.logger.info(f"Downloading kernel source for {version}")
        result = run_command(list(fetch_command) + [version, str(self.source_dir)])
        if not result.success or not self.source_dir.is_dir():
            self.invalidate()
            raise ConfigurationError(f"failed to acquire kernel source for {version}")
        
        self.version_file.write_text(f"{version}\n")
        return self.source_dir
