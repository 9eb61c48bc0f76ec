#!/usr/bin/env python3
"""
Native build system capability.

The pipeline only needs "build these targets with these jobs and this
environment, tell me whether it worked and what it printed". KbuildSystem
does that with make; tests substitute their own BuildSystem.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from livepatch_build.utils.process import ProcessResult, run_command


class BuildSystem(ABC):
    """Compiles a kernel tree."""
    
    @abstractmethod
    def build(self, source_dir: str, targets: List[str], jobs: int,
              env: Optional[Dict[str, str]] = None,
              extra_args: Optional[List[str]] = None) -> ProcessResult:
        """Build targets in source_dir and return the process result."""


class KbuildSystem(BuildSystem):
    """Runs make in the kernel tree"""
    
    def __init__(self, make: str = "make"):
        self.make = make
        self.logger = logging.getLogger(__name__)
    
    def build_command(self, targets: List[str], jobs: int,
                      extra_args: Optional[List[str]] = None) -> List[str]:
        cmd = [self.make, f"-j{jobs}"]
        if extra_args:
            cmd.extend(extra_args)
        cmd.extend(targets)
        return cmd
    
    def build(self, source_dir: str, targets: List[str], jobs: int,
              env: Optional[Dict[str, str]] = None,
              extra_args: Optional[List[str]] = None) -> ProcessResult:
        cmd = self.build_command(targets, jobs, extra_args)
        return run_command(cmd, cwd=source_dir, env=env)
