#!/usr/bin/env python3
"""
Toolchain validation for live-patch builds.

Checks that the tools the pipeline delegates to are installed and that the
host compiler is the one the running kernel was built with. Objects built by
a different compiler differ everywhere, which would make every function look
changed.
"""

import shutil
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from livepatch_build.errors import PrerequisiteMissingError
from livepatch_build.elf.symbols import read_compiler_version, strip_compiler_banner


@dataclass
class ToolchainConfig:
    """Resolved host toolchain"""
    compiler: str
    version: Optional[str] = None
    tools: Dict[str, str] = field(default_factory=dict)
    validated: bool = False


class ToolchainManager:
    """Validates the host toolchain against the target kernel"""
    
    def __init__(self, compiler: str = "gcc", extra_tools: Optional[List[str]] = None):
        self.compiler = compiler
        self.logger = logging.getLogger(__name__)
        
        # Required tools for the build, link and patch stages
        self.required_tools = ["make", "patch", "ld", "objcopy", compiler]
        if extra_tools:
            self.required_tools.extend(extra_tools)
    
    def find_tools(self) -> Dict[str, Optional[str]]:
        """Locate every required tool on PATH"""
        return {tool: shutil.which(tool) for tool in self.required_tools}
    
    def get_compiler_version(self) -> Optional[str]:
        """Version reported by the host compiler, without the banner prefix"""
        try:
            result = subprocess.run(
                [self.compiler, "--version"],
                capture_output=True,
                text=True,
                timeout=30
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.error(f"Error running {self.compiler} --version: {e}")
            return None
        
        if result.returncode != 0 or not result.stdout:
            return None
        return strip_compiler_banner(result.stdout.splitlines()[0])
    
    def validate_toolchain(self, vmlinux: str, skip_compiler_check: bool = False) -> ToolchainConfig:
        """
        Validate tool presence and compiler version.
        
        Args:
            vmlinux: Kernel image whose .comment records the compiler used
            skip_compiler_check: Accept a compiler version mismatch
            
        Returns:
            Validated ToolchainConfig
            
        Raises:
            PrerequisiteMissingError: on missing tools or a version mismatch
        """
        tools = self.find_tools()
        missing = [tool for tool, path in tools.items() if path is None]
        if missing:
            raise PrerequisiteMissingError(f"missing required tools: {', '.join(missing)}")
        
        toolchain = ToolchainConfig(
            compiler=self.compiler,
            version=self.get_compiler_version(),
            tools={tool: path for tool, path in tools.items()}
        )
        
        if skip_compiler_check:
            self.logger.warning("Skipping compiler version check")
        else:
            kernel_version = read_compiler_version(vmlinux)
            if kernel_version is None:
                self.logger.warning(f"No compiler version recorded in {vmlinux}")
            elif kernel_version != toolchain.version:
                raise PrerequisiteMissingError(
                    f"compiler version mismatch: kernel built with '{kernel_version}', "
                    f"host has '{toolchain.version}'")
        
        toolchain.validated = True
        self.logger.debug(f"Toolchain validated: {self.compiler} {toolchain.version}")
        return toolchain
