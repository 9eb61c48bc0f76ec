#!/usr/bin/env python3
"""
Module assembly capability.

Links the per-object diff outputs into one relocatable object, optionally
tags it with a content checksum and hands it to the external tool that turns
it into a loadable live-patch module.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from livepatch_build.errors import BuildFailureError
from livepatch_build.utils.file_utils import calculate_file_hash
from livepatch_build.utils.process import run_command

CHECKSUM_SECTION = ".kpatch.checksum"


class ModuleAssembler(ABC):
    """Turns diff outputs into a loadable module."""
    
    @abstractmethod
    def link(self, objects: List[Path], output: Path):
        """Link objects into one relocatable object."""
    
    @abstractmethod
    def embed_checksum(self, linked: Path) -> str:
        """Tag the linked object with its content hash and return the hash."""
    
    @abstractmethod
    def build_module(self, linked: Path, module_name: str, output: Path):
        """Produce the loadable module at output."""


class KpatchModuleAssembler(ModuleAssembler):
    """ld -r, objcopy and an external module creation tool"""
    
    def __init__(self, module_tool: str = "create-klp-module", ld: str = "ld",
                 objcopy: str = "objcopy", extra_link_flags: Optional[List[str]] = None):
        self.module_tool = module_tool
        self.ld = ld
        self.objcopy = objcopy
        self.extra_link_flags = list(extra_link_flags or [])
        self.logger = logging.getLogger(__name__)
    
    def link(self, objects: List[Path], output: Path):
        output.parent.mkdir(parents=True, exist_ok=True)
        cmd = [self.ld, "-r"] + self.extra_link_flags + ["-o", str(output)]
        cmd.extend(str(obj) for obj in objects)
        result = run_command(cmd)
        if not result.success:
            raise BuildFailureError(f"failed to link {len(objects)} patch object(s)")
    
    def embed_checksum(self, linked: Path) -> str:
        checksum = calculate_file_hash(str(linked), 'md5')
        checksum_file = linked.parent / "checksum.tmp"
        checksum_file.write_bytes(checksum.encode() + b"\0")
        
        result = run_command([self.objcopy, "--add-section",
                              f"{CHECKSUM_SECTION}={checksum_file}", str(linked)])
        if not result.success:
            raise BuildFailureError(f"failed to add {CHECKSUM_SECTION} to {linked}")
        self.logger.debug(f"Patch checksum: {checksum}")
        return checksum
    
    def build_module(self, linked: Path, module_name: str, output: Path):
        output.parent.mkdir(parents=True, exist_ok=True)
        result = run_command([self.module_tool, str(linked), str(output)],
                             env={"MODNAME": module_name})
        if not result.success or not output.exists():
            raise BuildFailureError(f"{self.module_tool} failed to build {output.name}")
