#!/usr/bin/env python3
"""
Diff compiler capability.

The diff compiler compares an original and a patched object and writes a
relocatable object holding only the changed functions and data. Its exit
status tells whether anything functional changed.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from livepatch_build.build.changed_object import DiffOutcome, KernelBinary
from livepatch_build.elf.section_layout import SectionLayout
from livepatch_build.utils.process import run_command

EXIT_CHANGED = 0
EXIT_NO_CHANGE = 3


@dataclass
class DiffRequest:
    """Inputs of one diff compiler invocation"""
    original: Path
    patched: Path
    owner: KernelBinary
    output: Path
    symvers: Path
    module_name: str


class DiffCompiler(ABC):
    """Produces the diff object of one (original, patched) pair."""
    
    @abstractmethod
    def diff(self, request: DiffRequest) -> DiffOutcome:
        """Write request.output and classify the change."""


class CreateDiffObject(DiffCompiler):
    """Runs an external create-diff-object style tool"""
    
    def __init__(self, tool: str = "create-diff-object", layout: Optional[SectionLayout] = None,
                 debug: bool = False):
        self.tool = tool
        self.layout = layout or SectionLayout()
        self.debug = debug
        self.logger = logging.getLogger(__name__)
    
    def environment(self) -> Dict[str, str]:
        return self.layout.as_environment()
    
    def diff(self, request: DiffRequest) -> DiffOutcome:
        request.output.parent.mkdir(parents=True, exist_ok=True)
        cmd = [self.tool]
        if self.debug:
            cmd.append("-d")
        cmd.extend([
            str(request.original),
            str(request.patched),
            request.owner.path,
            str(request.symvers),
            request.module_name,
            str(request.output),
        ])
        
        result = run_command(cmd, env=self.environment())
        if result.returncode == EXIT_CHANGED:
            return DiffOutcome.CHANGED
        if result.returncode == EXIT_NO_CHANGE:
            return DiffOutcome.NO_CHANGE
        if result.segfaulted:
            self.logger.error(f"SEGFAULT: {self.tool} {request.patched}")
        else:
            self.logger.error(f"{self.tool} failed on {request.patched} with status {result.returncode}")
        return DiffOutcome.ERROR
