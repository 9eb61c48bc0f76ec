#!/usr/bin/env python3
"""
Records shared by the build, resolution and diff stages.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class DiffOutcome(Enum):
    """Classification of one changed object after diffing."""
    NO_CHANGE = "no_change"
    CHANGED = "changed"
    NEW = "new"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class KernelBinary:
    """The core kernel image or a loadable module that links an object."""
    path: str
    is_vmlinux: bool = False
    
    @property
    def name(self) -> str:
        if self.is_vmlinux:
            return "vmlinux"
        return Path(self.path).stem


@dataclass
class ChangedObject:
    """An object file whose compiled output differs from the baseline build."""
    path: str
    is_new: bool = False
    owner: Optional[KernelBinary] = None
    outcome: Optional[DiffOutcome] = None
    
    def set_outcome(self, outcome: DiffOutcome):
        if self.outcome is not None:
            raise ValueError(f"outcome of {self.path} already set to {self.outcome.value}")
        self.outcome = outcome
