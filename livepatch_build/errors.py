#!/usr/bin/env python3
"""
Error types raised by the live-patch build pipeline.

Every stage fails fast by raising one of these; the command-line entry point
catches LivepatchBuildError once and reports its message as a single line.
"""

from typing import Iterable, List


class LivepatchBuildError(RuntimeError):
    """Base class for fatal pipeline errors."""


class ConfigurationError(LivepatchBuildError):
    """Missing or incompatible options."""


class PrerequisiteMissingError(LivepatchBuildError):
    """Required kernel feature or tool absent, or unsupported configuration present."""


class TransactionError(LivepatchBuildError):
    """A source patch failed to apply."""

    def __init__(self, patch_file: str, detail: str = ""):
        self.patch_file = patch_file
        message = f"{patch_file} file failed to apply"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BuildFailureError(LivepatchBuildError):
    """The delegated build process failed."""


class BuildSegfaultError(BuildFailureError):
    """The delegated build process crashed with a segmentation fault."""

    def __init__(self, stage: str, core_file: str = None):
        self.stage = stage
        self.core_file = core_file
        if core_file:
            message = f"SEGFAULT during {stage}, core file at {core_file}"
        else:
            message = (f"SEGFAULT during {stage}, no core file found; "
                       f"run 'ulimit -c unlimited' and try to recreate")
        super().__init__(message)


class NoChangedObjectsError(BuildFailureError):
    """The patched build did not change any object file."""

    def __init__(self):
        super().__init__("no changed objects found")


class ResolutionError(LivepatchBuildError):
    """The owning kernel binary of an object could not be determined."""

    def __init__(self, object_path: str, detail: str = "no parent object found"):
        self.object_path = object_path
        super().__init__(f"unable to resolve owner of {object_path}: {detail}")


class LayoutNotFoundError(LivepatchBuildError):
    """A required special-section struct size is missing from debug info."""

    def __init__(self, struct_name: str):
        self.struct_name = struct_name
        super().__init__(f"can't find special struct {struct_name} size")


class DiffError(LivepatchBuildError):
    """Per-object diffing failed or produced no functional change."""

    def __init__(self, message: str, error_count: int = 0):
        self.error_count = error_count
        super().__init__(message)


class SymbolError(LivepatchBuildError):
    """The patch module references symbols nothing will provide."""

    def __init__(self, symbols: Iterable[str]):
        self.symbols: List[str] = sorted(set(symbols))
        super().__init__(f"unsatisfied symbols: {' '.join(self.symbols)}")


class StagingError(LivepatchBuildError):
    """Filesystem failure while staging build artifacts."""
