#!/usr/bin/env python3
"""
Differential kernel build for live patching.

Builds the kernel tree once unpatched and once with the patch transaction
applied, both with every function and data object in its own section, and
reports exactly which objects the patch changed together with the undefined
symbol diagnostics the patched build produced.
"""

import re
import shutil
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from livepatch_build.errors import (BuildFailureError, BuildSegfaultError,
                                    NoChangedObjectsError)
from livepatch_build.patch.patch_transaction import PatchTransaction
from livepatch_build.utils.file_utils import ensure_directory, stage_file
from livepatch_build.utils.process import ProcessResult
from .build_system import BuildSystem, KbuildSystem
from .changed_object import ChangedObject
from .object_tracker import ObjectTracker, Fingerprints

ISOLATION_FLAGS = "-ffunction-sections -fdata-sections"
VMLINUX_LINK_FLAGS = "--warn-unresolved-symbols"

UNDEFINED_REFERENCE = re.compile(r"undefined reference to [`'‘]([^`'’]+)['’]")
MODPOST_UNDEFINED = re.compile(r'"([^"]+)" \[[^\]]+\] undefined!')


def collect_undefined_symbols(output: List[str]) -> Set[str]:
    """Symbol names from linker and modpost "undefined" diagnostics."""
    symbols = set()
    for line in output:
        for pattern in (UNDEFINED_REFERENCE, MODPOST_UNDEFINED):
            for match in pattern.finditer(line):
                symbols.add(match.group(1))
    return symbols


@dataclass
class BuildConfig:
    """Configuration for the differential build"""
    source_dir: str
    work_dir: str
    targets: List[str]
    jobs: int
    extra_make_args: List[str] = field(default_factory=list)


@dataclass
class InstrumentedBuild:
    """Outcome of the patched build pass"""
    changed_objects: List[ChangedObject]
    undefined_symbols: Set[str]
    orig_dir: Path
    patched_dir: Path

    @property
    def paths(self) -> List[str]:
        return [obj.path for obj in self.changed_objects]


class DifferentialBuildDriver:
    """Runs the baseline and patched builds and harvests the changed objects"""

    def __init__(self, config: BuildConfig, build_system: Optional[BuildSystem] = None,
                 tracker: Optional[ObjectTracker] = None):
        self.config = config
        self.build_system = build_system or KbuildSystem()
        self.tracker = tracker or ObjectTracker(config.source_dir)
        self.logger = logging.getLogger(__name__)

        self.work_dir = Path(config.work_dir)
        self.orig_dir = self.work_dir / "orig"
        self.patched_dir = self.work_dir / "patched"
        self.baseline: Optional[Fingerprints] = None

    def build_environment(self, instrumented: bool = False) -> Dict[str, str]:
        env = {"KCFLAGS": ISOLATION_FLAGS}
        if instrumented:
            # unresolved symbols become diagnostics instead of failing the
            # module (modpost) and vmlinux (ld) links
            env["KBUILD_MODPOST_WARN"] = "1"
            env["LDFLAGS_vmlinux"] = VMLINUX_LINK_FLAGS
        return env

    def build_baseline(self):
        """
        Build the unpatched tree and fingerprint its objects.

        Raises:
            BuildFailureError: if the build fails or crashes
        """
        self.logger.info("Building original source")
        self._run_pass("original build", self.build_environment())
        self.baseline = self.tracker.snapshot()

    def build_instrumented(self, transaction: PatchTransaction) -> InstrumentedBuild:
        """
        Build with the patches applied and isolate the changed objects.

        The patched objects are staged under work_dir/patched. After the
        transaction is reverted, a restore pass rebuilds the originals of the
        changed objects, which are staged under work_dir/orig.

        Raises:
            BuildFailureError: if a pass fails or crashes, or the baseline
                has not been built
            NoChangedObjectsError: if the patch changed no object
        """
        if self.baseline is None:
            raise BuildFailureError("patched build requested before the original build")

        ensure_directory(str(self.orig_dir))
        ensure_directory(str(self.patched_dir))

        with transaction.applied():
            self.logger.info("Building patched source")
            result = self._run_pass("patched build", self.build_environment(instrumented=True))
            undefined_symbols = collect_undefined_symbols(result.output)

            changed, new = self.tracker.compare(self.baseline, self.tracker.snapshot())
            if not changed and not new:
                raise NoChangedObjectsError()

            for path in changed + new:
                stage_file(Path(self.config.source_dir), path, self.patched_dir)

        if changed:
            self.logger.info("Restoring original objects")
            self._run_pass("original rebuild", self.build_environment())
            restored = self.tracker.snapshot()
            for path in changed:
                if restored.get(path) != self.baseline.get(path):
                    self.logger.warning(f"{path} differs from the original build after restoring it")
                stage_file(Path(self.config.source_dir), path, self.orig_dir)

        for path in changed:
            self.logger.info(f"Changed object: {path}")
        for path in new:
            self.logger.info(f"New object: {path}")
        if undefined_symbols:
            self.logger.debug(f"Undefined symbols in patched build: {' '.join(sorted(undefined_symbols))}")

        objects = [ChangedObject(path=path) for path in changed]
        objects.extend(ChangedObject(path=path, is_new=True) for path in new)
        return InstrumentedBuild(
            changed_objects=sorted(objects, key=lambda obj: obj.path),
            undefined_symbols=undefined_symbols,
            orig_dir=self.orig_dir,
            patched_dir=self.patched_dir
        )

    def _run_pass(self, stage: str, env: Dict[str, str]) -> ProcessResult:
        result = self.build_system.build(
            self.config.source_dir,
            self.config.targets,
            self.config.jobs,
            env=env,
            extra_args=self.config.extra_make_args
        )

        if result.segfaulted:
            raise BuildSegfaultError(stage, self._preserve_core_file())
        if not result.success:
            raise BuildFailureError(f"{stage} failed with status {result.returncode}")
        return result

    def _preserve_core_file(self) -> Optional[str]:
        """Move the newest core dump in the tree into the work directory."""
        source_dir = Path(self.config.source_dir)
        cores = [p for p in list(source_dir.glob("core")) + list(source_dir.glob("core.*")) if p.is_file()]
        if not cores:
            return None

        core = max(cores, key=lambda p: p.stat().st_mtime)
        ensure_directory(str(self.work_dir))
        destination = self.work_dir / core.name
        shutil.move(str(core), str(destination))
        return str(destination)
