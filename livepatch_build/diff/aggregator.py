#!/usr/bin/env python3
"""
Diff assembly and aggregation.

For every changed object: resolve the kernel binary it belongs to, run the
diff compiler on the original and patched copies, classify the result, then
link everything that changed into one object and assemble the module.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from livepatch_build.errors import DiffError, StagingError
from livepatch_build.build.build_graph import BuildGraphResolver
from livepatch_build.build.changed_object import ChangedObject, DiffOutcome
from livepatch_build.elf.symbols import is_relocatable_object
from livepatch_build.utils.file_utils import ensure_directory, stage_file
from .diff_compiler import DiffCompiler, DiffRequest
from .module_assembler import ModuleAssembler

# Objects whose sections the diff compiler can't handle, plus the initramfs blob
EXCLUDED_OBJECTS = [
    "usr/initramfs_data.o",
    "init/version.o",
    "arch/x86/boot/*",
    "arch/x86/entry/vdso/*",
    "arch/x86/realmode/*",
    "arch/x86/purgatory/*",
    "arch/powerpc/kernel/vdso*",
    "drivers/firmware/efi/libstub/*",
]


def is_excluded(path: str) -> bool:
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in EXCLUDED_OBJECTS)


@dataclass
class AssembledModule:
    """The loadable module built from the aggregated diffs"""
    name: str
    path: Path
    linked_object: Path
    objects: List[ChangedObject] = field(default_factory=list)
    checksum: Optional[str] = None

    @property
    def owners(self) -> Set[str]:
        return {obj.owner.name for obj in self.objects if obj.owner is not None}


class DiffAggregator:
    """Diffs every changed object and assembles the results into one module"""

    def __init__(self, resolver: BuildGraphResolver, diff_compiler: DiffCompiler,
                 assembler: ModuleAssembler, work_dir: str, module_name: str,
                 symvers: str, uses_shadow_runtime: bool = False):
        self.resolver = resolver
        self.diff_compiler = diff_compiler
        self.assembler = assembler
        self.work_dir = Path(work_dir)
        self.output_dir = self.work_dir / "output"
        self.module_name = module_name
        self.symvers = Path(symvers)
        self.uses_shadow_runtime = uses_shadow_runtime
        self.logger = logging.getLogger(__name__)

    @property
    def diff_module_name(self) -> str:
        return self.module_name.replace('-', '_')

    def assemble(self, changed_objects: List[ChangedObject], orig_dir: Path,
                 patched_dir: Path) -> AssembledModule:
        """
        Diff, link and assemble.

        Args:
            changed_objects: Objects reported by the patched build
            orig_dir: Tree holding the original copies of changed objects
            patched_dir: Tree holding the patched copies

        Returns:
            AssembledModule

        Raises:
            DiffError: if any object failed to diff, or nothing changed
            ResolutionError: if an object's owner can't be resolved
        """
        self.logger.info("Extracting new and modified ELF sections")
        ensure_directory(str(self.output_dir))

        outputs: List[Path] = []
        included: List[ChangedObject] = []
        errors = 0

        for obj in changed_objects:
            if is_excluded(obj.path):
                self.logger.info(f"Skipping {obj.path}")
                obj.set_outcome(DiffOutcome.SKIPPED)
                continue

            obj.owner = self.resolver.resolve_owner(obj.path)
            original = Path(orig_dir) / obj.path

            if obj.is_new or not original.exists():
                outputs.append(stage_file(Path(patched_dir), obj.path, self.output_dir))
                obj.set_outcome(DiffOutcome.NEW)
                included.append(obj)
                self.logger.info(f"{obj.path}: new object")
                continue

            outcome = self.diff_compiler.diff(DiffRequest(
                original=original,
                patched=Path(patched_dir) / obj.path,
                owner=obj.owner,
                output=self.output_dir / obj.path,
                symvers=self.symvers,
                module_name=self.diff_module_name
            ))

            if outcome == DiffOutcome.CHANGED and self.resolver.is_ambiguous(obj.path):
                parents = ', '.join(self.resolver.ambiguities[obj.path])
                self.logger.error(f"{obj.path}: changed, but linked through more than one parent ({parents})")
                outcome = DiffOutcome.ERROR

            obj.set_outcome(outcome)
            if outcome == DiffOutcome.ERROR:
                errors += 1
            elif outcome == DiffOutcome.CHANGED:
                outputs.append(self.output_dir / obj.path)
                included.append(obj)
                self.logger.info(f"{obj.path}: changed function(s) in {obj.owner.name}")
            else:
                self.logger.info(f"{obj.path}: no functional changes")

        if errors:
            raise DiffError(f"{errors} error(s) encountered", errors)
        if not outputs:
            raise DiffError("no functional changes found")

        return self._build(outputs, included)

    def _build(self, outputs: List[Path], included: List[ChangedObject]) -> AssembledModule:
        patch_dir = self.work_dir / "patch"
        linked = patch_dir / "tmp_output.o"

        self.logger.info(f"Linking {len(outputs)} object(s) into {self.module_name}")
        self.assembler.link(outputs, linked)
        if not is_relocatable_object(str(linked)):
            raise StagingError(f"{linked} is not a relocatable ELF object")

        checksum = None
        if self.uses_shadow_runtime:
            checksum = self.assembler.embed_checksum(linked)

        module_path = patch_dir / f"{self.module_name}.ko"
        self.logger.info(f"Building patch module: {module_path.name}")
        self.assembler.build_module(linked, self.module_name, module_path)

        return AssembledModule(
            name=self.module_name,
            path=module_path,
            linked_object=linked,
            objects=included,
            checksum=checksum
        )
