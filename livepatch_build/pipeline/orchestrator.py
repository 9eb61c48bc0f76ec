#!/usr/bin/env python3
"""
Live-patch build pipeline.

Runs the stages strictly in order: prerequisite checks, special section
layout discovery, patch validation, baseline build, patched build, diff
assembly, symbol closure verification. The staging workspace reverts the
patch transaction and reclaims scratch space whichever way the run ends.
"""

import re
import shutil
import logging
from pathlib import Path
from typing import List, Optional

from livepatch_build.errors import ConfigurationError, PrerequisiteMissingError, StagingError
from livepatch_build.config.kernel_config import KernelConfigParser, LivepatchRequirements
from livepatch_build.config.settings import PipelineSettings
from livepatch_build.config.validator import KernelConfigValidator
from livepatch_build.build.build_graph import BuildGraphResolver
from livepatch_build.build.build_system import BuildSystem
from livepatch_build.build.kernel_builder import BuildConfig, DifferentialBuildDriver
from livepatch_build.build.source_cache import SourceCache
from livepatch_build.build.toolchain_manager import ToolchainManager
from livepatch_build.diff.aggregator import AssembledModule, DiffAggregator
from livepatch_build.diff.diff_compiler import CreateDiffObject, DiffCompiler
from livepatch_build.diff.module_assembler import KpatchModuleAssembler, ModuleAssembler
from livepatch_build.elf.section_layout import SectionLayout, SectionLayoutProber
from livepatch_build.patch.patch_transaction import PatchTransaction
from livepatch_build.verification.symbol_verifier import SymbolClosureVerifier
from .workspace import BuildWorkspace

logger = logging.getLogger(__name__)

# MODULE_NAME_LEN is 64 - sizeof(unsigned long); one byte is the terminator
MODULE_NAME_MAX = 55
NATIVE_PREFIX = "livepatch-"
SHADOW_PREFIX = "kpatch-"


def make_module_name(patches: List[str], name: Optional[str], native_livepatch: bool) -> str:
    """
    Module name from an explicit name or the sole patch's file name.

    Characters outside [A-Za-z0-9_-] become '-', the runtime prefix is added
    and the result is capped to fit the kernel's module name field.
    """
    if name:
        base = name
    elif len(patches) == 1:
        base = Path(patches[0]).name
        if '.' in base:
            base = base.rsplit('.', 1)[0]
    else:
        base = "patch"

    base = re.sub(r'[^A-Za-z0-9_-]', '-', base)
    if not base:
        raise ConfigurationError("empty module name")

    prefix = NATIVE_PREFIX if native_livepatch else SHADOW_PREFIX
    if not base.startswith(prefix):
        base = prefix + base
    return base[:MODULE_NAME_MAX]


class LivepatchPipeline:
    """Builds one live-patch module from a patch list"""

    def __init__(self, settings: PipelineSettings,
                 build_system: Optional[BuildSystem] = None,
                 diff_compiler: Optional[DiffCompiler] = None,
                 assembler: Optional[ModuleAssembler] = None,
                 prober: Optional[SectionLayoutProber] = None,
                 toolchain_manager: Optional[ToolchainManager] = None):
        self.settings = settings
        self.build_system = build_system
        self.diff_compiler = diff_compiler
        self.assembler = assembler or KpatchModuleAssembler(
            module_tool=settings.module_tool,
            extra_link_flags=settings.extra_link_flags
        )
        self.prober = prober or SectionLayoutProber()
        self.toolchain_manager = toolchain_manager or ToolchainManager()

        self.native_livepatch = False
        self.paravirt = False
        self.layout: Optional[SectionLayout] = None
        self.module: Optional[AssembledModule] = None

    @property
    def log_file(self) -> Path:
        return self.settings.cache_path / "build.log"

    def run(self) -> Path:
        """
        Run every stage and copy the module to the output directory.

        Returns:
            Path of the delivered module

        Raises:
            LivepatchBuildError: on any fatal condition
        """
        settings = self.settings
        workspace = BuildWorkspace(str(settings.cache_path), debug=settings.debug,
                                   skip_cleanup=settings.skip_cleanup)

        with workspace:
            self._prepare_source()
            settings.validate()
            self._check_prerequisites()

            module_name = make_module_name(settings.patches, settings.name, self.native_livepatch)
            logger.info(f"Building patch module {module_name} for {settings.arch}")

            self.layout = self.prober.probe(settings.vmlinux, settings.arch, self.paravirt)

            transaction = PatchTransaction(settings.source_dir, settings.patches)
            workspace.register_cleanup(transaction.revert_all)

            logger.info("Testing patch file(s)")
            transaction.apply()
            transaction.revert_all()

            driver = DifferentialBuildDriver(
                BuildConfig(
                    source_dir=settings.source_dir,
                    work_dir=str(workspace.tmp_dir),
                    targets=settings.targets,
                    jobs=settings.jobs,
                    extra_make_args=settings.extra_make_args
                ),
                build_system=self.build_system
            )
            driver.build_baseline()
            build = driver.build_instrumented(transaction)

            symvers = Path(settings.source_dir) / "Module.symvers"
            if not symvers.exists():
                raise PrerequisiteMissingError(f"{symvers} not found after build")

            aggregator = DiffAggregator(
                resolver=BuildGraphResolver(settings.source_dir, settings.vmlinux, settings.oot_module),
                diff_compiler=self.diff_compiler or CreateDiffObject(
                    settings.diff_compiler, self.layout, settings.debug),
                assembler=self.assembler,
                work_dir=str(workspace.tmp_dir),
                module_name=module_name,
                symvers=str(symvers),
                uses_shadow_runtime=not self.native_livepatch
            )
            self.module = aggregator.assemble(build.changed_objects, build.orig_dir, build.patched_dir)

            SymbolClosureVerifier().verify(build.undefined_symbols, str(self.module.path),
                                           uses_shadow_runtime=not self.native_livepatch)

            output = self._deliver(self.module.path)
            logger.info(f"SUCCESS: {output}")

        return output

    def _prepare_source(self):
        settings = self.settings
        if settings.target_version is None:
            return
        if settings.source_dir is not None:
            raise ConfigurationError("a source directory and a target version are mutually exclusive")
        cache = SourceCache(str(settings.cache_path))
        settings.use_source_dir(str(cache.ensure(settings.target_version, settings.fetch_command)))

    def _check_prerequisites(self):
        settings = self.settings
        kconfig = KernelConfigParser()
        kconfig.parse_config(settings.config_file)
        KernelConfigValidator().ensure_valid(kconfig)

        self.native_livepatch = kconfig.is_enabled(LivepatchRequirements.NATIVE_LIVEPATCH_OPTION)
        self.paravirt = kconfig.is_enabled(LivepatchRequirements.PARAVIRT_OPTION)
        if settings.oot_module and not self.native_livepatch:
            logger.warning("Out-of-tree module patching without native live-patch support")

        self.toolchain_manager.validate_toolchain(settings.vmlinux, settings.skip_gcc_check)

    def _deliver(self, module_path: Path) -> Path:
        output_dir = Path(self.settings.output_dir)
        destination = output_dir / module_path.name
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(module_path, destination)
        except OSError as e:
            raise StagingError(f"failed to copy {module_path.name} to {output_dir}: {e}") from e
        return destination
