#!/usr/bin/env python3
"""
Pipeline settings for the live-patch build.

Settings can be saved to and loaded from JSON; command-line flags override
whatever a settings file provides.
"""

import json
import logging
import platform
import multiprocessing
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import List, Optional

from livepatch_build.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "~/.livepatch-build"
DEFAULT_TARGETS = ["vmlinux", "modules"]


@dataclass
class PipelineSettings:
    """Configuration for one live-patch build run"""
    source_dir: Optional[str] = None
    patches: List[str] = field(default_factory=list)
    config_file: Optional[str] = None
    vmlinux: Optional[str] = None
    output_dir: str = "."
    name: Optional[str] = None
    arch: Optional[str] = None
    jobs: int = 0  # 0 = auto-detect
    targets: List[str] = field(default_factory=lambda: list(DEFAULT_TARGETS))
    cache_dir: str = DEFAULT_CACHE_DIR
    target_version: Optional[str] = None
    oot_module: Optional[str] = None
    extra_link_flags: List[str] = field(default_factory=list)
    extra_make_args: List[str] = field(default_factory=list)
    diff_compiler: str = "create-diff-object"
    module_tool: str = "create-klp-module"
    debug: bool = False
    skip_cleanup: bool = False
    skip_gcc_check: bool = False
    
    fetch_command: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.arch is None:
            self.arch = platform.machine()
        if self.jobs == 0:
            self.jobs = detect_cpu_count()
        if self.source_dir is not None:
            self.use_source_dir(self.source_dir)

    def use_source_dir(self, source_dir: str):
        """Point at a kernel tree, defaulting .config and vmlinux to it."""
        self.source_dir = str(source_dir)
        if self.config_file is None:
            self.config_file = str(Path(source_dir) / ".config")
        if self.vmlinux is None:
            self.vmlinux = str(Path(source_dir) / "vmlinux")

    def validate(self):
        """Check option consistency."""
        if not self.patches:
            raise ConfigurationError("no patch file(s) specified")
        if self.source_dir is None:
            raise ConfigurationError("no kernel source directory and no target version given")
        for patch_file in self.patches:
            if not Path(patch_file).is_file():
                raise ConfigurationError(f"patch file '{patch_file}' not found")
        if not Path(self.source_dir).is_dir():
            raise ConfigurationError(f"source directory '{self.source_dir}' not found")
        if not Path(self.vmlinux).is_file():
            raise ConfigurationError(f"vmlinux '{self.vmlinux}' not found")
        if not Path(self.config_file).is_file():
            raise ConfigurationError(f"config file '{self.config_file}' not found")
        if self.jobs < 1:
            raise ConfigurationError(f"invalid job count: {self.jobs}")
        if self.oot_module and not Path(self.oot_module).is_file():
            raise ConfigurationError(f"out-of-tree module '{self.oot_module}' not found")
    
    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()


def detect_cpu_count() -> int:
    """Detect number of parallel jobs"""
    try:
        return multiprocessing.cpu_count()
    except NotImplementedError:
        return 1


def load_settings(settings_file: str) -> PipelineSettings:
    """Load pipeline settings from a JSON file"""
    try:
        with open(settings_file, 'r') as f:
            data = json.load(f)
    except (IOError, OSError, ValueError) as e:
        raise ConfigurationError(f"error loading settings file {settings_file}: {e}") from e
    
    known = {f.name for f in fields(PipelineSettings)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}")

    return PipelineSettings(**data)


def save_settings(settings: PipelineSettings, settings_file: str):
    """Save pipeline settings to a JSON file"""
    with open(settings_file, 'w') as f:
        json.dump(asdict(settings), f, indent=2)
    logger.info(f"Settings saved to: {settings_file}")
