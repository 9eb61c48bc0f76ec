"""
Differential kernel build: native build capability, changed-object tracking,
build graph resolution, toolchain validation and the source cache.
"""

from .changed_object import ChangedObject, DiffOutcome, KernelBinary
from .build_system import BuildSystem, KbuildSystem
from .build_graph import BuildGraphResolver, DependencyIndex
from .object_tracker import ObjectTracker
from .kernel_builder import BuildConfig, DifferentialBuildDriver, InstrumentedBuild
from .toolchain_manager import ToolchainManager, ToolchainConfig
from .source_cache import SourceCache

__all__ = ['ChangedObject', 'DiffOutcome', 'KernelBinary', 'BuildSystem', 'KbuildSystem',
           'BuildGraphResolver', 'DependencyIndex', 'ObjectTracker', 'BuildConfig',
           'DifferentialBuildDriver', 'InstrumentedBuild', 'ToolchainManager',
           'ToolchainConfig', 'SourceCache']
