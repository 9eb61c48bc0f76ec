"""
Configuration handling: kernel .config parsing, prerequisite validation
and pipeline settings.
"""

from .kernel_config import KernelConfigParser, LivepatchRequirements
from .validator import KernelConfigValidator, ValidationLevel, ValidationResult
from .settings import PipelineSettings, load_settings, save_settings

__all__ = ['KernelConfigParser', 'LivepatchRequirements', 'KernelConfigValidator',
           'ValidationLevel', 'ValidationResult', 'PipelineSettings',
           'load_settings', 'save_settings']
