#!/usr/bin/env python3
"""
Kernel configuration validation for live-patch builds.
Validates that the target kernel configuration can be live patched.
"""

import logging
from typing import List, Optional
from dataclasses import dataclass
from enum import Enum

from livepatch_build.errors import PrerequisiteMissingError
from .kernel_config import KernelConfigParser, LivepatchRequirements


class ValidationLevel(Enum):
    """Validation severity levels."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    level: ValidationLevel
    option: str
    message: str
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None


class KernelConfigValidator:
    """Validates kernel configuration against live-patch requirements."""
    
    def __init__(self):
        self.results: List[ValidationResult] = []
        self.logger = logging.getLogger(__name__)
        
    def validate_config(self, config_parser: KernelConfigParser) -> List[ValidationResult]:
        """
        Validate kernel configuration against live-patch requirements.
        
        Args:
            config_parser: Parsed kernel configuration
            
        Returns:
            List of validation results
        """
        self.results = []
        self._validate_required_options(config_parser)
        self._validate_unsupported_options(config_parser)
        self._report_runtime_mode(config_parser)
        return self.results
        
    def ensure_valid(self, config_parser: KernelConfigParser) -> List[ValidationResult]:
        """
        Validate and raise on the first error-level result.
        
        Raises:
            PrerequisiteMissingError: if any check failed at ERROR level
        """
        results = self.validate_config(config_parser)
        for result in results:
            if result.level == ValidationLevel.WARNING:
                self.logger.warning(f"{result.option}: {result.message}")
            elif result.level == ValidationLevel.INFO:
                self.logger.debug(f"{result.option}: {result.message}")
        
        errors = [r for r in results if r.level == ValidationLevel.ERROR]
        if errors:
            raise PrerequisiteMissingError(errors[0].message)
        return results
        
    def _validate_required_options(self, config_parser: KernelConfigParser) -> None:
        for option, expected_value in LivepatchRequirements.REQUIRED_OPTIONS.items():
            actual_value = config_parser.get_option(option)
            
            if actual_value != expected_value:
                self.results.append(ValidationResult(
                    level=ValidationLevel.ERROR,
                    option=option,
                    message=f"kernel doesn't have '{option}' enabled",
                    expected_value=expected_value,
                    actual_value=actual_value
                ))
                
    def _validate_unsupported_options(self, config_parser: KernelConfigParser) -> None:
        for option in LivepatchRequirements.UNSUPPORTED_OPTIONS:
            if config_parser.is_enabled(option):
                self.results.append(ValidationResult(
                    level=ValidationLevel.ERROR,
                    option=option,
                    message=f"kernel option '{option}' is not supported",
                    expected_value='n',
                    actual_value=config_parser.get_option(option)
                ))
                
    def _report_runtime_mode(self, config_parser: KernelConfigParser) -> None:
        option = LivepatchRequirements.NATIVE_LIVEPATCH_OPTION
        if config_parser.is_enabled(option):
            message = "native live-patch support present"
        else:
            message = "native live-patch support absent, using the shadow runtime"
        self.results.append(ValidationResult(
            level=ValidationLevel.INFO,
            option=option,
            message=message,
            actual_value=config_parser.get_option(option)
        ))
