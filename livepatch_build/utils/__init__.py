"""
Shared helpers: file staging, process execution and logging setup.
"""

from .file_utils import ensure_directory, calculate_file_hash, stage_file
from .process import ProcessResult, run_command
from .log_utils import setup_logging

__all__ = ['ensure_directory', 'calculate_file_hash', 'stage_file',
           'ProcessResult', 'run_command', 'setup_logging']
