#!/usr/bin/env python3
"""
Logging setup for the live-patch build pipeline.

Console output stays terse; the build log file receives everything,
including the streamed output of every delegated process.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_file: Optional[str] = None, debug: bool = False) -> logging.Logger:
    """
    Configure the package logger.
    
    Args:
        log_file: Build log path; receives DEBUG and above
        debug: Also echo DEBUG output (including process output) to the console
        
    Returns:
        The configured package logger
    """
    logger = logging.getLogger("livepatch_build")
    logger.setLevel(logging.DEBUG)
    
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)
    
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
    
    return logger


def close_file_handlers(logger_name: str = "livepatch_build"):
    """Detach and close file handlers so the log file can be removed."""
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
