#!/usr/bin/env python3
"""
Execution of delegated external processes.

Output is streamed line by line into the build log. An operator interrupt
terminates the whole child process tree before it propagates.
"""

import os
import signal
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)

SEGFAULT_EXIT_CODES = (139, -signal.SIGSEGV)


@dataclass
class ProcessResult:
    """Result of a delegated process."""
    command: List[str]
    returncode: int
    output: List[str] = field(default_factory=list)
    
    @property
    def success(self) -> bool:
        return self.returncode == 0
    
    @property
    def segfaulted(self) -> bool:
        return self.returncode in SEGFAULT_EXIT_CODES


def terminate_process_tree(pid: int, timeout: float = 10.0):
    """Terminate a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    
    processes = parent.children(recursive=True) + [parent]
    for process in processes:
        try:
            process.terminate()
        except psutil.NoSuchProcess:
            continue
    
    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for process in alive:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            continue


def run_command(command: List[str], cwd: Optional[str] = None,
                env: Optional[Dict[str, str]] = None) -> ProcessResult:
    """
    Run a command, streaming its combined output into the log.
    
    Args:
        command: Command and arguments
        cwd: Working directory
        env: Extra environment variables merged over os.environ
        
    Returns:
        ProcessResult with the exit status and captured output lines
    """
    full_env = os.environ.copy()
    if env:
        full_env.update(env)
    
    logger.debug(f"Running command: {' '.join(command)}")
    if cwd:
        logger.debug(f"Working directory: {cwd}")
    
    process = subprocess.Popen(
        command,
        cwd=cwd,
        env=full_env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
        bufsize=1
    )
    
    output_lines = []
    try:
        for line in process.stdout:
            line = line.rstrip('\n')
            output_lines.append(line)
            logger.debug(line)
        return_code = process.wait()
    except KeyboardInterrupt:
        logger.warning(f"Interrupted, terminating: {' '.join(command)}")
        terminate_process_tree(process.pid)
        raise
    finally:
        process.stdout.close()
    
    return ProcessResult(command=list(command), returncode=return_code, output=output_lines)
