#!/usr/bin/env python3
"""
File utilities for the live-patch build pipeline.
Provides hashing, directory creation and mirrored copies of build artifacts.
"""

import shutil
import hashlib
from pathlib import Path

from livepatch_build.errors import StagingError


def ensure_directory(path: str) -> Path:
    """
    Ensure a directory exists, creating it if necessary.
    
    Args:
        path: Directory path to create
        
    Returns:
        Path object for the directory
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def calculate_file_hash(file_path: str, algorithm: str = 'sha256') -> str:
    """
    Calculate hash of a file.
    
    Args:
        file_path: Path to file
        algorithm: Hash algorithm to use
        
    Returns:
        Hex digest of file hash
    """
    hash_obj = hashlib.new(algorithm)
    
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b""):
            hash_obj.update(chunk)
            
    return hash_obj.hexdigest()


def stage_file(source_root: Path, relative_path: str, destination_root: Path) -> Path:
    """
    Copy source_root/relative_path to destination_root/relative_path.
    
    Args:
        source_root: Tree the file is copied from
        relative_path: Path of the file inside both trees
        destination_root: Tree the file is copied into
        
    Returns:
        Path of the staged copy
        
    Raises:
        StagingError: if the copy fails
    """
    source = Path(source_root) / relative_path
    destination = Path(destination_root) / relative_path
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except (IOError, OSError) as e:
        raise StagingError(f"failed to stage {source} -> {destination}: {e}") from e
    return destination
