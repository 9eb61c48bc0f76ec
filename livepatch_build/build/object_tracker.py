#!/usr/bin/env python3
"""
Changed-object tracking across the baseline and patched builds.

Every translation unit object in the tree is fingerprinted after each pass;
an object is changed when its fingerprint differs and new when the baseline
never produced it.
"""

import os
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from livepatch_build.utils.file_utils import calculate_file_hash
from .build_graph import AGGREGATE_NAMES, COMMAND_LINE, TOKEN

logger = logging.getLogger(__name__)

Fingerprints = Dict[str, str]

SOURCE_SUFFIXES = ('.c', '.S')


def is_compile_record(cmd_file: Path) -> bool:
    """
    Whether a Kbuild .cmd record describes a compile of one source file.

    Composite objects ("ld -r -o foo.o a.o b.o") also get a .cmd record;
    only a "-c" invocation naming a .c or .S source counts.
    """
    try:
        text = cmd_file.read_text(errors='replace')
    except (IOError, OSError):
        return False

    for line in text.splitlines():
        match = COMMAND_LINE.match(line)
        if not match:
            continue
        tokens = TOKEN.findall(match.group(1))
        if '-c' in tokens and any(token.endswith(SOURCE_SUFFIXES) for token in tokens):
            return True
    return False


class ObjectTracker:
    """Fingerprints compiled objects in a kernel tree"""
    
    def __init__(self, source_dir: str):
        self.source_dir = Path(source_dir)
    
    def is_translation_unit(self, relative_path: str) -> bool:
        """Whether a path names a compiled (not linked or generated) object."""
        name = os.path.basename(relative_path)
        if not name.endswith('.o'):
            return False
        if name in AGGREGATE_NAMES or name == 'vmlinux.o':
            return False
        if name.endswith('.mod.o') or name.startswith('.tmp_'):
            return False
        cmd_file = self.source_dir / os.path.dirname(relative_path) / f".{name}.cmd"
        return is_compile_record(cmd_file)
    
    def snapshot(self) -> Fingerprints:
        """Fingerprint every translation unit object in the tree."""
        fingerprints: Fingerprints = {}
        for dirpath, dirnames, filenames in os.walk(self.source_dir):
            dirnames[:] = [d for d in dirnames if not d.startswith('.')]
            for filename in filenames:
                if not filename.endswith('.o'):
                    continue
                full_path = os.path.join(dirpath, filename)
                relative_path = os.path.relpath(full_path, self.source_dir)
                if self.is_translation_unit(relative_path):
                    fingerprints[relative_path] = calculate_file_hash(full_path)
        
        logger.debug(f"Fingerprinted {len(fingerprints)} objects in {self.source_dir}")
        return fingerprints
    
    @staticmethod
    def compare(baseline: Fingerprints, patched: Fingerprints) -> Tuple[List[str], List[str]]:
        """
        Returns:
            (changed, new): objects whose fingerprint differs, and objects
            only the patched build produced, both sorted
        """
        changed = sorted(path for path, digest in patched.items()
                         if path in baseline and baseline[path] != digest)
        new = sorted(path for path in patched if path not in baseline)
        return changed, new
