#!/usr/bin/env python3
"""
Symbol table and metadata helpers for kernel ELF files.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Set

import magic
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection
from elftools.common.exceptions import ELFError

from livepatch_build.errors import StagingError

logger = logging.getLogger(__name__)

EXPORTED_BINDINGS = ('STB_GLOBAL', 'STB_WEAK')
EXPORTED_TYPES = ('STT_FUNC', 'STT_OBJECT', 'STT_NOTYPE')


def read_defined_symbols(path: str) -> Set[str]:
    """
    Names of the global and weak symbols an ELF file defines.
    
    Args:
        path: ELF object or module
        
    Returns:
        Set of symbol names with a defined section index
    """
    symbols = set()
    try:
        with open(path, 'rb') as f:
            elf = ELFFile(f)
            for section in elf.iter_sections():
                if not isinstance(section, SymbolTableSection):
                    continue
                for symbol in section.iter_symbols():
                    if symbol['st_info']['bind'] not in EXPORTED_BINDINGS:
                        continue
                    if symbol['st_info']['type'] not in EXPORTED_TYPES:
                        continue
                    if symbol['st_shndx'] == 'SHN_UNDEF':
                        continue
                    if symbol.name:
                        symbols.add(symbol.name)
    except (ELFError, OSError) as e:
        raise StagingError(f"can't read symbols from {path}: {e}") from e
    
    return symbols


def read_compiler_version(vmlinux: str) -> Optional[str]:
    """
    Compiler version recorded in the .comment section, e.g.
    "GCC: (GNU) 8.3.1 20190311" -> "8.3.1 20190311".
    """
    try:
        with open(vmlinux, 'rb') as f:
            elf = ELFFile(f)
            section = elf.get_section_by_name('.comment')
            if section is None:
                return None
            data = section.data()
    except (ELFError, OSError) as e:
        logger.warning(f"Could not read .comment from {vmlinux}: {e}")
        return None
    
    for entry in data.split(b'\0'):
        text = entry.decode('utf-8', 'replace').strip()
        if text.startswith('GCC:'):
            return strip_compiler_banner(text[len('GCC:'):])
    return None


def strip_compiler_banner(text: str) -> str:
    """Drop the leading program and "(vendor)" tokens from a version banner."""
    text = text.strip()
    text = re.sub(r'^[\w.+-]*\s*\([^)]*\)\s*', '', text)
    return text.strip()


def is_relocatable_object(path: str) -> bool:
    """Whether libmagic identifies the file as an ELF relocatable object."""
    if not Path(path).is_file():
        return False
    description = magic.from_file(str(path))
    return 'ELF' in description and 'relocatable' in description
