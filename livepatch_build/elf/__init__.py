"""
ELF and DWARF inspection of kernel binaries and generated objects.
"""

from .section_layout import SectionLayout, SectionLayoutProber
from .symbols import read_defined_symbols, read_compiler_version, is_relocatable_object

__all__ = ['SectionLayout', 'SectionLayoutProber', 'read_defined_symbols',
           'read_compiler_version', 'is_relocatable_object']
