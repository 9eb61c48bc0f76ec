#!/usr/bin/env python3
"""
Special section layout discovery.

The diff compiler has to walk architecture specific sections (alternatives,
bug table, exception table, ...) record by record, so it needs the byte size
of each record's struct. Those sizes are read from the DWARF info of the
baseline vmlinux.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from elftools.elf.elffile import ELFFile
from elftools.common.exceptions import ELFError

from livepatch_build.errors import LayoutNotFoundError, PrerequisiteMissingError

logger = logging.getLogger(__name__)

# struct name -> environment variable read by the diff compiler
STRUCT_SIZE_VARIABLES = {
    "alt_instr": "ALT_STRUCT_SIZE",
    "bug_entry": "BUG_STRUCT_SIZE",
    "exception_table_entry": "EX_STRUCT_SIZE",
    "paravirt_patch_site": "PARA_STRUCT_SIZE",
    "fixup_entry": "FIXUP_STRUCT_SIZE",
}

SHARED_STRUCTS = ["bug_entry", "exception_table_entry"]
POWERPC_STRUCTS = ["fixup_entry"] + SHARED_STRUCTS
DEFAULT_STRUCTS = ["alt_instr"] + SHARED_STRUCTS
PARAVIRT_STRUCT = "paravirt_patch_site"


@dataclass
class SectionLayout:
    """Record sizes of the special sections, keyed by struct name."""
    sizes: Dict[str, int] = field(default_factory=dict)
    
    def __getitem__(self, struct_name: str) -> int:
        return self.sizes[struct_name]
    
    def __contains__(self, struct_name: str) -> bool:
        return struct_name in self.sizes
    
    def as_environment(self) -> Dict[str, str]:
        """Environment variables consumed by the diff compiler."""
        return {STRUCT_SIZE_VARIABLES[name]: str(size) for name, size in self.sizes.items()}


def is_powerpc(arch: str) -> bool:
    return arch.startswith("ppc64") or arch == "powerpc"


class SectionLayoutProber:
    """Reads special section struct sizes from a vmlinux with debug info."""
    
    def required_structs(self, arch: str, paravirt: bool) -> List[str]:
        """Struct names whose sizes must be known for this target."""
        if is_powerpc(arch):
            return list(POWERPC_STRUCTS)
        
        structs = list(DEFAULT_STRUCTS)
        if paravirt:
            structs.append(PARAVIRT_STRUCT)
        return structs
    
    def probe(self, vmlinux: str, arch: str, paravirt: bool) -> SectionLayout:
        """
        Find the record size of every required special section struct.
        
        Args:
            vmlinux: Baseline kernel image with DWARF debug info
            arch: Target architecture (uname -m style)
            paravirt: Whether the target was built with CONFIG_PARAVIRT
            
        Returns:
            SectionLayout with one positive size per required struct
            
        Raises:
            LayoutNotFoundError: naming the first struct whose size is missing
            PrerequisiteMissingError: if vmlinux carries no debug info
        """
        wanted = self.required_structs(arch, paravirt)
        logger.debug(f"Looking up special section structs {wanted} in {vmlinux}")
        
        found = self._find_struct_sizes(vmlinux, set(wanted))
        
        layout = SectionLayout()
        for struct_name in wanted:
            size = found.get(struct_name)
            if not size or size <= 0:
                raise LayoutNotFoundError(struct_name)
            layout.sizes[struct_name] = size
            logger.debug(f"sizeof(struct {struct_name}) = {size}")
        
        return layout
    
    def _find_struct_sizes(self, vmlinux: str, wanted: Set[str]) -> Dict[str, int]:
        found: Dict[str, int] = {}
        
        try:
            with open(vmlinux, 'rb') as f:
                elf = ELFFile(f)
                if not elf.has_dwarf_info():
                    raise PrerequisiteMissingError(f"{vmlinux} has no debug info")
                
                for name, size in self._iter_struct_sizes(elf):
                    if name in wanted and name not in found:
                        found[name] = size
                        if len(found) == len(wanted):
                            break
        except (ELFError, OSError) as e:
            raise PrerequisiteMissingError(f"can't read debug info from {vmlinux}: {e}") from e
        
        return found
    
    def _iter_struct_sizes(self, elf: ELFFile) -> Iterable:
        """Yield (name, byte size) for every defined struct in the DWARF info."""
        dwarf = elf.get_dwarf_info()
        for cu in dwarf.iter_CUs():
            for die in cu.iter_DIEs():
                if die.tag != 'DW_TAG_structure_type':
                    continue
                name_attr = die.attributes.get('DW_AT_name')
                size_attr = die.attributes.get('DW_AT_byte_size')
                # declarations carry no size
                if name_attr is None or size_attr is None:
                    continue
                name = name_attr.value
                if isinstance(name, bytes):
                    name = name.decode('utf-8', 'replace')
                yield name, size_attr.value
