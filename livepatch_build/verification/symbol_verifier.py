#!/usr/bin/env python3
"""
Symbol closure verification.

Every symbol the patched build could not resolve must be defined by the
finished module itself, or by the shadow runtime when the target kernel has
no native live-patch support. Otherwise the kernel's module loader would
refuse the module, or load it with dangling references.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Set

from livepatch_build.errors import SymbolError
from livepatch_build.elf.symbols import read_defined_symbols

# Provided by the kpatch core module when CONFIG_LIVEPATCH is absent
SHADOW_RUNTIME_SYMBOLS = frozenset([
    "kpatch_shadow_alloc",
    "kpatch_shadow_free",
    "kpatch_shadow_get",
    "kpatch_register",
    "kpatch_unregister",
    "kpatch_root_kobj",
])


@dataclass(frozen=True)
class SymbolClosure:
    """Symbols the module needs versus symbols available to it"""
    required: FrozenSet[str]
    provided: FrozenSet[str]
    
    @property
    def unsatisfied(self) -> Set[str]:
        return set(self.required - self.provided)
    
    @property
    def is_satisfied(self) -> bool:
        return not self.unsatisfied


class SymbolClosureVerifier:
    """Cross-checks unresolved build references against the module's definitions"""
    
    def __init__(self):
        self.logger = logging.getLogger(__name__)
    
    def closure(self, undefined_symbols: Iterable[str], module_symbols: Iterable[str],
                uses_shadow_runtime: bool) -> SymbolClosure:
        provided = set(module_symbols)
        if uses_shadow_runtime:
            provided |= SHADOW_RUNTIME_SYMBOLS
        return SymbolClosure(required=frozenset(undefined_symbols), provided=frozenset(provided))
    
    def verify(self, undefined_symbols: Iterable[str], module_path: str,
               uses_shadow_runtime: bool) -> SymbolClosure:
        """
        Args:
            undefined_symbols: Names from the patched build's undefined diagnostics
            module_path: Finished patch module
            uses_shadow_runtime: Target kernel lacks native live-patch support
            
        Returns:
            The satisfied SymbolClosure
            
        Raises:
            SymbolError: listing every unsatisfied symbol
        """
        self.logger.info("Checking for undefined symbols")
        closure = self.closure(undefined_symbols, read_defined_symbols(module_path),
                               uses_shadow_runtime)
        
        unsatisfied = closure.unsatisfied
        if unsatisfied:
            for symbol in sorted(unsatisfied):
                self.logger.error(f"Undefined symbol: {symbol}")
            raise SymbolError(unsatisfied)
        
        self.logger.debug(f"All {len(closure.required)} unresolved build reference(s) satisfied")
        return closure
