"""
Checks run on the finished patch module before it is shipped.
"""

from .symbol_verifier import SymbolClosure, SymbolClosureVerifier, SHADOW_RUNTIME_SYMBOLS

__all__ = ['SymbolClosure', 'SymbolClosureVerifier', 'SHADOW_RUNTIME_SYMBOLS']
