"""
Source patch handling for the live-patch build.

This module provides the patch transaction: dry-run checked application of
an ordered patch list against the kernel tree and its idempotent reversal.
"""

from .patch_transaction import PatchTransaction, PatchResult, TransactionState

__all__ = ['PatchTransaction', 'PatchResult', 'TransactionState']
