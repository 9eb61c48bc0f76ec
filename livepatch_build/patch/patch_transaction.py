#!/usr/bin/env python3
"""
Patch transaction for the live-patch build.

Applies an ordered list of patches to the kernel source with a dry run before
each real application, and reverts everything that was applied, in reverse
order, when asked or when any patch fails.
"""

import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import List
from dataclasses import dataclass, field
from enum import Enum

from livepatch_build.errors import TransactionError


class TransactionState(Enum):
    """Lifecycle of a patch transaction."""
    PENDING = "pending"
    APPLIED = "applied"
    REVERTING = "reverting"
    REVERTED = "reverted"


@dataclass
class PatchResult:
    """Result of one patch command."""
    patch_file: str
    success: bool
    message: str
    conflicts: List[str] = field(default_factory=list)


class PatchTransaction:
    """
    Ordered patch set applied to a kernel tree as one reversible unit.
    
    The applied count only grows while applying and only shrinks while
    reverting, so revert_all() may be called any number of times.
    """
    
    def __init__(self, source_dir: str, patch_files: List[str]):
        """
        Initialize the transaction.
        
        Args:
            source_dir: Path to kernel source directory
            patch_files: Patch files in application order (applied with -p1)
        """
        self.source_dir = Path(source_dir)
        self.patch_files = [str(Path(p).absolute()) for p in patch_files]
        self.state = TransactionState.PENDING
        self.applied_count = 0
        self.logger = logging.getLogger(__name__)
    
    @property
    def applied_patches(self) -> List[str]:
        return self.patch_files[:self.applied_count]
    
    def apply(self) -> "PatchTransaction":
        """
        Apply every patch in order.
        
        Raises:
            TransactionError: if a patch fails its dry run or real application;
                everything applied so far is reverted first
        """
        if self.state in (TransactionState.APPLIED, TransactionState.REVERTING):
            raise TransactionError(self.patch_files[0] if self.patch_files else "<none>",
                                   f"transaction is already {self.state.value}")
        
        for patch_file in self.patch_files:
            if not Path(patch_file).is_file():
                self.revert_all()
                raise TransactionError(patch_file, "patch file not found")
            
            dry_run = self._run_patch(patch_file, dry_run=True)
            if not dry_run.success:
                self.revert_all()
                raise TransactionError(patch_file, dry_run.message)
            
            result = self._run_patch(patch_file)
            if not result.success:
                self.revert_all()
                raise TransactionError(patch_file, result.message)
            
            self.applied_count += 1
            self.state = TransactionState.APPLIED
            self.logger.debug(f"Applied patch {patch_file} ({self.applied_count}/{len(self.patch_files)})")
        
        self.state = TransactionState.APPLIED
        return self
    
    def revert_all(self):
        """
        Revert applied patches in reverse order.
        
        A no-op when nothing is applied.
        
        Raises:
            TransactionError: if a reverse application failed; the remaining
                patches are still reverted before raising
        """
        if self.state != TransactionState.APPLIED:
            return
        
        self.state = TransactionState.REVERTING
        failed: List[PatchResult] = []
        
        try:
            while self.applied_count > 0:
                patch_file = self.patch_files[self.applied_count - 1]
                result = self._run_patch(patch_file, reverse=True)
                if not result.success:
                    self.logger.error(f"Failed to revert {patch_file}: {result.message}")
                    failed.append(result)
                else:
                    self.logger.debug(f"Reverted patch {patch_file}")
                self.applied_count -= 1
        finally:
            # patches left applied by an unexpected error stay revertible
            if self.applied_count > 0:
                self.state = TransactionState.APPLIED
            else:
                self.state = TransactionState.REVERTED
            self._refresh_git_index()
        
        if failed:
            raise TransactionError(failed[0].patch_file, "failed to revert patch")
    
    @contextmanager
    def applied(self):
        """
        Apply the patches for the duration of a with-block.
        
        When the block raises, a failing revert is logged and the block's
        exception propagates.
        """
        self.apply()
        try:
            yield self
        except BaseException:
            try:
                self.revert_all()
            except TransactionError as e:
                self.logger.error(f"Revert after failure also failed: {e}")
            raise
        self.revert_all()
    
    def _build_patch_command(self, patch_file: str, dry_run: bool = False, reverse: bool = False) -> List[str]:
        """Build the patch command with appropriate options."""
        cmd = ['patch', '-p1']
        
        if reverse:
            cmd.append('-R')
        else:
            cmd.append('-N')
        
        if dry_run:
            cmd.append('--dry-run')
        
        cmd.extend(['-i', patch_file])
        return cmd
    
    def _run_patch(self, patch_file: str, dry_run: bool = False, reverse: bool = False) -> PatchResult:
        cmd = self._build_patch_command(patch_file, dry_run, reverse)
        result = subprocess.run(
            cmd,
            cwd=self.source_dir,
            capture_output=True,
            text=True
        )
        
        output = (result.stdout or "") + (result.stderr or "")
        for line in output.splitlines():
            self.logger.debug(line)
        
        if result.returncode == 0:
            return PatchResult(patch_file=patch_file, success=True, message="ok")
        
        conflicts = self._detect_conflicts(output)
        message = conflicts[0] if conflicts else f"patch exited with status {result.returncode}"
        return PatchResult(patch_file=patch_file, success=False, message=message, conflicts=conflicts)
    
    def _detect_conflicts(self, output: str) -> List[str]:
        """Detect conflicts from patch command output."""
        conflict_indicators = [
            'failed',
            'rejected',
            'reversed (or previously applied)',
            "can't find file",
            'malformed patch'
        ]
        
        conflicts = []
        for line in output.split('\n'):
            lowered = line.lower()
            if any(indicator in lowered for indicator in conflict_indicators):
                conflicts.append(line.strip())
        return conflicts
    
    def _refresh_git_index(self):
        """Resync the git index with a tree whose files were rewritten in place."""
        if not (self.source_dir / ".git").exists():
            return
        
        result = subprocess.run(
            ['git', 'update-index', '-q', '--refresh'],
            cwd=self.source_dir,
            capture_output=True,
            text=True
        )
        if result.returncode != 0:
            self.logger.debug(f"git update-index reported stale entries: {result.stdout.strip()}")
