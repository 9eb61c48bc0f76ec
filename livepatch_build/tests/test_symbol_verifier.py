#!/usr/bin/env python3
"""
Tests for symbol closure verification.
"""

import unittest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from livepatch_build.errors import SymbolError
from livepatch_build.verification.symbol_verifier import SymbolClosureVerifier


class TestSymbolClosureVerifier(unittest.TestCase):
    """Test cases for SymbolClosureVerifier."""

    def setUp(self):
        self.verifier = SymbolClosureVerifier()

    def test_closure_is_set_difference(self):
        closure = self.verifier.closure({"a", "b", "c"}, {"b", "x"}, uses_shadow_runtime=False)

        self.assertEqual(closure.unsatisfied, {"a", "c"})
        self.assertFalse(closure.is_satisfied)

    def test_empty_closure(self):
        closure = self.verifier.closure(set(), {"helper"}, uses_shadow_runtime=False)
        self.assertTrue(closure.is_satisfied)

    def test_shadow_runtime_symbols(self):
        undefined = {"kpatch_shadow_alloc", "kpatch_shadow_get"}

        self.assertTrue(self.verifier.closure(undefined, set(), uses_shadow_runtime=True).is_satisfied)
        self.assertEqual(self.verifier.closure(undefined, set(), uses_shadow_runtime=False).unsatisfied,
                         undefined)

    @patch('livepatch_build.verification.symbol_verifier.read_defined_symbols')
    def test_verify_satisfied(self, mock_read):
        mock_read.return_value = {"new_helper", "copy_process"}

        closure = self.verifier.verify({"new_helper"}, "/tmp/livepatch-fix.ko", uses_shadow_runtime=False)

        mock_read.assert_called_once_with("/tmp/livepatch-fix.ko")
        self.assertEqual(closure.required, frozenset({"new_helper"}))

    @patch('livepatch_build.verification.symbol_verifier.read_defined_symbols')
    def test_verify_lists_every_unsatisfied_symbol(self, mock_read):
        mock_read.return_value = {"copy_process"}

        with self.assertRaises(SymbolError) as context:
            self.verifier.verify({"zeta", "alpha", "copy_process"}, "/tmp/m.ko", uses_shadow_runtime=False)

        self.assertEqual(context.exception.symbols, ["alpha", "zeta"])
        self.assertEqual(str(context.exception), "unsatisfied symbols: alpha zeta")


if __name__ == '__main__':
    unittest.main()
