#!/usr/bin/env python3
"""
(C) 2026 Joseph Tingiris (joseph.tingiris@gmail.com)

When-clause equality and key normalization tests for `bin/keybindings-merge.py`.
"""

import importlib.util
import os
import sys
import unittest


SCRIPT = os.path.normpath(os.path.join(os.path.dirname(__file__), "..", "bin", "keybindings-merge.py"))


def load_script():
    """Import the hyphenated script as a module."""
    spec = importlib.util.spec_from_file_location("keybindings_merge", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


km = load_script()


def same_when(a: str, b: str) -> bool:
    return km.parse_when_expr(a).equals(km.parse_when_expr(b))


class WhenEqualityTests(unittest.TestCase):
    def test_and_operand_order(self) -> None:
        self.assertTrue(same_when("editorFocus && textInputFocus", "textInputFocus && editorFocus"))

    def test_or_operand_order_and_nesting(self) -> None:
        self.assertTrue(same_when("a || (b && c)", "(c && b) || a"))

    def test_whitespace_and_operator_spacing(self) -> None:
        self.assertTrue(same_when("resourceExtname==.md", "resourceExtname  ==  .md"))
        self.assertTrue(same_when("editorFocus&&!inputFocus", "editorFocus && !inputFocus"))

    def test_duplicate_operands(self) -> None:
        self.assertTrue(same_when("a && a && b", "b && a"))
        self.assertTrue(same_when("!(a && a)", "!a"))

    def test_double_negation(self) -> None:
        self.assertTrue(same_when("!!editorFocus", "editorFocus"))

    def test_boolean_comparisons(self) -> None:
        self.assertTrue(same_when("config.foo == true", "config.foo"))
        self.assertTrue(same_when("config.foo != true", "!config.foo"))
        self.assertTrue(same_when("config.foo == false", "!config.foo"))

    def test_quoted_values(self) -> None:
        self.assertTrue(same_when("editorLangId == 'go'", "editorLangId == go"))

    def test_redundant_parentheses(self) -> None:
        self.assertTrue(same_when("(a && b) && c", "a && (b && c)"))

    def test_different_expressions(self) -> None:
        self.assertFalse(same_when("editorFocus", "!editorFocus"))
        self.assertFalse(same_when("a && b", "a || b"))
        self.assertFalse(same_when("a && (b || c)", "(a && b) || c"))

    def test_regex_literal_is_kept_intact(self) -> None:
        canonical = km.canonicalize_when("resourceFilename =~ /a && b/")
        self.assertEqual(canonical, "resourceFilename =~ /a && b/")

    def test_negated_comparison_keeps_parentheses(self) -> None:
        self.assertEqual(km.canonicalize_when("!(editorLangId == 'go')"), "!(editorLangId == go)")
        self.assertEqual(km.canonicalize_when("!editorLangId == go"), "!(editorLangId == go)")
        self.assertEqual(km.canonicalize_when("!editorFocus"), "!editorFocus")

    def test_empty_clause_is_absent(self) -> None:
        self.assertIsNone(km.parse_when_expr(None))
        self.assertIsNone(km.parse_when_expr("   "))
        self.assertEqual(km.canonicalize_when(""), "")


class KeyNormalizationTests(unittest.TestCase):
    def test_modifier_order_and_case(self) -> None:
        self.assertEqual(km.normalize_key_for_compare("Shift+Alt+Ctrl+K"), "ctrl+shift+alt+k")

    def test_modifier_aliases(self) -> None:
        self.assertEqual(km.normalize_key_for_compare("cmd+k cmd+s"), "meta+k meta+s")
        self.assertEqual(km.normalize_key_for_compare("control+option+x"), "ctrl+alt+x")

    def test_duplicate_modifiers(self) -> None:
        self.assertEqual(km.normalize_key_for_compare("ctrl+ctrl+a"), "ctrl+a")

    def test_plus_literal(self) -> None:
        self.assertEqual(km.normalize_key_for_compare("Ctrl++"), "ctrl++")
        self.assertEqual(km.normalize_key_for_compare("+"), "+")

    def test_unknown_modifiers_sorted_last(self) -> None:
        self.assertEqual(km.normalize_key_for_compare("numlock+ctrl+capslock+a"), "ctrl+capslock+numlock+a")

    def test_build_normalized_keys(self) -> None:
        bindings = [km.Keybinding(key="Ctrl+A", command="x"), km.Keybinding(key="ctrl+a", command="y")]
        self.assertEqual(km.build_normalized_keys(bindings), {"Ctrl+A": "ctrl+a", "ctrl+a": "ctrl+a"})

    def test_missing_table_entry_falls_back_to_raw_key(self) -> None:
        self.assertEqual(km.lookup_normalized_key({}, "Ctrl+A"), "Ctrl+A")


if __name__ == "__main__":
    unittest.main()
