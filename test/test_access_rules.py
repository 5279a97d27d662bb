"""Unit tests for access rules and rule registries.

Tests cover:
- Rule validation, kinds and load strategies
- Taking actions over from earlier rules
- Wildcard rules
"""

import unittest

from declauth.authorization.registry import RuleRegistry
from declauth.authorization.rule import WILDCARD, LoadStrategy, Rule, RuleKind
from declauth.common.exception import InvalidRuleDefinition


class TestRule(unittest.TestCase):
    """Test construction and properties of Rule."""

    def test_actions_coerced_to_frozenset(self):
        """Test that actions given as a list are stored as a frozenset."""
        rule = Rule(["show", "index"])
        self.assertEqual(rule.actions, frozenset({"show", "index"}))

    def test_empty_action_name_rejected(self):
        """Test that an empty action name is a definition error."""
        with self.assertRaises(InvalidRuleDefinition):
            Rule(["show", ""])

    def test_non_string_action_rejected(self):
        """Test that actions must be strings."""
        with self.assertRaises(InvalidRuleDefinition):
            Rule([42])  # type: ignore[list-item]

    def test_bad_load_method_rejected(self):
        """Test that a load method must be a method name or a callable."""
        with self.assertRaises(InvalidRuleDefinition):
            Rule(["edit"], attribute_check=True, load_method=12)  # type: ignore[arg-type]

    def test_bad_predicate_rejected(self):
        """Test that a predicate must be callable."""
        with self.assertRaises(InvalidRuleDefinition):
            Rule(["edit"], predicate="is_owner")  # type: ignore[arg-type]

    def test_kind(self):
        """Test that rules with a predicate are custom rules."""
        self.assertEqual(Rule(["show"]).kind, RuleKind.STANDARD)
        self.assertEqual(Rule(["show"], predicate=lambda ctx: True).kind, RuleKind.CUSTOM)

    def test_load_strategy_without_attribute_check(self):
        """Test that no object is loaded when attributes are not checked, even with a load method."""
        rule = Rule(["edit"], load_method="load_article")
        self.assertEqual(rule.load_strategy, LoadStrategy.NONE)

    def test_load_strategy_named_method(self):
        """Test that a load method given by name is called on the host."""
        rule = Rule(["edit"], attribute_check=True, load_method="load_article")
        self.assertEqual(rule.load_strategy, LoadStrategy.NAMED_METHOD)

    def test_load_strategy_custom_function(self):
        """Test that a callable load method is called directly."""
        rule = Rule(["edit"], attribute_check=True, load_method=lambda ctx: None)
        self.assertEqual(rule.load_strategy, LoadStrategy.CUSTOM_FUNCTION)

    def test_load_strategy_default_finder(self):
        """Test that objects are found by id when no load method is given."""
        rule = Rule(["edit"], attribute_check=True)
        self.assertEqual(rule.load_strategy, LoadStrategy.DEFAULT_FINDER)

    def test_matches(self):
        """Test that a rule matches only the actions it names."""
        rule = Rule(["new", "create"])
        self.assertTrue(rule.matches("new"))
        self.assertTrue(rule.matches("create"))
        self.assertFalse(rule.matches("show"))

    def test_without_actions(self):
        """Test that removing actions returns a copy with the remaining actions."""
        rule = Rule(["new", "create"], privilege="create_users")
        reduced = rule.without_actions(["create"])

        self.assertEqual(reduced.actions, frozenset({"new"}))
        self.assertEqual(reduced.privilege, "create_users")
        self.assertEqual(rule.actions, frozenset({"new", "create"}))

    def test_without_unrelated_actions_returns_same_rule(self):
        """Test that a rule is left untouched when none of its actions are removed."""
        rule = Rule(["show"])
        self.assertIs(rule.without_actions(["edit"]), rule)

    def test_wildcard_never_removed(self):
        """Test that the wildcard action cannot be taken over."""
        rule = Rule([WILDCARD])
        self.assertIs(rule.without_actions([WILDCARD]), rule)
        self.assertTrue(rule.is_wildcard())


class TestRuleRegistry(unittest.TestCase):
    """Test registration and lookup of rules in RuleRegistry."""

    def setUp(self):
        """Create an empty registry."""
        self.registry = RuleRegistry()

    def test_empty_registry(self):
        """Test that no rule matches in an empty registry."""
        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.registry.rules_matching("index"), [])
        self.assertEqual(self.registry.wildcard_rules(), [])

    def test_register_requires_actions(self):
        """Test that a rule with no actions is rejected."""
        with self.assertRaises(InvalidRuleDefinition):
            self.registry.register([])

    def test_register_single_action_string(self):
        """Test that a single action may be given as a string."""
        rule = self.registry.register("index")
        self.assertEqual(rule.actions, frozenset({"index"}))

    def test_later_rule_takes_over_action(self):
        """Test that only the later rule matches an action claimed by two rules."""
        first = self.registry.register(["new", "create"], privilege="create_users")
        second = self.registry.register(["create"], privilege="force_create")

        self.assertEqual(self.registry.rules_matching("create"), [second])

        new_rules = self.registry.rules_matching("new")
        self.assertEqual(len(new_rules), 1)
        self.assertEqual(new_rules[0].privilege, first.privilege)
        self.assertEqual(new_rules[0].actions, frozenset({"new"}))

    def test_rule_left_without_actions_matches_nothing(self):
        """Test that a rule whose actions have all been taken over no longer matches."""
        self.registry.register(["show"], privilege="read")
        replacement = self.registry.register(["show"], privilege="read_all")

        self.assertEqual(self.registry.rules_matching("show"), [replacement])
        self.assertEqual(len(self.registry), 2)

    def test_wildcard_rules_not_returned_by_rules_matching(self):
        """Test that wildcard rules are kept apart from rules for specific actions."""
        wildcard = self.registry.register([WILDCARD], privilege="manage")
        show = self.registry.register(["show"])

        self.assertEqual(self.registry.rules_matching("show"), [show])
        self.assertEqual(self.registry.rules_matching(WILDCARD), [])
        self.assertEqual(self.registry.wildcard_rules(), [wildcard])

    def test_wildcard_survives_later_wildcard(self):
        """Test that several wildcard rules can coexist."""
        first = self.registry.register([WILDCARD], privilege="read")
        second = self.registry.register([WILDCARD], privilege="manage")

        self.assertEqual(self.registry.wildcard_rules(), [first, second])

    def test_copy_is_independent(self):
        """Test that rules added to a copy do not appear in the original."""
        self.registry.register(["index"])
        copied = self.registry.copy()
        copied.register(["show"])

        self.assertEqual(len(self.registry), 1)
        self.assertEqual(len(copied), 2)
        self.assertEqual(self.registry.rules_matching("show"), [])

    def test_copy_takes_over_without_affecting_original(self):
        """Test that taking over an action in a copy leaves the original's rule intact."""
        original = self.registry.register(["index", "show"])
        copied = self.registry.copy()
        copied.register(["show"], privilege="read")

        self.assertEqual(self.registry.rules_matching("show"), [original])


if __name__ == "__main__":
    unittest.main()
