"""Unit tests for ObjectResolver and ExecutionContext."""

import unittest
from unittest.mock import MagicMock

from declauth.authorization.context import ExecutionContext
from declauth.authorization.errors import ObjectNotFound
from declauth.authorization.resolver import Finder, ObjectResolver
from declauth.authorization.rule import Rule


class ArticleHost:
    def __init__(self):
        self.calls = 0

    def load_article(self):
        self.calls += 1
        return {"id": 3, "author_id": 9}


class TestObjectResolver(unittest.TestCase):
    """Test the load strategies of ObjectResolver."""

    def setUp(self):
        """Set up a finder mock and a request context."""
        self.finder = MagicMock(spec=Finder)
        self.finder.find.return_value = "found"
        self.resolver = ObjectResolver(self.finder)
        self.host = ArticleHost()
        self.ctx = ExecutionContext(
            identity=None, action="edit", resource="policy_rules", params={"id": "12"}, host=self.host
        )

    def test_named_method(self):
        """Test that a load method given by name is called on the host."""
        rule = Rule(["edit"], attribute_check=True, load_method="load_article")

        self.assertEqual(self.resolver.resolve(self.ctx, rule), {"id": 3, "author_id": 9})
        self.assertEqual(self.host.calls, 1)
        self.finder.find.assert_not_called()

    def test_named_method_missing(self):
        """Test that naming a method the host does not have raises AttributeError."""
        rule = Rule(["edit"], attribute_check=True, load_method="load_nothing")

        with self.assertRaises(AttributeError):
            self.resolver.resolve(self.ctx, rule)

    def test_custom_function(self):
        """Test that a callable load method receives the execution context."""
        load = MagicMock(return_value="custom")
        rule = Rule(["edit"], attribute_check=True, load_method=load)

        self.assertEqual(self.resolver.resolve(self.ctx, rule), "custom")
        load.assert_called_once_with(self.ctx)

    def test_default_finder_uses_context(self):
        """Test that the domain type is derived from the resource name when the rule names no context or model."""
        rule = Rule(["edit"], attribute_check=True)

        self.assertEqual(self.resolver.resolve(self.ctx, rule), "found")
        self.finder.find.assert_called_once_with("PolicyRule", "12")

    def test_default_finder_uses_rule_context(self):
        """Test that the rule's context takes precedence over the resource name."""
        rule = Rule(["edit"], context="people", attribute_check=True)

        self.resolver.resolve(self.ctx, rule)
        self.finder.find.assert_called_once_with("Person", "12")

    def test_default_finder_uses_model(self):
        """Test that an explicit model name is used as is."""
        rule = Rule(["edit"], context="articles", model="BlogPost", attribute_check=True)

        self.resolver.resolve(self.ctx, rule)
        self.finder.find.assert_called_once_with("BlogPost", "12")

    def test_default_finder_memoizes(self):
        """Test that the same domain type is loaded only once per context."""
        rule = Rule(["edit"], attribute_check=True)
        other_rule = Rule(["edit"], privilege="update", attribute_check=True)

        first = self.resolver.resolve(self.ctx, rule)
        second = self.resolver.resolve(self.ctx, other_rule)

        self.assertIs(first, second)
        self.finder.find.assert_called_once()
        self.assertEqual(self.ctx.loaded_objects, {"policy_rule": "found"})

    def test_memoization_is_per_context(self):
        """Test that a new context loads the object again."""
        rule = Rule(["edit"], attribute_check=True)
        other_ctx = ExecutionContext(identity=None, action="edit", resource="policy_rules", params={"id": "12"})

        self.resolver.resolve(self.ctx, rule)
        self.resolver.resolve(other_ctx, rule)

        self.assertEqual(self.finder.find.call_count, 2)

    def test_missing_id_parameter(self):
        """Test that ObjectNotFound is raised when the request has no id."""
        ctx = ExecutionContext(identity=None, action="edit", resource="articles")

        with self.assertRaises(ObjectNotFound):
            self.resolver.resolve(ctx, Rule(["edit"], attribute_check=True))

    def test_finder_failure_propagates(self):
        """Test that an exception raised by the finder is not caught."""
        self.finder.find.side_effect = ObjectNotFound(domain_type="PolicyRule", identifier="12")

        with self.assertRaises(ObjectNotFound):
            self.resolver.resolve(self.ctx, Rule(["edit"], attribute_check=True))

        self.assertEqual(self.ctx.loaded_objects, {})

    def test_no_finder(self):
        """Test that loading through the default finder fails when none is configured."""
        with self.assertRaises(RuntimeError):
            ObjectResolver().resolve(self.ctx, Rule(["edit"], attribute_check=True))


class TestExecutionContext(unittest.TestCase):
    """Test ExecutionContext.call."""

    def test_call_without_host(self):
        """Test that calling a method without a host raises AttributeError."""
        ctx = ExecutionContext(identity=None, action="show", resource="articles")

        with self.assertRaises(AttributeError):
            ctx.call("load_article")

    def test_call_non_callable(self):
        """Test that an attribute which is not callable cannot be used as a load method."""
        host = ArticleHost()
        ctx = ExecutionContext(identity=None, action="show", resource="articles", host=host)

        with self.assertRaises(AttributeError):
            ctx.call("calls")

    def test_fresh_loaded_objects(self):
        """Test that contexts do not share their loaded objects."""
        first = ExecutionContext(identity=None, action="show", resource="articles")
        second = ExecutionContext(identity=None, action="show", resource="articles")
        first.loaded_objects["article"] = object()

        self.assertEqual(second.loaded_objects, {})


if __name__ == "__main__":
    unittest.main()
