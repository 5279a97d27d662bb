"""Unit tests for StaticPrivilegeEngine and DenyAllEngine."""

import os
import tempfile
import unittest
from types import SimpleNamespace

from declauth.authorization.engine import DenyAllEngine
from declauth.authorization.engines.static import StaticPrivilegeEngine
from declauth.authorization.errors import AttributeCheckFailed, NotAuthorized

GRANTS = {
    "roles": {
        "guest": {"articles": ["index", "show"]},
        "author": {
            "articles": {
                "index": None,
                "new": None,
                "create": True,
                "edit": {"author_id": "id"},
                "update": {"author_id": "id"},
            },
        },
        "admin": {"articles": "destroy"},
    }
}

GRANTS_YAML = """
roles:
  guest:
    articles: [index, show]
  author:
    articles:
      edit: {author_id: id}
"""


class TestStaticPrivilegeEngine(unittest.TestCase):
    """Test StaticPrivilegeEngine.permit."""

    def setUp(self):
        """Create an engine from the grants table above."""
        self.engine = StaticPrivilegeEngine({"grants": GRANTS})
        self.author = SimpleNamespace(id=9, roles=["author"])

    def test_name_and_health(self):
        """Test the engine name and that it is healthy when grants are given."""
        self.assertEqual(self.engine.get_name(), "static")
        self.assertTrue(self.engine.health_check())

    def test_empty_grants_unhealthy(self):
        """Test that an engine with no grants reports itself unhealthy."""
        self.assertFalse(StaticPrivilegeEngine({}).health_check())

    def test_anonymous_gets_guest_role(self):
        """Test that anonymous requests are given the guest role."""
        self.assertTrue(self.engine.permit(None, "show", "articles"))
        self.assertFalse(self.engine.permit(None, "create", "articles"))

    def test_custom_guest_role(self):
        """Test that the role given to anonymous requests can be configured."""
        engine = StaticPrivilegeEngine({"grants": GRANTS, "guest_role": "admin"})
        self.assertTrue(engine.permit(None, "destroy", "articles"))
        self.assertFalse(engine.permit(None, "show", "articles"))

    def test_unconditional_grants(self):
        """Test privileges granted without conditions, in each supported notation."""
        self.assertTrue(self.engine.permit(self.author, "new", "articles"))
        self.assertTrue(self.engine.permit(self.author, "create", "articles"))
        self.assertTrue(self.engine.permit({"roles": "admin"}, "destroy", "articles"))

    def test_wrong_context(self):
        """Test that privileges only apply in the context they are granted in."""
        self.assertFalse(self.engine.permit(self.author, "new", "comments"))
        self.assertFalse(self.engine.permit(self.author, "new", None))

    def test_identity_without_roles(self):
        """Test that an identity with no roles holds no privileges."""
        self.assertFalse(self.engine.permit(SimpleNamespace(id=1), "index", "articles"))

    def test_condition_holds(self):
        """Test that a conditional privilege applies to objects satisfying its conditions."""
        article = SimpleNamespace(author_id=9)
        self.assertTrue(self.engine.permit(self.author, "edit", "articles", article))

    def test_condition_fails(self):
        """Test that a conditional privilege does not apply to other objects."""
        article = {"author_id": 4}
        self.assertFalse(self.engine.permit(self.author, "edit", "articles", article))

    def test_condition_without_object(self):
        """Test that a conditional privilege does not apply when there is no object to check."""
        self.assertFalse(self.engine.permit(self.author, "edit", "articles"))

    def test_skip_attribute_test(self):
        """Test that conditions are ignored when attribute tests are skipped."""
        self.assertTrue(self.engine.permit(self.author, "edit", "articles", skip_attribute_test=True))

    def test_permit_or_raise_not_authorized(self):
        """Test that permit_or_raise raises NotAuthorized for privileges not granted at all."""
        with self.assertRaises(NotAuthorized) as cm:
            self.engine.permit_or_raise(self.author, "destroy", "articles")

        self.assertNotIsInstance(cm.exception, AttributeCheckFailed)
        self.assertEqual(str(cm.exception), "No privilege destroy on articles.")

    def test_permit_or_raise_attribute_check_failed(self):
        """Test that permit_or_raise raises AttributeCheckFailed when only conditions failed."""
        with self.assertRaises(AttributeCheckFailed):
            self.engine.permit_or_raise(self.author, "edit", "articles", {"author_id": 4})

    def test_permit_or_raise_granted(self):
        """Test that permit_or_raise returns True when the privilege is held."""
        self.assertTrue(self.engine.permit_or_raise(self.author, "edit", "articles", {"author_id": 9}))

    def test_malformed_grants(self):
        """Test that malformed grant tables are rejected."""
        with self.assertRaises(ValueError):
            StaticPrivilegeEngine({"grants": {"roles": ["guest"]}})

        with self.assertRaises(ValueError):
            StaticPrivilegeEngine({"grants": {"roles": {"guest": {"articles": {"show": "yes"}}}}})

    def test_grants_file(self):
        """Test that grants can be read from a YAML file."""
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            f.write(GRANTS_YAML)

        try:
            engine = StaticPrivilegeEngine({"grants_file": f.name})
        finally:
            os.unlink(f.name)

        self.assertTrue(engine.permit(None, "index", "articles"))
        self.assertTrue(engine.permit({"roles": ["author"], "id": 2}, "edit", "articles", {"author_id": 2}))


class TestDenyAllEngine(unittest.TestCase):
    """Test DenyAllEngine."""

    def test_denies_everything(self):
        """Test that every privilege is denied, even with attribute tests skipped."""
        engine = DenyAllEngine()

        self.assertFalse(engine.permit(None, "show", "articles"))
        self.assertFalse(engine.permit({"roles": ["admin"]}, "destroy", "articles", skip_attribute_test=True))
        self.assertEqual(engine.get_name(), "deny_all")
        self.assertFalse(engine.health_check())

    def test_permit_or_raise(self):
        """Test that permit_or_raise raises NotAuthorized."""
        with self.assertRaises(NotAuthorized):
            DenyAllEngine().permit_or_raise(None, "show", "articles")


if __name__ == "__main__":
    unittest.main()
