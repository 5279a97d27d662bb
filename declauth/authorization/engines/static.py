"""Static privilege engine for declauth.

This engine grants privileges to roles according to a fixed table, which is either given directly or read from a YAML
file. The table maps each role to the contexts it has privileges in, and each context to the privileges granted::

    roles:
      guest:
        articles: [index, show]
      author:
        articles:
          index:
          show:
          new:
          create:
          edit: {author_id: id}
          update: {author_id: id}
      admin:
        articles: [index, show, new, create, edit, update, destroy]

A privilege may be listed on its own, in which case it is granted unconditionally, or mapped to a set of attribute
conditions. Each condition names an attribute of the object acted upon and an attribute of the identity which must be
equal for the privilege to apply. In the example above, authors may only edit the articles whose ``author_id`` is
their own ``id``.

The roles of an identity are read from its ``roles`` attribute (or ``"roles"`` key, for identities given as mappings).
Anonymous requests (where the identity is ``None``) are given the guest role only.

This engine is intentionally simple. It has no notion of role hierarchies or privilege implication; deployments
needing these should provide their own ``PrivilegeEngine``.
"""

from typing import Any, Iterable, Mapping, Optional

from declauth import config, declauth_logging
from declauth.authorization.engine import PrivilegeEngine
from declauth.authorization.errors import AttributeCheckFailed, NotAuthorized

logger = declauth_logging.init_logging("authorization")

# Conditions of a privilege granted without conditions
UNCONDITIONAL: Mapping[str, str] = {}


def _attribute(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)

    return getattr(source, name, None)


class StaticPrivilegeEngine(PrivilegeEngine):
    """Privilege engine backed by a static table of role grants (see module documentation for the table format)"""

    def __init__(self, engine_config: dict[str, Any]) -> None:
        """Initialize StaticPrivilegeEngine.

        Args:
            engine_config: May contain "grants" (the table itself), "grants_file" (path of a YAML file containing the
                           table) and "guest_role" (the role given to anonymous requests, "guest" by default)

        Raises:
            ValueError: The table is malformed or the file cannot be parsed
            OSError: The grants file cannot be read
        """
        self._guest_role: str = engine_config.get("guest_role") or "guest"

        grants = engine_config.get("grants")

        if grants is None and engine_config.get("grants_file"):
            grants = config.load_yaml(engine_config["grants_file"])

        self._grants = self._parse_grants(grants or {})
        logger.info("Initialized StaticPrivilegeEngine with %d role(s)", len(self._grants))

    @staticmethod
    def _parse_grants(table: Mapping[str, Any]) -> dict[str, dict[str, dict[str, Mapping[str, str]]]]:
        roles = table.get("roles", table)

        if not isinstance(roles, Mapping):
            raise ValueError("grants must map role names to contexts")

        parsed: dict[str, dict[str, dict[str, Mapping[str, str]]]] = {}

        for role, contexts in roles.items():
            if not isinstance(contexts, Mapping):
                raise ValueError(f"grants for role '{role}' must map context names to privileges")

            parsed[str(role)] = {}

            for context, privileges in contexts.items():
                parsed[str(role)][str(context)] = StaticPrivilegeEngine._parse_privileges(role, context, privileges)

        return parsed

    @staticmethod
    def _parse_privileges(role: str, context: str, privileges: Any) -> dict[str, Mapping[str, str]]:
        if privileges is None:
            return {}

        if isinstance(privileges, str):
            return {privileges: UNCONDITIONAL}

        if isinstance(privileges, Mapping):
            parsed: dict[str, Mapping[str, str]] = {}

            for privilege, conditions in privileges.items():
                if conditions is None or conditions is True:
                    parsed[str(privilege)] = UNCONDITIONAL
                elif isinstance(conditions, Mapping):
                    parsed[str(privilege)] = {str(k): str(v) for k, v in conditions.items()}
                else:
                    raise ValueError(
                        f"conditions for privilege '{privilege}' of role '{role}' in context '{context}' must be a "
                        f"mapping of object attributes to identity attributes"
                    )

            return parsed

        if isinstance(privileges, Iterable):
            return {str(privilege): UNCONDITIONAL for privilege in privileges}

        raise ValueError(f"privileges of role '{role}' in context '{context}' must be a list or a mapping")

    def roles_of(self, identity: Any) -> list[str]:
        if identity is None:
            return [self._guest_role]

        roles = _attribute(identity, "roles")

        if isinstance(roles, str):
            return [roles]

        return [str(role) for role in roles or []]

    def _conditions(self, role: str, privilege: str, context: Optional[str]) -> Optional[Mapping[str, str]]:
        return self._grants.get(role, {}).get(context or "", {}).get(privilege)

    @staticmethod
    def _conditions_hold(conditions: Mapping[str, str], identity: Any, obj: Any) -> bool:
        if obj is None:
            return False

        return all(
            _attribute(obj, obj_attr) == _attribute(identity, identity_attr)
            for obj_attr, identity_attr in conditions.items()
        )

    def _check(
        self, identity: Any, privilege: str, context: Optional[str], obj: Any, skip_attribute_test: bool
    ) -> tuple[bool, bool]:
        """Returns whether the privilege is granted and whether it was granted to any role subject to conditions"""
        conditional = False

        for role in self.roles_of(identity):
            conditions = self._conditions(role, privilege, context)

            if conditions is None:
                continue

            if skip_attribute_test or not conditions:
                return True, conditional

            conditional = True

            if self._conditions_hold(conditions, identity, obj):
                return True, conditional

        return False, conditional

    def permit(
        self,
        identity: Any,
        privilege: str,
        context: Optional[str],
        obj: Any = None,
        skip_attribute_test: bool = False,
    ) -> bool:
        permitted, _ = self._check(identity, privilege, context, obj, skip_attribute_test)
        return permitted

    def permit_or_raise(
        self,
        identity: Any,
        privilege: str,
        context: Optional[str],
        obj: Any = None,
        skip_attribute_test: bool = False,
    ) -> bool:
        permitted, conditional = self._check(identity, privilege, context, obj, skip_attribute_test)

        if permitted:
            return True

        if conditional:
            raise AttributeCheckFailed(privilege=privilege, context=context)

        raise NotAuthorized(privilege=privilege, context=context)

    def get_name(self) -> str:
        return "static"

    def health_check(self) -> bool:
        return bool(self._grants)
