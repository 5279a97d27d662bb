"""Privilege engine interface.

A privilege engine decides whether an identity holds a privilege in a given context, optionally taking the attributes
of the object acted upon into account. Access filters delegate to the engine for every standard rule (see
``declauth.authorization.rule.Rule``).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from declauth.authorization.errors import NotAuthorized


class PrivilegeEngine(ABC):
    """Abstract base class for privilege engines.

    Engines must not keep per-request state, as a single instance is shared by all the requests handled by a process.

    Example implementation:

        class AdminOnlyEngine(PrivilegeEngine):
            def __init__(self, engine_config: dict) -> None:
                self._admins = set(engine_config.get("admins", []))

            def permit(self, identity, privilege, context, obj=None, skip_attribute_test=False):
                return getattr(identity, "name", None) in self._admins

            def get_name(self) -> str:
                return "admin_only"

            def health_check(self) -> bool:
                return True
    """

    @abstractmethod
    def __init__(self, engine_config: dict[str, Any]) -> None:
        """Initialize the engine.

        Args:
            engine_config: Engine-specific configuration
        """

    @abstractmethod
    def permit(
        self,
        identity: Any,
        privilege: str,
        context: Optional[str],
        obj: Any = None,
        skip_attribute_test: bool = False,
    ) -> bool:
        """Decide whether ``identity`` holds ``privilege`` in ``context``.

        Args:
            identity: The requester (``None`` for anonymous requests)
            privilege: The name of the privilege required
            context: The domain the privilege applies to (e.g., "users")
            obj: The object acted upon, when attribute conditions should be checked against it
            skip_attribute_test: If ``True``, attribute conditions attached to the privilege are ignored

        Returns:
            True if the privilege is held, False otherwise

        Raises:
            AuthorizationError: The engine denies access and wishes to give a specific reason
        """

    def permit_or_raise(
        self,
        identity: Any,
        privilege: str,
        context: Optional[str],
        obj: Any = None,
        skip_attribute_test: bool = False,
    ) -> bool:
        """Same as ``permit`` but raises ``NotAuthorized`` instead of returning ``False``"""
        if not self.permit(identity, privilege, context, obj, skip_attribute_test):
            raise NotAuthorized(privilege=privilege, context=context)

        return True

    @abstractmethod
    def get_name(self) -> str:
        """Get the engine name for logging and debugging."""

    @abstractmethod
    def health_check(self) -> bool:
        """Check whether the engine is ready to make decisions (e.g., whether its grants could be loaded)."""


class DenyAllEngine(PrivilegeEngine):
    """Fail-safe engine which denies every privilege. Used when the configured engine cannot be loaded."""

    def __init__(self, engine_config: Optional[dict[str, Any]] = None) -> None:
        pass

    def permit(
        self,
        identity: Any,
        privilege: str,
        context: Optional[str],
        obj: Any = None,
        skip_attribute_test: bool = False,
    ) -> bool:
        return False

    def get_name(self) -> str:
        return "deny_all"

    def health_check(self) -> bool:
        return False
