from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from declauth import declauth_logging
from declauth.authorization.errors import ObjectNotFound
from declauth.authorization.rule import LoadStrategy
from declauth.inflection import classify, underscore

if TYPE_CHECKING:
    from declauth.authorization.context import ExecutionContext
    from declauth.authorization.rule import Rule

logger = declauth_logging.init_logging("authorization")


class Finder(ABC):
    """Locates domain objects by type name and identifier on behalf of the object resolver"""

    @abstractmethod
    def find(self, domain_type: str, identifier: Any) -> Any:
        """Returns the object of type ``domain_type`` (e.g., ``"PolicyRule"``) identified by ``identifier``

        :raises: :class:`ObjectNotFound`: no such object exists
        """


class ObjectResolver:
    """Produces the object that an attribute-checking rule is evaluated against.

    The object is obtained in one of three ways, depending on the rule's load strategy:

    * ``NAMED_METHOD``: by calling the method of that name on the host (usually the controller)
    * ``CUSTOM_FUNCTION``: by calling the given function with the execution context
    * ``DEFAULT_FINDER``: by asking the finder for the object whose identifier is given by the ``id`` request
      parameter. The type of object defaults to the singular of the rule's context (e.g., ``"users"`` gives
      ``"User"``). Objects found this way are memoized in the execution context so that each is loaded at most once
      per request.
    """

    ID_PARAM = "id"

    def __init__(self, finder: Optional[Finder] = None) -> None:
        self._finder = finder

    @property
    def finder(self) -> Optional[Finder]:
        return self._finder

    def domain_type_for(self, ctx: "ExecutionContext", rule: "Rule") -> str:
        if rule.model:
            return rule.model

        return classify(rule.context or ctx.resource)

    def resolve(self, ctx: "ExecutionContext", rule: "Rule") -> Any:
        """
        :raises: :class:`ObjectNotFound`: the default finder could not locate the object
        :raises: :class:`Exception`: any exception raised by a load method
        """
        strategy = rule.load_strategy

        if strategy == LoadStrategy.NAMED_METHOD:
            return ctx.call(rule.load_method)  # type: ignore[arg-type]

        if strategy == LoadStrategy.CUSTOM_FUNCTION:
            return rule.load_method(ctx)  # type: ignore[misc, operator]

        return self._find(ctx, rule)

    def _find(self, ctx: "ExecutionContext", rule: "Rule") -> Any:
        domain_type = self.domain_type_for(ctx, rule)
        memo_key = underscore(domain_type)

        if memo_key in ctx.loaded_objects:
            return ctx.loaded_objects[memo_key]

        if self._finder is None:
            raise RuntimeError(f"no finder is configured to load {domain_type} for action '{ctx.action}'")

        identifier = ctx.params.get(self.ID_PARAM)

        if identifier is None:
            raise ObjectNotFound(f"cannot load {domain_type} as the request has no '{self.ID_PARAM}' parameter")

        logger.debug("Loading %s %s for access check on '%s'", domain_type, identifier, ctx.action)
        obj = self._finder.find(domain_type, identifier)
        ctx.loaded_objects[memo_key] = obj

        return obj
