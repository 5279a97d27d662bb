import asyncio
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

from declauth.authorization.decision import Decision
from declauth.common.exception import InvalidRuleDefinition

if TYPE_CHECKING:
    from declauth.authorization.context import ExecutionContext
    from declauth.authorization.engine import PrivilegeEngine
    from declauth.authorization.resolver import ObjectResolver

# Action name which makes a rule apply to every action not claimed by a more specific rule
WILDCARD = "all"

LoadMethod = Union[str, Callable[["ExecutionContext"], Any]]
Predicate = Callable[["ExecutionContext"], Union[bool, Decision]]


class LoadStrategy(Enum):
    NONE = "none"
    NAMED_METHOD = "named_method"
    CUSTOM_FUNCTION = "custom_function"
    DEFAULT_FINDER = "default_finder"


class RuleKind(Enum):
    STANDARD = "standard"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Rule:
    """An access rule which states what is required of a requester for them to perform a set of actions.

    A standard rule is checked by asking the privilege engine whether the requester holds ``privilege`` in
    ``context``. Either may be left unset, in which case the name of the requested action and the name of the resource
    are used respectively. When ``attribute_check`` is enabled, the object acted upon is loaded and given to the engine
    so that it can evaluate attribute conditions against it. The object is loaded using ``load_method`` which may be
    the name of a method on the controller or a function accepting the execution context. If no ``load_method`` is
    given, the object is found by its ``id`` parameter using the model named by ``model`` (or, by default, the model
    named after the context).

    A custom rule has a ``predicate`` which replaces the call to the privilege engine entirely. The predicate receives
    the execution context and returns ``True``/``False`` (or a ``Decision``). It may also deny access by raising
    ``AuthorizationError``.

    Rules are immutable. When a newer rule claims some of the actions of an older one, the registry replaces the older
    rule with a copy obtained from ``without_actions``.
    """

    actions: frozenset[str]
    privilege: Optional[str] = None
    context: Optional[str] = None
    attribute_check: bool = False
    model: Optional[str] = None
    load_method: Optional[LoadMethod] = None
    predicate: Optional[Predicate] = None

    def __post_init__(self) -> None:
        if not isinstance(self.actions, frozenset):
            object.__setattr__(self, "actions", frozenset(self.actions))

        for action in self.actions:
            if not isinstance(action, str) or not action:
                raise InvalidRuleDefinition(f"action {action!r} is not a non-empty string")

        if self.load_method is not None and not isinstance(self.load_method, str) and not callable(self.load_method):
            raise InvalidRuleDefinition(
                f"load_method must be the name of a method or a callable, not {type(self.load_method).__name__}"
            )

        if self.predicate is not None and not callable(self.predicate):
            raise InvalidRuleDefinition("predicate must be callable")

    def __repr__(self) -> str:
        actions = ", ".join(sorted(self.actions))
        target = "predicate" if self.kind == RuleKind.CUSTOM else f"{self.privilege or '<action>'}"
        return f"Rule({{{actions}}} -> {target})"

    @property
    def kind(self) -> RuleKind:
        return RuleKind.CUSTOM if self.predicate is not None else RuleKind.STANDARD

    @property
    def load_strategy(self) -> LoadStrategy:
        if not self.attribute_check:
            return LoadStrategy.NONE
        if isinstance(self.load_method, str):
            return LoadStrategy.NAMED_METHOD
        if callable(self.load_method):
            return LoadStrategy.CUSTOM_FUNCTION
        return LoadStrategy.DEFAULT_FINDER

    def matches(self, action_name: str) -> bool:
        return action_name in self.actions

    def is_wildcard(self) -> bool:
        return WILDCARD in self.actions

    def without_actions(self, actions: Iterable[str]) -> "Rule":
        """Returns a copy of the rule which no longer applies to ``actions``. The wildcard is never removed."""
        removed = frozenset(actions) - {WILDCARD}

        if not self.actions & removed:
            return self

        return dataclasses.replace(self, actions=self.actions - removed)

    def evaluate(self, ctx: "ExecutionContext", engine: "PrivilegeEngine", resolver: "ObjectResolver") -> Decision:
        """Checks the rule against the request described by ``ctx``.

        Exceptions are not propagated. An ``AuthorizationError`` results in a denial with the exception as its cause
        and any other exception (including cancellation) results in an evaluation error. Either decision is marked as
        aborted so that the access filter skips the remaining rules.
        """
        if self.predicate is not None:
            return self._evaluate_predicate(ctx)

        privilege = self.privilege or ctx.action
        context = self.context or ctx.resource

        try:
            obj = resolver.resolve(ctx, self) if self.attribute_check else None
            permitted = engine.permit(
                ctx.identity, privilege, context, obj, skip_attribute_test=not self.attribute_check
            )
        except (Exception, asyncio.CancelledError) as err:
            return Decision.from_exception(err, self)

        return Decision.allow(self) if permitted else Decision.deny(self)

    def _evaluate_predicate(self, ctx: "ExecutionContext") -> Decision:
        assert self.predicate is not None

        try:
            result = self.predicate(ctx)
        except (Exception, asyncio.CancelledError) as err:
            return Decision.from_exception(err, self)

        if isinstance(result, Decision):
            # A returned denial does not end the evaluation, even when it carries a cause
            return dataclasses.replace(result, rule=result.rule or self, aborted=False)

        return Decision.allow(self) if result else Decision.deny(self)
