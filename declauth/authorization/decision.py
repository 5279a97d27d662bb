import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from declauth.authorization.errors import AuthorizationError

if TYPE_CHECKING:
    from declauth.authorization.rule import Rule


class DecisionReason(Enum):
    """Why an access filter allowed or denied a request.

    ``EVALUATION_DENIED`` and ``EVALUATION_ERROR`` both result in the request being denied. They are kept apart so that
    an explicit denial (by the privilege engine or a filter predicate) can be told from a failure to reach a decision
    (e.g., a database error while loading the object to check).
    """

    ALLOWED = "allowed"
    NO_MATCHING_RULE = "no_matching_rule"
    EVALUATION_DENIED = "evaluation_denied"
    EVALUATION_ERROR = "evaluation_error"


@dataclass(frozen=True)
class Decision:
    """The outcome of evaluating the access rules which apply to a request.

    Attributes:
        allowed: Whether the request may proceed
        reason: Why the request was allowed or denied
        cause: The exception which led to the denial, if any
        rule: The rule which produced the decision, if a single rule can be singled out
        aborted: Whether the decision came from an exception raised during evaluation. Such a decision ends the
            evaluation of the remaining rules.
    """

    allowed: bool
    reason: DecisionReason
    cause: Optional[BaseException] = None
    rule: Optional["Rule"] = None
    aborted: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def allow(cls, rule: Optional["Rule"] = None) -> "Decision":
        return cls(True, DecisionReason.ALLOWED, rule=rule)

    @classmethod
    def deny(cls, rule: Optional["Rule"] = None, cause: Optional[BaseException] = None) -> "Decision":
        return cls(False, DecisionReason.EVALUATION_DENIED, cause=cause, rule=rule)

    @classmethod
    def error(cls, cause: BaseException, rule: Optional["Rule"] = None) -> "Decision":
        return cls(False, DecisionReason.EVALUATION_ERROR, cause=cause, rule=rule)

    @classmethod
    def from_exception(cls, err: BaseException, rule: Optional["Rule"] = None) -> "Decision":
        """Converts an exception raised while evaluating ``rule`` into a denial"""
        if isinstance(err, AuthorizationError):
            decision = cls.deny(rule, err)
        else:
            decision = cls.error(err, rule)

        return dataclasses.replace(decision, aborted=True)

    @classmethod
    def no_matching_rule(cls) -> "Decision":
        return cls(False, DecisionReason.NO_MATCHING_RULE)

    def __bool__(self) -> bool:
        return self.allowed

    def describe(self) -> str:
        """Returns a description of the decision for use in log messages (not suitable for showing to API consumers)"""
        if self.allowed:
            return "allowed"

        if self.reason == DecisionReason.NO_MATCHING_RULE:
            return "no matching access rule"

        detail = f"{type(self.cause).__name__}: {self.cause}" if self.cause else "privilege not granted"

        if self.reason == DecisionReason.EVALUATION_ERROR:
            return f"error while evaluating access rule ({detail})"

        return f"denied ({detail})"
