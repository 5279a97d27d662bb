import logging
from typing import Optional, Sequence

from declauth import declauth_logging
from declauth.authorization.context import ExecutionContext
from declauth.authorization.decision import Decision, DecisionReason
from declauth.authorization.engine import PrivilegeEngine
from declauth.authorization.registry import RuleRegistry
from declauth.authorization.resolver import ObjectResolver
from declauth.authorization.rule import Rule

logger = declauth_logging.init_logging("authorization")


class AccessFilter:
    """Decides whether a request may proceed according to the access rules declared for a resource.

    The rules which apply to an action are those which name the action explicitly or, if there are none, the wildcard
    rules. When no rule applies at all, access is denied. Otherwise, every applicable rule must allow the request. All
    applicable rules are evaluated, in the order they were declared, even after one of them has denied access. The only
    exception is when a rule raises an exception while being evaluated, in which case the remaining rules are skipped
    and the exception is reported as the cause of the denial.

    ``decide`` never raises: every failure is converted into a denial and recorded in the returned ``Decision``.
    """

    def __init__(
        self, registry: RuleRegistry, engine: PrivilegeEngine, resolver: Optional[ObjectResolver] = None
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._resolver = resolver or ObjectResolver()

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    @property
    def engine(self) -> PrivilegeEngine:
        return self._engine

    @property
    def resolver(self) -> ObjectResolver:
        return self._resolver

    def applicable_rules(self, action_name: str) -> list[Rule]:
        return self._registry.rules_matching(action_name) or self._registry.wildcard_rules()

    def decide(self, action_name: str, ctx: ExecutionContext) -> Decision:
        rules = self.applicable_rules(action_name)

        if not rules:
            return Decision.no_matching_rule()

        return self._evaluate_all(rules, ctx)

    def _evaluate_all(self, rules: Sequence[Rule], ctx: ExecutionContext) -> Decision:
        denial: Optional[Decision] = None

        for rule in rules:
            decision = rule.evaluate(ctx, self._engine, self._resolver)
            logger.debug("Access rule %r for '%s': %s", rule, ctx.action, decision.describe())

            if decision.allowed:
                continue

            if decision.aborted:
                # A raised exception ends the evaluation of the remaining rules
                return decision

            if denial is None:
                denial = decision

        if denial is not None:
            return denial

        return Decision.allow(rules[0] if len(rules) == 1 else None)


# Log level used by the host when reporting a decision of each kind
DECISION_LOG_LEVELS = {
    DecisionReason.ALLOWED: logging.DEBUG,
    DecisionReason.NO_MATCHING_RULE: logging.WARNING,
    DecisionReason.EVALUATION_DENIED: logging.INFO,
    DecisionReason.EVALUATION_ERROR: logging.ERROR,
}


def log_decision(decision: Decision, resource: str, action: str, log: Optional[logging.Logger] = None) -> None:
    log = log or logger
    level = DECISION_LOG_LEVELS[decision.reason]

    if decision.allowed:
        declauth_logging.log_with_level(log, level, "Permission granted for %s.%s", resource, action)
    elif decision.reason == DecisionReason.NO_MATCHING_RULE:
        declauth_logging.log_with_level(
            log, level, "Permission denied: No matching filter access rule found for %s.%s", resource, action
        )
    elif decision.reason == DecisionReason.EVALUATION_ERROR:
        declauth_logging.log_with_level(
            log,
            level,
            "Permission denied for %s.%s: %s",
            resource,
            action,
            decision.describe(),
            exc_info=decision.cause,
        )
    else:
        declauth_logging.log_with_level(
            log, level, "Permission denied for %s.%s: %s", resource, action, decision.describe()
        )
