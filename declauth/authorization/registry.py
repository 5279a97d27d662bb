from typing import Iterable, Iterator, Optional

from declauth.authorization.rule import LoadMethod, Predicate, Rule
from declauth.common.exception import InvalidRuleDefinition


class RuleRegistry:
    """The ordered list of access rules declared for a single resource (typically a controller class).

    Each action may be claimed by at most one rule, with the exception of the wildcard action ``"all"``. Registering a
    rule for an action which an earlier rule already covers takes the action away from the earlier rule, leaving the
    earlier rule in place for its remaining actions::

        registry = RuleRegistry()
        registry.register(["new", "create"], privilege="create_users")
        registry.register(["create"], privilege="force_create")

        registry.rules_matching("new")     # [Rule({new} -> create_users)]
        registry.rules_matching("create")  # [Rule({create} -> force_create)]

    Rules which include the wildcard are never affected by later registrations and are only consulted for actions which
    no other rule covers. If several wildcard rules are registered, all of them apply.

    Registries are filled in when a resource is configured and are not modified afterwards, so they can be read from
    concurrently without locking.
    """

    def __init__(self, rules: Optional[Iterable[Rule]] = None) -> None:
        self._rules: list[Rule] = list(rules or [])

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __repr__(self) -> str:
        return f"RuleRegistry({self._rules!r})"

    def add(self, rule: Rule) -> Rule:
        """Appends an already constructed rule after removing its actions from all earlier rules"""
        if not rule.actions:
            raise InvalidRuleDefinition("an access rule must apply to at least one action")

        self._rules = [existing.without_actions(rule.actions) for existing in self._rules]
        self._rules.append(rule)
        return rule

    def register(
        self,
        actions: Iterable[str],
        privilege: Optional[str] = None,
        context: Optional[str] = None,
        attribute_check: bool = False,
        model: Optional[str] = None,
        load_method: Optional[LoadMethod] = None,
        predicate: Optional[Predicate] = None,
    ) -> Rule:
        """Creates a rule for the given actions and adds it to the registry. See ``Rule`` for the meaning of the
        remaining parameters.

        :raises: :class:`InvalidRuleDefinition`: the rule has no actions or one of its options is malformed

        :returns: the new rule
        """
        if isinstance(actions, str):
            actions = [actions]

        rule = Rule(
            frozenset(actions),
            privilege=privilege,
            context=context,
            attribute_check=attribute_check,
            model=model,
            load_method=load_method,
            predicate=predicate,
        )

        return self.add(rule)

    def rules_matching(self, action_name: str) -> list[Rule]:
        """Returns the rules, other than wildcard rules, which apply to ``action_name`` in the order they were added"""
        return [rule for rule in self._rules if not rule.is_wildcard() and rule.matches(action_name)]

    def wildcard_rules(self) -> list[Rule]:
        return [rule for rule in self._rules if rule.is_wildcard()]

    def copy(self) -> "RuleRegistry":
        return RuleRegistry(self._rules)

    @property
    def rules(self) -> list[Rule]:
        return self._rules.copy()
