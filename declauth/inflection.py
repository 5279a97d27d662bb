"""Minimal English inflection helpers used to derive privilege contexts and model names from controller names.

Only the regular rules and a short list of common irregular nouns are covered. Anything more unusual should be given
explicitly through the ``context`` and ``model`` options of ``Controller.filter_access_to``.
"""

import re

IRREGULAR = {
    "person": "people",
    "man": "men",
    "woman": "women",
    "child": "children",
    "mouse": "mice",
    "goose": "geese",
}

UNCOUNTABLE = frozenset({"equipment", "information", "metadata", "news", "series", "species", "data"})

_CAMEL_BOUNDARY_1 = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_BOUNDARY_2 = re.compile(r"([a-z\d])([A-Z])")


def underscore(word: str) -> str:
    """Converts a CamelCase name into snake_case, e.g. ``"PolicyRule"`` into ``"policy_rule"``"""
    word = _CAMEL_BOUNDARY_1.sub(r"\1_\2", word)
    word = _CAMEL_BOUNDARY_2.sub(r"\1_\2", word)
    return word.replace("-", "_").lower()


def camelize(word: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in word.split("_") if part)


def _split_last(word: str) -> tuple[str, str]:
    head, sep, last = word.rpartition("_")
    return head + sep, last


def pluralize(word: str) -> str:
    head, last = _split_last(word)
    lower = last.lower()

    if not lower or lower in UNCOUNTABLE:
        return word

    if lower in IRREGULAR:
        return head + IRREGULAR[lower]

    if lower in IRREGULAR.values():
        return word

    if re.search(r"(s|x|z|ch|sh)$", lower):
        if lower.endswith("ss") or not lower.endswith("s"):
            return f"{word}es"
        # Already plural
        return word

    if re.search(r"[^aeiou]y$", lower):
        return f"{word[:-1]}ies"

    return f"{word}s"


def singularize(word: str) -> str:
    head, last = _split_last(word)
    lower = last.lower()

    if not lower or lower in UNCOUNTABLE:
        return word

    for singular, plural in IRREGULAR.items():
        if lower == plural:
            return head + singular

    if lower in IRREGULAR:
        return word

    if lower.endswith("ies") and len(lower) > 3:
        return f"{word[:-3]}y"

    if re.search(r"(ss|x|z|ch|sh)es$", lower):
        return word[:-2]

    if lower.endswith("s") and not lower.endswith("ss"):
        return word[:-1]

    return word


def classify(name: str) -> str:
    """Returns the model name for a (plural) table or context name, e.g. ``"policy_rules"`` becomes ``"PolicyRule"``"""
    return camelize(singularize(name))


def controller_name(cls_name: str) -> str:
    """Returns the resource name of a controller class, e.g. ``"IMAPoliciesController"`` becomes ``"ima_policies"``"""
    if cls_name.endswith("Controller") and cls_name != "Controller":
        cls_name = cls_name[: -len("Controller")]

    return underscore(cls_name)
