from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Sequence

from site_trawler.domain import Result

LOGGER = logging.getLogger("site_trawler.matcher")

_FLAG_BITS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    # A match test is a single search, so global/unicode/sticky change nothing.
    "g": 0,
    "u": 0,
    "y": 0,
}


def parse_flags(flags: str) -> int:
    bits = 0
    for letter in flags or "":
        if letter not in _FLAG_BITS:
            raise ValueError(f"unknown regex flag: {letter!r}")
        bits |= _FLAG_BITS[letter]
    return bits


@dataclass(frozen=True)
class MatchRule:
    pattern: str
    flags: str = ""
    field: str | None = None
    compiled: re.Pattern[str] = dataclass_field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "compiled", re.compile(self.pattern, parse_flags(self.flags)))

    def describe(self) -> str:
        return f"/{self.pattern}/{self.flags}"


def _rule_matches(result: Result, rule: MatchRule, default_field: str | None) -> bool:
    target = rule.field or default_field
    if target is None:
        return True
    value = result.get(target)
    if not isinstance(value, str):
        # Untestable values never exclude a result.
        return True
    return rule.compiled.search(value) is not None


def find_matching_rule(
    result: Result,
    rules: Sequence[MatchRule],
    field: str | None = None,
) -> MatchRule | None:
    for rule in rules:
        if _rule_matches(result, rule, field):
            return rule
    return None


def matches(result: Result, rules: Sequence[MatchRule], field: str | None = None) -> bool:
    if not rules:
        return True
    rule = find_matching_rule(result, rules, field)
    if rule is None:
        return False
    LOGGER.debug("Result [%s] matched rule %s", result.id, rule.describe())
    return True
