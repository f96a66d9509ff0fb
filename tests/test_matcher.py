import pytest

from site_trawler.domain import Result
from site_trawler.matcher import MatchRule, find_matching_rule, matches, parse_flags


def _result(result_id: int, **fields) -> Result:  # type: ignore[no-untyped-def]
    return Result(id=result_id, fields=fields)


def test_empty_rules_match_everything() -> None:
    assert matches(_result(1, text="anything"), [], "text") is True
    assert matches(_result(2), [], "text") is True


def test_missing_or_non_string_field_does_not_exclude() -> None:
    rules = [MatchRule(pattern="python")]
    assert matches(_result(1), rules, "text") is True
    assert matches(_result(2, text=42), rules, "text") is True
    assert matches(_result(3, text=None), rules, "text") is True


def test_any_rule_matching_is_enough() -> None:
    rules = [MatchRule(pattern="roundtrip"), MatchRule(pattern="video")]
    assert matches(_result(1, text="cheap roundtrip to Rome"), rules, "text") is True
    assert matches(_result(2, text="watch the video"), rules, "text") is True
    assert matches(_result(3, text="nothing here"), rules, "text") is False


def test_case_sensitivity_follows_flags() -> None:
    sensitive = [MatchRule(pattern="Video")]
    insensitive = [MatchRule(pattern="Video", flags="gi")]
    result = _result(1, text="new video out")
    assert matches(result, sensitive, "text") is False
    assert matches(result, insensitive, "text") is True


def test_substring_rule_selects_exact_subset() -> None:
    results = [
        _result(1, title="Used bike, good condition"),
        _result(2, title="Sofa"),
        _result(3, title="BIKE helmet"),
        _result(4, title="Motorbike parts"),
    ]
    rules = [MatchRule(pattern="bike", flags="i")]
    assert [r.id for r in results if matches(r, rules, "title")] == [1, 3, 4]


def test_multiline_flag_anchors_per_line() -> None:
    result = _result(1, text="first line\nsale today")
    assert matches(result, [MatchRule(pattern="^sale")], "text") is False
    assert matches(result, [MatchRule(pattern="^sale", flags="m")], "text") is True


def test_rule_field_overrides_default_field() -> None:
    rule = MatchRule(pattern="cheap", field="text")
    result = _result(1, title="Flights", text="cheap seats")
    assert find_matching_rule(result, [rule], "title") is rule


def test_find_matching_rule_returns_first_match() -> None:
    first = MatchRule(pattern="a")
    second = MatchRule(pattern="b")
    assert find_matching_rule(_result(1, text="ab"), [first, second], "text") is first
    assert find_matching_rule(_result(1, text="zz"), [first, second], "text") is None


def test_parse_flags_rejects_unknown_letters() -> None:
    with pytest.raises(ValueError):
        parse_flags("iq")
