import pytest

from site_trawler.domain import Result, SavedState


def test_result_requires_id() -> None:
    with pytest.raises(ValueError):
        Result(id=None)
    with pytest.raises(ValueError):
        Result.from_dict({"text": "no id"})


def test_with_fields_returns_new_result() -> None:
    original = Result(id=1, fields={"text": "a"})
    updated = original.with_fields(text="b", extra=1)

    assert original.get("text") == "a"
    assert updated.to_dict() == {"id": 1, "text": "b", "extra": 1}


def test_result_fields_are_read_only() -> None:
    result = Result(id=1, fields={"text": "a"})
    with pytest.raises(TypeError):
        result.fields["text"] = "b"  # type: ignore[index]


def test_get_reads_id_and_fields() -> None:
    result = Result(id=7, fields={"name": "plug"})
    assert result.get("id") == 7
    assert result.get("name") == "plug"
    assert result.get("missing", "x") == "x"
    assert result.has("id") and result.has("name") and not result.has("missing")


def test_saved_state_wire_format() -> None:
    state = SavedState(
        highest_seen_id=12,
        seen_ids=("a", "b"),
        results=(Result(id="a", fields={"title": "A"}),),
    )
    payload = state.to_dict()

    assert payload == {
        "highestSeenId": 12,
        "seenIds": ["a", "b"],
        "results": [{"id": "a", "title": "A"}],
    }
    assert SavedState.from_dict(payload).to_dict() == payload
    assert SavedState.from_dict(None).is_empty()
    assert SavedState().to_dict() == {}


def test_merge_keeps_members_missing_from_delta() -> None:
    prior = SavedState(highest_seen_id=5, seen_ids=("a",))
    merged = prior.merge(SavedState(highest_seen_id=9))

    assert merged.highest_seen_id == 9
    assert merged.seen_ids == ("a",)
    assert merged.results is None
