from site_trawler.domain import SavedState
from site_trawler.seen_state import SeenStateTracker


def test_highest_seen_id_rejects_lower_or_equal_ids() -> None:
    tracker = SeenStateTracker.from_saved_state(
        SavedState(highest_seen_id=10),
        record_highest_seen_id=True,
        record_all_seen_ids=False,
    )
    assert tracker.rejection_reason(9) is not None
    assert tracker.rejection_reason(10) is not None
    assert tracker.rejection_reason(11) is None


def test_no_prior_state_rejects_nothing() -> None:
    tracker = SeenStateTracker.from_saved_state(None, record_highest_seen_id=True, record_all_seen_ids=True)
    assert tracker.prior_highest is None
    assert tracker.rejection_reason(0) is None
    assert tracker.rejection_reason("https://example.com/a") is None


def test_zero_is_a_real_high_water_mark() -> None:
    tracker = SeenStateTracker(record_highest_seen_id=True, prior_highest=0)
    assert tracker.rejection_reason(0) is not None
    assert tracker.rejection_reason(1) is None


def test_seen_ids_reject_previously_emitted_ids() -> None:
    tracker = SeenStateTracker.from_saved_state(
        SavedState(seen_ids=("a", "b")),
        record_highest_seen_id=False,
        record_all_seen_ids=True,
    )
    assert tracker.rejection_reason("a") == "id seen before"
    assert tracker.rejection_reason("c") is None


def test_prior_state_ignored_for_modes_not_recorded() -> None:
    tracker = SeenStateTracker.from_saved_state(
        SavedState(highest_seen_id=100, seen_ids=(1, 2)),
        record_highest_seen_id=False,
        record_all_seen_ids=False,
    )
    assert tracker.rejection_reason(1) is None
    assert tracker.rejection_reason(50) is None


def test_both_modes_are_combined() -> None:
    tracker = SeenStateTracker(
        record_highest_seen_id=True,
        record_all_seen_ids=True,
        prior_highest=5,
        prior_seen_ids=(8,),
    )
    assert tracker.rejection_reason(4) is not None
    assert tracker.rejection_reason(8) is not None
    assert tracker.rejection_reason(9) is None


def test_advance_keeps_the_maximum() -> None:
    tracker = SeenStateTracker(record_highest_seen_id=True)
    mark = None
    for result_id in (3, 7, 5):
        mark = tracker.advance(mark, result_id)
    assert mark == 7
    assert tracker.advance_all(7, [1, 9, 2]) == 9


def test_advance_is_a_no_op_without_highest_mode() -> None:
    tracker = SeenStateTracker(record_all_seen_ids=True)
    assert tracker.advance(None, 5) is None


def test_delta_appends_new_seen_ids_to_prior() -> None:
    tracker = SeenStateTracker(record_all_seen_ids=True, prior_seen_ids=("a", "b"))
    delta = tracker.delta(None, ["c"])
    assert delta.seen_ids == ("a", "b", "c")
    assert delta.highest_seen_id is None


def test_delta_keeps_prior_mark_when_nothing_was_seen() -> None:
    tracker = SeenStateTracker(record_highest_seen_id=True, prior_highest=12)
    assert tracker.delta(None, []).highest_seen_id == 12
    assert tracker.delta(15, []).highest_seen_id == 15


def test_delta_is_empty_when_no_mode_is_recorded() -> None:
    assert SeenStateTracker().delta(3, [1, 2, 3]).is_empty()
