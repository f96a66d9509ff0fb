from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Iterable

from site_trawler.domain import ResultId, SavedState


@dataclass(frozen=True)
class SeenStateTracker:
    """Highest-seen-id and full seen-id bookkeeping for one source.

    Both modes may be enabled together. Prior state is only honoured for the
    modes the source records, so switching a mode off also stops it filtering.
    """

    record_highest_seen_id: bool = False
    record_all_seen_ids: bool = False
    prior_highest: ResultId | None = None
    prior_seen_ids: tuple[ResultId, ...] = ()

    @classmethod
    def from_saved_state(
        cls,
        saved: SavedState | None,
        *,
        record_highest_seen_id: bool,
        record_all_seen_ids: bool,
    ) -> SeenStateTracker:
        saved = saved or SavedState()
        return cls(
            record_highest_seen_id=record_highest_seen_id,
            record_all_seen_ids=record_all_seen_ids,
            prior_highest=saved.highest_seen_id if record_highest_seen_id else None,
            prior_seen_ids=tuple(saved.seen_ids or ()) if record_all_seen_ids else (),
        )

    def rejection_reason(self, result_id: ResultId) -> str | None:
        if self.prior_highest is not None and result_id <= self.prior_highest:
            return f"id lower than highest seen ({self.prior_highest})"
        if self.prior_seen_ids and result_id in self._prior_seen_set:
            return "id seen before"
        return None

    @cached_property
    def _prior_seen_set(self) -> frozenset[ResultId]:
        return frozenset(self.prior_seen_ids)

    def advance(self, mark: ResultId | None, result_id: ResultId) -> ResultId | None:
        if not self.record_highest_seen_id:
            return mark
        if mark is None or result_id > mark:
            return result_id
        return mark

    def advance_all(self, mark: ResultId | None, result_ids: Iterable[ResultId]) -> ResultId | None:
        for result_id in result_ids:
            mark = self.advance(mark, result_id)
        return mark

    def delta(self, new_highest: ResultId | None, new_seen_ids: Iterable[ResultId]) -> SavedState:
        highest = None
        if self.record_highest_seen_id:
            highest = new_highest if new_highest is not None else self.prior_highest
        seen_ids = None
        if self.record_all_seen_ids:
            seen_ids = self.prior_seen_ids + tuple(new_seen_ids)
        return SavedState(highest_seen_id=highest, seen_ids=seen_ids)
