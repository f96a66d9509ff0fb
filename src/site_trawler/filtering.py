from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Sequence, Union

from site_trawler.domain import Result, ResultId
from site_trawler.matcher import MatchRule, matches
from site_trawler.seen_state import SeenStateTracker

CustomFilter = Callable[[Result], Union[bool, Awaitable[bool]]]
Transform = Callable[[Result], Union[Result, Awaitable[Result]]]

LOGGER = logging.getLogger("site_trawler.filtering")


class CustomFilterError(RuntimeError):
    """A custom filter or transformation failed for a single candidate."""

    def __init__(self, result_id: ResultId, cause: BaseException) -> None:
        super().__init__(f"Error while filtering result [{result_id}]: {cause}")
        self.result_id = result_id
        self.cause = cause


@dataclass(frozen=True)
class Accumulator:
    highest_seen_id: ResultId | None = None
    new_seen_ids: tuple[ResultId, ...] = ()
    filtered_results: tuple[Result, ...] = ()
    accepted_ids: frozenset[ResultId] = frozenset()
    considered: int = 0


async def _call(fn: Callable[[Result], Any], result: Result) -> Any:
    """Await coroutine callables; run plain ones in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(result)
    value = await asyncio.to_thread(fn, result)
    if inspect.isawaitable(value):
        return await value
    return value


class FilterPipeline:
    """Common filter, custom filter and transformation applied as a fold.

    ``step`` never mutates its accumulator; ``run`` folds ``step`` over the raw
    results in source order and stops once ``max_results`` have been accepted.
    """

    def __init__(
        self,
        *,
        tracker: SeenStateTracker,
        rules: Sequence[MatchRule] = (),
        match_field: str | None = None,
        custom_filter: CustomFilter | None = None,
        transform: Transform | None = None,
        max_results: int | None = None,
        track_beyond_limit: bool = False,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        if max_results is not None and max_results < 1:
            raise ValueError("max_results must be >= 1")
        self.tracker = tracker
        self.rules = tuple(rules)
        self.match_field = match_field
        self.custom_filter = custom_filter
        self.transform = transform
        self.max_results = max_results
        self.track_beyond_limit = track_beyond_limit
        self.log = logger or LOGGER

    def is_full(self, accumulator: Accumulator) -> bool:
        return self.max_results is not None and len(accumulator.filtered_results) >= self.max_results

    def passes_common_filters(self, result: Result) -> bool:
        self.log.debug("Filtering result [%s] - %s", result.id, result.to_dict())
        if not matches(result, self.rules, self.match_field):
            self.log.debug("Result [%s] skipped: failed regex matches.", result.id)
            return False
        reason = self.tracker.rejection_reason(result.id)
        if reason is not None:
            self.log.debug("Result [%s] skipped: %s.", result.id, reason)
            return False
        return True

    async def passes_custom_filter(self, result: Result) -> bool:
        if self.custom_filter is None:
            return True
        try:
            return bool(await _call(self.custom_filter, result))
        except Exception as exc:  # noqa: BLE001
            error = CustomFilterError(result.id, exc)
            self.log.error("%s", error)
            return False

    async def apply_transform(self, result: Result) -> Result | None:
        if self.transform is None:
            return result
        try:
            transformed = await _call(self.transform, result)
        except Exception as exc:  # noqa: BLE001
            error = CustomFilterError(result.id, exc)
            self.log.error("Transformation failed: %s", error)
            return None
        if not isinstance(transformed, Result):
            self.log.error(
                "Transformation for result [%s] returned %s, not a Result",
                result.id,
                type(transformed).__name__,
            )
            return None
        return transformed

    async def step(self, accumulator: Accumulator, candidate: Result) -> Accumulator:
        highest = self.tracker.advance(accumulator.highest_seen_id, candidate.id)
        considered = accumulator.considered + 1

        accepted: Result | None = None
        if candidate.id in accumulator.accepted_ids:
            self.log.debug("Result [%s] skipped: duplicate id in this cycle.", candidate.id)
        elif self.passes_common_filters(candidate) and await self.passes_custom_filter(candidate):
            accepted = await self.apply_transform(candidate)

        if accepted is None:
            return replace(accumulator, highest_seen_id=highest, considered=considered)

        new_seen_ids = accumulator.new_seen_ids
        if self.tracker.record_all_seen_ids:
            new_seen_ids = new_seen_ids + (candidate.id,)
        return Accumulator(
            highest_seen_id=highest,
            new_seen_ids=new_seen_ids,
            filtered_results=accumulator.filtered_results + (accepted,),
            accepted_ids=accumulator.accepted_ids | {candidate.id},
            considered=considered,
        )

    async def run(self, raw_results: Sequence[Result]) -> Accumulator:
        accumulator = Accumulator(highest_seen_id=self.tracker.prior_highest)
        for index, candidate in enumerate(raw_results):
            if self.is_full(accumulator):
                if self.track_beyond_limit:
                    remaining = (result.id for result in raw_results[index:])
                    accumulator = replace(
                        accumulator,
                        highest_seen_id=self.tracker.advance_all(accumulator.highest_seen_id, remaining),
                    )
                break
            accumulator = await self.step(accumulator, candidate)
        return accumulator
