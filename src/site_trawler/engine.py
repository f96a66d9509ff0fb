from __future__ import annotations

import asyncio
import enum
import inspect
import logging

from site_trawler.config import SourceConfig
from site_trawler.domain import CycleOutcome, Result, SavedState
from site_trawler.filtering import FilterPipeline
from site_trawler.seen_state import SeenStateTracker
from site_trawler.sources import Source, source_logger


class FetchError(RuntimeError):
    """The source could not produce its raw results for this cycle."""

    def __init__(self, source_id: str, cause: BaseException | str) -> None:
        super().__init__(f"[{source_id}] Failed to load results: {cause}")
        self.source_id = source_id
        self.cause = cause


class EngineState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    FILTERING = "filtering"
    BOUNDING = "bounding"
    DONE = "done"
    FAILED = "failed"


class ReconciliationEngine:
    """Runs one polling cycle for one source.

    An engine is single-use: build a new one, with the previous cycle's saved
    state, for every cycle. The outcome is produced only once the whole cycle
    succeeds, so a failed or cancelled cycle leaves nothing to merge.
    """

    def __init__(
        self,
        source: Source,
        config: SourceConfig,
        saved_state: SavedState | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self.source = source
        self.config = config
        self.saved_state = saved_state or SavedState()
        self.log = logger or source_logger(source.id, "site_trawler.engine")
        self.state = EngineState.IDLE
        self.tracker = SeenStateTracker.from_saved_state(
            self.saved_state,
            record_highest_seen_id=bool(source.record_highest_seen_id),
            record_all_seen_ids=bool(source.record_all_seen_ids),
        )
        self.pipeline = FilterPipeline(
            tracker=self.tracker,
            rules=config.match_rules,
            match_field=source.match_field,
            custom_filter=source.custom_filter,
            transform=source.transform,
            max_results=config.max_results,
            track_beyond_limit=config.track_beyond_limit,
            logger=self.log,
        )
        self.log.info("initialized.")

    async def _fetch(self) -> list[Result]:
        fetch = self.source.fetch_raw
        if inspect.iscoroutinefunction(fetch):
            raw = await fetch()
        else:
            raw = await asyncio.to_thread(fetch)
        if raw is None:
            raise ValueError("source returned no result list")
        return list(raw)

    async def reconcile(self) -> CycleOutcome:
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"engine for {self.source.id} already used (state={self.state.value})")

        self.state = EngineState.LOADING
        try:
            raw_results = await self._fetch()
        except asyncio.CancelledError:
            self.state = EngineState.FAILED
            raise
        except Exception as exc:  # noqa: BLE001
            self.state = EngineState.FAILED
            self.log.error("Failed to load results: %s", exc)
            raise FetchError(self.source.id, exc) from exc
        self.log.info("Got %s results.", len(raw_results))

        self.state = EngineState.FILTERING
        accumulator = await self.pipeline.run(raw_results)

        self.state = EngineState.BOUNDING
        results = accumulator.filtered_results
        if self.config.max_results is not None:
            results = results[: self.config.max_results]

        delta = self.tracker.delta(accumulator.highest_seen_id, accumulator.new_seen_ids)
        if self.config.save_full_results:
            delta = SavedState(
                highest_seen_id=delta.highest_seen_id,
                seen_ids=delta.seen_ids,
                results=results,
            )

        self.log.info(
            "Final results in order - %s (considered=%s)",
            [result.id for result in results],
            accumulator.considered,
        )
        self.state = EngineState.DONE
        return CycleOutcome(source_id=self.source.id, results=results, delta=delta)
