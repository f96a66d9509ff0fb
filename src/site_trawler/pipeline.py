from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence
from uuid import uuid4

from site_trawler.config import ConfigError, SourceConfig, load_sources_config
from site_trawler.domain import CycleOutcome, RollCallEntry, SavedState, SourceFailure
from site_trawler.engine import FetchError, ReconciliationEngine
from site_trawler.mailer import (
    SmtpConfig,
    SourceReport,
    build_digest_body,
    build_digest_subject,
    has_digest_content,
    send_text_email,
)
from site_trawler.rollcall import roll_call_row, take_roll_call
from site_trawler.sources import BaseSource, build_source
from site_trawler.storage import SQLiteStore

LOGGER = logging.getLogger("site_trawler.pipeline")

SourceBuilder = Callable[[SourceConfig, SavedState], BaseSource]


@dataclass(frozen=True)
class SourceRun:
    source: BaseSource
    outcome: CycleOutcome
    roll_call: tuple[RollCallEntry, ...] = ()
    roll_call_row: tuple[Any, ...] = ()


@dataclass(frozen=True)
class PipelineResult:
    run_id: str
    runs: list[SourceRun]
    failures: list[SourceFailure]
    saved_states: dict[str, SavedState]
    digest_sent: bool
    result_count: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "result_count", sum(len(run.outcome.results) for run in self.runs))


async def _reconcile_source(
    source: BaseSource,
    config: SourceConfig,
    saved_state: SavedState,
    timeout_sec: float | None,
) -> CycleOutcome:
    engine = ReconciliationEngine(source, config, saved_state)
    return await asyncio.wait_for(engine.reconcile(), timeout=timeout_sec)


def _describe_failure(config: SourceConfig, exc: BaseException, timeout_sec: float | None) -> SourceFailure:
    if isinstance(exc, asyncio.TimeoutError):
        return SourceFailure(source_id=config.id, error=f"cycle timed out after {timeout_sec}s")
    if isinstance(exc, asyncio.CancelledError):
        return SourceFailure(source_id=config.id, error="cycle cancelled")
    if isinstance(exc, FetchError):
        return SourceFailure(source_id=config.id, error=str(exc))
    return SourceFailure(source_id=config.id, error=f"{type(exc).__name__}: {exc}")


async def run_cycles(
    configs: Sequence[SourceConfig],
    saved_states: Mapping[str, SavedState],
    *,
    timeout_sec: float | None = None,
    source_builder: SourceBuilder = build_source,
) -> tuple[list[tuple[BaseSource, SourceConfig, CycleOutcome]], list[SourceFailure]]:
    """Run one cycle per enabled source concurrently.

    A failing source never takes the others down; it is reported as a
    ``SourceFailure`` and contributes no state.
    """
    failures: list[SourceFailure] = []
    prepared: list[tuple[BaseSource, SourceConfig]] = []
    for config in configs:
        if not config.enabled:
            continue
        try:
            prepared.append((source_builder(config, saved_states.get(config.id, SavedState())), config))
        except ConfigError as exc:
            LOGGER.error("[%s] - invalid configuration: %s", config.id, exc)
            failures.append(SourceFailure(source_id=config.id, error=f"ConfigError: {exc}"))

    outcomes = await asyncio.gather(
        *(
            _reconcile_source(source, config, saved_states.get(config.id, SavedState()), timeout_sec)
            for source, config in prepared
        ),
        return_exceptions=True,
    )

    succeeded: list[tuple[BaseSource, SourceConfig, CycleOutcome]] = []
    for (source, config), outcome in zip(prepared, outcomes):
        if isinstance(outcome, BaseException):
            failure = _describe_failure(config, outcome, timeout_sec)
            LOGGER.error("[%s] - error when getting results: %s", config.id, failure.error)
            failures.append(failure)
            continue
        succeeded.append((source, config, outcome))
    return succeeded, failures


def run_cycles_blocking(
    configs: Sequence[SourceConfig],
    saved_states: Mapping[str, SavedState],
    *,
    timeout_sec: float | None = None,
    source_builder: SourceBuilder = build_source,
) -> tuple[list[tuple[BaseSource, SourceConfig, CycleOutcome]], list[SourceFailure]]:
    """Drive ``run_cycles`` on a private event loop.

    Sync fetches and filters run on the loop's own executor, which is shut
    down without waiting: a thread still busy with a timed-out cycle finishes
    in the background and its result is discarded.
    """
    executor = ThreadPoolExecutor(thread_name_prefix="site-trawler")
    loop = asyncio.new_event_loop()
    loop.set_default_executor(executor)
    try:
        return loop.run_until_complete(
            run_cycles(configs, saved_states, timeout_sec=timeout_sec, source_builder=source_builder)
        )
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            loop.close()


def merge_states(
    saved_states: Mapping[str, SavedState],
    outcomes: Sequence[CycleOutcome],
) -> dict[str, SavedState]:
    merged: dict[str, SavedState] = {}
    for outcome in outcomes:
        if outcome.delta.is_empty():
            continue
        prior = saved_states.get(outcome.source_id, SavedState())
        merged[outcome.source_id] = prior.merge(outcome.delta)
    return merged


def build_source_run(
    source: BaseSource,
    config: SourceConfig,
    outcome: CycleOutcome,
    stamp: str,
) -> SourceRun:
    if config.roll_call is None:
        return SourceRun(source=source, outcome=outcome)
    entries = take_roll_call(
        config.roll_call.names,
        config.roll_call.attendee_field,
        config.roll_call.absent_defaults,
        outcome.results,
    )
    row: list[Any] = []
    if config.roll_call.value_field:
        row = roll_call_row(entries, config.roll_call.value_field, stamp)
        LOGGER.info("[%s] - roll call row: %s", config.id, row)
    return SourceRun(source=source, outcome=outcome, roll_call=tuple(entries), roll_call_row=tuple(row))


def build_reports(runs: Sequence[SourceRun]) -> list[SourceReport]:
    reports: list[SourceReport] = []
    for run in runs:
        body = run.source.render(run.outcome.results) if run.outcome.results else ""
        reports.append(SourceReport(source_id=run.source.id, body=body, roll_call=run.roll_call))
    return reports


def run_pipeline(
    sources_path: Path,
    db_path: str,
    admin_email: str | None,
    smtp_config: SmtpConfig | None,
    dry_run: bool = False,
    timeout_sec: float | None = 60.0,
    source_builder: SourceBuilder = build_source,
) -> PipelineResult:
    if timeout_sec is not None and timeout_sec <= 0:
        raise ValueError("timeout_sec must be > 0")

    configs = load_sources_config(sources_path)
    started_at = datetime.now(timezone.utc)
    run_id = f"{started_at:%Y%m%dT%H%M%SZ}-{uuid4().hex[:8]}"

    store = SQLiteStore(db_path)
    try:
        store.initialize()
        saved_states = store.load_saved_states()
        succeeded, failures = run_cycles_blocking(
            configs, saved_states, timeout_sec=timeout_sec, source_builder=source_builder
        )

        stamp = f"{started_at:%Y-%m-%d %H:%M:%S}"
        runs = [build_source_run(source, config, outcome, stamp) for source, config, outcome in succeeded]
        new_states = merge_states(saved_states, [run.outcome for run in runs])
        reports = build_reports(runs)

        digest_sent = False
        if not dry_run and has_digest_content(reports):
            if smtp_config is None or not admin_email:
                raise RuntimeError("SMTP config and ADMIN_EMAIL are required when dry_run is false")
            now = datetime.now(timezone.utc)
            LOGGER.info("Sending completion notice...")
            send_text_email(
                smtp_config=smtp_config,
                to_address=admin_email,
                subject=build_digest_subject(now),
                body=build_digest_body(now, reports, failures),
            )
            digest_sent = True
            LOGGER.info("Sent completion notice.")

        result = PipelineResult(
            run_id=run_id,
            runs=runs,
            failures=failures,
            saved_states=new_states,
            digest_sent=digest_sent,
        )
        if dry_run:
            return result

        # Only persist once the digest is out, so undelivered results come back next run.
        store.save_states(new_states)
        store.record_run(
            run_id=run_id,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            result_count=result.result_count,
            failure_count=len(failures),
        )
        return result
    finally:
        store.close()
