from __future__ import annotations

import logging
from typing import Awaitable, Callable, Protocol, Sequence, Union

from site_trawler.config import ConfigError, SourceConfig
from site_trawler.domain import Result, SavedState

OLDEST_FIRST = "oldest_first"
NEWEST_FIRST = "newest_first"


class SourceLogAdapter(logging.LoggerAdapter):
    """Prefix every message with the source id, as in ``[source-id] - message``."""

    def process(self, msg, kwargs):  # type: ignore[no-untyped-def]
        return f"[{self.extra['source_id']}] - {msg}", kwargs


def source_logger(source_id: str, name: str = "site_trawler") -> SourceLogAdapter:
    return SourceLogAdapter(logging.getLogger(name), {"source_id": source_id})


class Source(Protocol):
    id: str
    order: str
    match_field: str | None
    record_highest_seen_id: bool
    record_all_seen_ids: bool

    def fetch_raw(self) -> Union[list[Result], Awaitable[list[Result]]]:
        ...

    def custom_filter(self, result: Result) -> Union[bool, Awaitable[bool]]:
        ...

    def transform(self, result: Result) -> Union[Result, Awaitable[Result]]:
        ...

    def render(self, results: Sequence[Result]) -> str:
        ...


class BaseSource:
    """Shared plumbing for source adapters.

    Subclasses implement ``load_results`` in whatever order the remote service
    returns and declare that order in ``order``; ``fetch_raw`` hands results to
    the engine oldest-first.
    """

    order = OLDEST_FIRST
    match_field: str | None = None
    record_highest_seen_id = False
    record_all_seen_ids = False

    def __init__(self, config: SourceConfig, saved_state: SavedState | None = None) -> None:
        self.id = config.id
        self.config = config
        self.saved_state = saved_state or SavedState()
        if config.match_field is not None:
            self.match_field = config.match_field
        if config.record_highest_seen_id is not None:
            self.record_highest_seen_id = config.record_highest_seen_id
        if config.record_all_seen_ids is not None:
            self.record_all_seen_ids = config.record_all_seen_ids
        if self.match_field is None and any(rule.field is None for rule in config.match_rules):
            raise ConfigError(f"{config.id}: match_rules without a field need match_field on the source")
        self.log = source_logger(self.id, "site_trawler.sources")

    def load_results(self) -> list[Result]:
        raise NotImplementedError("load_results needs to be overridden")

    def fetch_raw(self) -> list[Result]:
        results = list(self.load_results())
        if self.order == NEWEST_FIRST:
            results.reverse()
        return results

    def custom_filter(self, result: Result) -> bool:
        return True

    def transform(self, result: Result) -> Result:
        return result

    def render(self, results: Sequence[Result]) -> str:
        return "\n".join(str(result.to_dict()) for result in results)


SourceFactory = Callable[[SourceConfig, SavedState], BaseSource]


def _feed_factory(config: SourceConfig, saved_state: SavedState) -> BaseSource:
    from site_trawler.fetcher import FeedSource

    return FeedSource(config, saved_state)


SOURCE_MODELS: dict[str, SourceFactory] = {
    "feed": _feed_factory,
}


def build_source(config: SourceConfig, saved_state: SavedState | None = None) -> BaseSource:
    factory = SOURCE_MODELS.get(config.model)
    if factory is None:
        raise ConfigError(f"Unknown source model: {config.model} (source {config.id})")
    return factory(config, saved_state or SavedState())
