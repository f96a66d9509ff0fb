from __future__ import annotations

import calendar
import ssl
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Sequence

import feedparser
import requests
from requests.adapters import HTTPAdapter

from site_trawler.config import ConfigError, SourceConfig
from site_trawler.domain import Result, SavedState
from site_trawler.normalize import normalize_url
from site_trawler.sources import NEWEST_FIRST, BaseSource

USER_AGENT = "site-trawler/0.1"


class LegacyTLSAdapter(HTTPAdapter):
    """Enable legacy renegotiation where OpenSSL supports it."""

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        self._ssl_context = ssl.create_default_context()
        if hasattr(ssl, "OP_LEGACY_SERVER_CONNECT"):
            self._ssl_context.options |= ssl.OP_LEGACY_SERVER_CONNECT
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        kwargs["ssl_context"] = self._ssl_context
        return super().proxy_manager_for(*args, **kwargs)


def _parse_published(entry: dict[str, Any]) -> datetime | None:
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(key)
        if value:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    for key in ("published", "updated", "created"):
        raw = entry.get(key)
        if not raw:
            continue
        try:
            parsed = parsedate_to_datetime(raw)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(raw)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.astimezone(timezone.utc)
            except ValueError:
                continue
    return None


def entry_to_result(entry: dict[str, Any]) -> Result | None:
    title = (entry.get("title") or "").strip()
    url = (entry.get("link") or entry.get("id") or "").strip()
    if not title or not url:
        return None
    published = _parse_published(entry)
    return Result(
        id=normalize_url(url),
        fields={
            "title": title,
            "text": (entry.get("summary") or entry.get("description") or "").strip(),
            "url": url,
            "published": published.isoformat() if published else None,
        },
    )


class FeedSource(BaseSource):
    """RSS/Atom feed. Entries arrive newest-first and are keyed by normalised link."""

    order = NEWEST_FIRST
    match_field = "title"
    record_all_seen_ids = True

    def __init__(
        self,
        config: SourceConfig,
        saved_state: SavedState | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(config, saved_state)
        options = config.options
        url = options.get("url")
        if not isinstance(url, str) or not (url.startswith("http://") or url.startswith("https://")):
            raise ConfigError(f"{config.id}: options.url must start with http:// or https://")
        self.url = url
        self.timeout_sec = _positive_option(options, "timeout_sec", 20, 1, config.id)
        self.retries = _positive_option(options, "retries", 2, 0, config.id)
        self.legacy_tls = bool(options.get("legacy_tls", False))
        self.session = session

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        if self.legacy_tls:
            session.mount("https://", LegacyTLSAdapter())
        return session

    def _get(self, session: requests.Session) -> list[Result]:
        response = session.get(
            self.url,
            timeout=self.timeout_sec,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries:
            raise ValueError(f"invalid feed payload: {parsed.bozo_exception}")
        results: list[Result] = []
        for entry in parsed.entries:
            result = entry_to_result(entry)
            if result is not None:
                results.append(result)
        return results

    def load_results(self) -> list[Result]:
        self.log.info("Getting entries from %s...", self.url)
        attempts = self.retries + 1
        last_error: Exception | None = None
        session = self.session or self._new_session()
        try:
            for attempt in range(1, attempts + 1):
                try:
                    return self._get(session)
                except (requests.RequestException, ValueError) as exc:
                    self.log.warning("attempt %s/%s failed: %s", attempt, attempts, exc)
                    last_error = exc
        finally:
            if self.session is None:
                session.close()
        raise RuntimeError(f"{self.url}: {last_error}")

    def render(self, results: Sequence[Result]) -> str:
        lines = []
        for result in results:
            lines.append(f"- {result.get('title')} | {result.get('url')}")
        return "\n".join(lines)


def _positive_option(options: dict[str, Any], key: str, default: int, minimum: int, source_id: str) -> int:
    value = options.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{source_id}: options.{key} must be int >= {minimum}")
    return value
