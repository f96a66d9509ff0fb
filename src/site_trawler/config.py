from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from site_trawler.matcher import MatchRule


class ConfigError(ValueError):
    """Raised when YAML config is invalid."""


@dataclass(frozen=True)
class RollCallConfig:
    names: tuple[str, ...]
    attendee_field: str
    absent_defaults: dict[str, Any] = field(default_factory=dict)
    value_field: str | None = None


@dataclass(frozen=True)
class SourceConfig:
    id: str
    model: str
    enabled: bool = True
    max_results: int | None = None
    match_field: str | None = None
    match_rules: tuple[MatchRule, ...] = ()
    # None defers to the adapter's own default.
    record_highest_seen_id: bool | None = None
    record_all_seen_ids: bool | None = None
    save_full_results: bool = False
    track_beyond_limit: bool = False
    roll_call: RollCallConfig | None = None
    options: dict[str, Any] = field(default_factory=dict)


def _require_str(data: dict[str, Any], key: str, path: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _optional_str(data: dict[str, Any], key: str, path: str) -> str | None:
    if data.get(key) is None:
        return None
    return _require_str(data, key, path)


def _optional_bool(data: dict[str, Any], key: str, default: bool | None, path: str) -> bool | None:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{path}.{key} must be bool")
    return value


def _optional_int(data: dict[str, Any], key: str, default: int | None, minimum: int, path: str) -> int | None:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{path}.{key} must be int >= {minimum}")
    return value


def _optional_mapping(data: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    value = data.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}.{key} must be a mapping")
    return dict(value)


def _require_str_list(data: dict[str, Any], key: str, path: str) -> tuple[str, ...]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{path}.{key} must be a non-empty list of strings")
    normalized: list[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{path}.{key}[{idx}] must be a non-empty string")
        normalized.append(item.strip())
    return tuple(normalized)


def _read_yaml(path: str | Path) -> dict[str, Any]:
    resolved = Path(path)
    if not resolved.exists():
        raise ConfigError(f"Config file does not exist: {resolved}")
    with resolved.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Config root must be a mapping: {resolved}")
    return payload


def parse_match_rules(data: dict[str, Any], path: str) -> tuple[MatchRule, ...]:
    raw_rules = data.get("match_rules", [])
    if raw_rules is None:
        return ()
    if not isinstance(raw_rules, list):
        raise ConfigError(f"{path}.match_rules must be a list")
    rules: list[MatchRule] = []
    for idx, raw in enumerate(raw_rules):
        node_path = f"{path}.match_rules[{idx}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{node_path} must be a mapping")
        pattern = raw.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise ConfigError(f"{node_path}.pattern must be a non-empty string")
        flags = raw.get("flags", "")
        if not isinstance(flags, str):
            raise ConfigError(f"{node_path}.flags must be a string")
        try:
            rules.append(MatchRule(pattern=pattern, flags=flags, field=_optional_str(raw, "field", node_path)))
        except (re.error, ValueError) as exc:
            raise ConfigError(f"{node_path} is not a valid rule: {exc}") from exc
    return tuple(rules)


def parse_roll_call(data: dict[str, Any], path: str) -> RollCallConfig | None:
    raw = data.get("roll_call")
    if raw is None:
        return None
    node_path = f"{path}.roll_call"
    if not isinstance(raw, dict):
        raise ConfigError(f"{node_path} must be a mapping")
    return RollCallConfig(
        names=_require_str_list(raw, "names", node_path),
        attendee_field=_require_str(raw, "field", node_path),
        absent_defaults=_optional_mapping(raw, "absent_defaults", node_path),
        value_field=_optional_str(raw, "value_field", node_path),
    )


def parse_source_config(raw: Any, path: str) -> SourceConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must be a mapping")
    return SourceConfig(
        id=_require_str(raw, "id", path),
        model=_require_str(raw, "model", path),
        enabled=bool(_optional_bool(raw, "enabled", True, path)),
        max_results=_optional_int(raw, "max_results", None, 1, path),
        match_field=_optional_str(raw, "match_field", path),
        match_rules=parse_match_rules(raw, path),
        record_highest_seen_id=_optional_bool(raw, "record_highest_seen_id", None, path),
        record_all_seen_ids=_optional_bool(raw, "record_all_seen_ids", None, path),
        save_full_results=bool(_optional_bool(raw, "save_full_results", False, path)),
        track_beyond_limit=bool(_optional_bool(raw, "track_beyond_limit", False, path)),
        roll_call=parse_roll_call(raw, path),
        options=_optional_mapping(raw, "options", path),
    )


def load_sources_config(path: str | Path) -> list[SourceConfig]:
    payload = _read_yaml(path)
    sources = payload.get("sources")
    if not isinstance(sources, list) or not sources:
        raise ConfigError("sources must be a non-empty list")

    seen_ids: set[str] = set()
    parsed: list[SourceConfig] = []
    for index, raw in enumerate(sources):
        source = parse_source_config(raw, f"sources[{index}]")
        if source.id in seen_ids:
            raise ConfigError(f"Duplicate source id: {source.id}")
        seen_ids.add(source.id)
        parsed.append(source)
    return parsed
