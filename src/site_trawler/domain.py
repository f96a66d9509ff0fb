from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

ResultId = Any


@dataclass(frozen=True)
class Result:
    """One observed item. ``id`` is required; everything else lives in ``fields``."""

    id: ResultId
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.id is None:
            raise ValueError("result id must not be None")
        if "id" in self.fields:
            raise ValueError("result fields must not carry an 'id' key")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def has(self, name: str) -> bool:
        return name == "id" or name in self.fields

    def get(self, name: str, default: Any = None) -> Any:
        if name == "id":
            return self.id
        return self.fields.get(name, default)

    def with_fields(self, **updates: Any) -> Result:
        merged = dict(self.fields)
        merged.update(updates)
        return Result(id=self.id, fields=merged)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.fields}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Result:
        if "id" not in payload:
            raise ValueError("result payload is missing 'id'")
        values = dict(payload)
        result_id = values.pop("id")
        return cls(id=result_id, fields=values)


@dataclass(frozen=True)
class SavedState:
    """Per-source record persisted between runs. Also used as the state delta."""

    highest_seen_id: ResultId | None = None
    seen_ids: tuple[ResultId, ...] | None = None
    results: tuple[Result, ...] | None = None

    def is_empty(self) -> bool:
        return self.highest_seen_id is None and self.seen_ids is None and self.results is None

    def merge(self, delta: SavedState) -> SavedState:
        return SavedState(
            highest_seen_id=(
                delta.highest_seen_id if delta.highest_seen_id is not None else self.highest_seen_id
            ),
            seen_ids=delta.seen_ids if delta.seen_ids is not None else self.seen_ids,
            results=delta.results if delta.results is not None else self.results,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.highest_seen_id is not None:
            payload["highestSeenId"] = self.highest_seen_id
        if self.seen_ids is not None:
            payload["seenIds"] = list(self.seen_ids)
        if self.results is not None:
            payload["results"] = [result.to_dict() for result in self.results]
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> SavedState:
        if not payload:
            return cls()
        seen_ids = payload.get("seenIds")
        results = payload.get("results")
        return cls(
            highest_seen_id=payload.get("highestSeenId"),
            seen_ids=tuple(seen_ids) if seen_ids is not None else None,
            results=tuple(Result.from_dict(item) for item in results) if results is not None else None,
        )


@dataclass(frozen=True)
class RollCallEntry:
    name: str
    present: bool
    fields: Mapping[str, Any]
    result: Result | None = None


@dataclass(frozen=True)
class CycleOutcome:
    source_id: str
    results: tuple[Result, ...]
    delta: SavedState


@dataclass(frozen=True)
class SourceFailure:
    source_id: str
    error: str
