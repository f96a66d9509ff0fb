from __future__ import annotations

from typing import Any, Mapping, Sequence

from site_trawler.domain import Result, RollCallEntry


def take_roll_call(
    expected_names: Sequence[str],
    attendee_field: str,
    absent_defaults: Mapping[str, Any],
    attendees: Sequence[Result],
) -> list[RollCallEntry]:
    """Line ``attendees`` up against ``expected_names``.

    Each name consumes the first remaining attendee whose ``attendee_field``
    equals it exactly, so one attendee never answers for two names. Absent
    names get ``{attendee_field: name}`` merged with ``absent_defaults``.
    The output always follows ``expected_names`` and has the same length.
    """
    remaining = list(attendees)
    entries: list[RollCallEntry] = []
    for name in expected_names:
        found_idx = next(
            (idx for idx, attendee in enumerate(remaining) if attendee.get(attendee_field) == name),
            None,
        )
        if found_idx is None:
            fields = {attendee_field: name}
            fields.update(absent_defaults)
            entries.append(RollCallEntry(name=name, present=False, fields=fields))
            continue
        attendee = remaining.pop(found_idx)
        entries.append(RollCallEntry(name=name, present=True, fields=attendee.to_dict(), result=attendee))
    return entries


def roll_call_row(entries: Sequence[RollCallEntry], value_field: str, stamp: str) -> list[Any]:
    """Flatten a roll call into ``[stamp, value, value, ...]`` for tabular output."""
    if not entries:
        return []
    return [stamp, *(entry.fields.get(value_field) for entry in entries)]
