"""Upstream-event mapping adapter.

Converts JSON payloads from the library service into core UpstreamEvents so
the dispatcher never sees raw dictionaries.
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator, List

from core.models import EventKind, UpstreamEvent

_KIND_ALIASES = {
    "new_chapter": EventKind.NEW_CHAPTER,
    "newchapter": EventKind.NEW_CHAPTER,
    "chapter": EventKind.NEW_CHAPTER,
    "series_completed": EventKind.SERIES_COMPLETED,
    "seriescompleted": EventKind.SERIES_COMPLETED,
    "completed": EventKind.SERIES_COMPLETED,
}


def parse_kind(raw: str) -> EventKind:
    kind = _KIND_ALIASES.get(raw.strip().lower().replace("-", "_"))
    if kind is None:
        raise ValueError(f"Unsupported event kind: {raw!r}")
    return kind


def event_from_dict(payload: dict) -> UpstreamEvent:
    """Build an UpstreamEvent; account_id and manga_ref are required."""

    missing = [
        field
        for field in ("kind", "account_id", "manga_ref")
        if payload.get(field) is None or payload.get(field) == ""
    ]
    if missing:
        raise ValueError(f"Event is missing required field(s): {', '.join(missing)}")

    chapter_ref = payload.get("chapter_ref")
    return UpstreamEvent(
        kind=parse_kind(str(payload["kind"])),
        account_id=str(payload["account_id"]),
        manga_ref=str(payload["manga_ref"]),
        chapter_ref=str(chapter_ref) if chapter_ref is not None else None,
        title=payload.get("title") or None,
    )


def iter_events_jsonl(lines: Iterable[str]) -> Iterator[UpstreamEvent]:
    """Yield events from JSON Lines, skipping blank lines."""

    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Line {number}: invalid JSON ({exc.msg})") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Line {number}: expected an object")
        yield event_from_dict(payload)


def load_events(path: str) -> List[UpstreamEvent]:
    with open(path, "r", encoding="utf-8") as handle:
        return list(iter_events_jsonl(handle))
