"""Append-only activity log stored on each card as a JSON string."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ScanAction(str, Enum):
    STAMP_ADDED = "stamp_added"
    REWARD_REDEEMED = "reward_redeemed"


class ScanHistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    timestamp: str
    action: ScanAction
    cafe_user_id: str = Field(..., alias="cafeUserId")
    stamps_added: int | None = Field(None, alias="stampsAdded")


def format_timestamp(moment: datetime | None = None) -> str:
    """Render a UTC ISO-8601 timestamp with millisecond precision and a ``Z`` suffix."""

    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_scan_history(raw: str | None) -> list[ScanHistoryEntry]:
    """Decode a stored history string; unreadable data yields an empty history."""

    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse scan history, starting fresh", length=len(raw))
        return []
    if not isinstance(decoded, list):
        logger.warning("Scan history is not a list, starting fresh", kind=type(decoded).__name__)
        return []

    entries: list[ScanHistoryEntry] = []
    for item in decoded:
        try:
            entries.append(ScanHistoryEntry.model_validate(item))
        except ValidationError:
            logger.warning("Dropping malformed scan history entry", entry=item)
    return entries


def serialize_scan_history(entries: Iterable[ScanHistoryEntry]) -> str:
    payload = [entry.model_dump(mode="json", by_alias=True, exclude_none=True) for entry in entries]
    return json.dumps(payload, separators=(",", ":"))


def make_entry(
    action: ScanAction,
    cafe_user_id: str,
    *,
    stamps_added: int | None = None,
    moment: datetime | None = None,
) -> ScanHistoryEntry:
    return ScanHistoryEntry(
        timestamp=format_timestamp(moment),
        action=action,
        cafe_user_id=cafe_user_id,
        stamps_added=stamps_added,
    )


def append_scan_entry(raw: str | None, entry: ScanHistoryEntry) -> str:
    """Return the stored history string with ``entry`` appended as the newest item."""

    entries = parse_scan_history(raw)
    entries.append(entry)
    return serialize_scan_history(entries)


__all__ = [
    "ScanAction",
    "ScanHistoryEntry",
    "append_scan_entry",
    "format_timestamp",
    "make_entry",
    "parse_scan_history",
    "serialize_scan_history",
]
