"""Pydantic models for bench records and change events."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ValidationError

IDENTITY_FIELD = "id"
VALUE_FIELD = "value"
SENT_TS_FIELD = "_bench_sent_ts"


def make_client_id(index: int) -> str:
    return f"client-{index}"


def now_ms() -> float:
    """Wall-clock milliseconds; shared clock for send stamps and receipt."""
    return time.time() * 1000


def bench_record(identity: str, value: str, sent_ts: int) -> dict[str, Any]:
    """Row written by a session. The timestamp travels as text, like the column."""
    return {
        IDENTITY_FIELD: identity,
        VALUE_FIELD: value,
        SENT_TS_FIELD: str(sent_ts),
    }


class ChangeEvent(BaseModel):
    """A change notification reduced to what correlation needs.

    Raw events look like ``{"eventType": "UPDATE", "new": {...}, "old": {...}}``.
    """

    identity: str
    sent_ts: int
    event_type: str = ""
    record: dict[str, Any] = {}

    @staticmethod
    def extract_identity(raw: Any) -> str | None:
        """Record identity of a raw event, or None if there is none."""
        if not isinstance(raw, dict):
            return None
        record = raw.get("new")
        if not isinstance(record, dict):
            return None
        identity = record.get(IDENTITY_FIELD)
        return identity if isinstance(identity, str) and identity else None

    @classmethod
    def from_payload(cls, raw: Any) -> ChangeEvent | None:
        """Parse a raw event. Returns None for malformed payloads."""
        identity = cls.extract_identity(raw)
        if identity is None:
            return None
        record = raw["new"]
        sent_ts = record.get(SENT_TS_FIELD)
        if sent_ts is None or sent_ts == "" or isinstance(sent_ts, bool):
            return None
        try:
            return cls(
                identity=identity,
                sent_ts=sent_ts,
                event_type=str(raw.get("eventType") or ""),
                record=record,
            )
        except ValidationError:
            return None
