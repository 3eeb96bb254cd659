"""Helpers for platform timestamp ids (fixed-point seconds as strings)."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from decimal import Decimal

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_TS_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?")
# Largest ts that still renders as a datetime (9999-12-31T23:59:59.999999Z).
_MAX_TS = Decimal("253402300799.999999")


class UnorderedInputError(ValueError):
    """Raised when message timestamps are malformed and cannot be ordered."""


def parse_ts(ts: str | None) -> Decimal:
    """Parse a timestamp id into an exact decimal number of seconds.

    Only plain fixed-point digits are accepted; exponents, signs, underscores
    and values past the representable datetime range are rejected.
    """

    if ts is None:
        raise UnorderedInputError("Message timestamp is missing.")
    raw = ts.strip()
    if not raw:
        raise UnorderedInputError("Message timestamp is empty.")
    if not _TS_RE.fullmatch(raw):
        raise UnorderedInputError(f"Malformed message timestamp: {ts!r}.")
    value = Decimal(raw)
    if value > _MAX_TS:
        raise UnorderedInputError(f"Message timestamp out of range: {ts!r}.")
    return value


def ts_to_iso(ts: str) -> str:
    """Render a timestamp id as an ISO 8601 UTC datetime."""

    seconds = parse_ts(ts)
    whole = int(seconds)
    micros = int((seconds - whole) * 1_000_000)
    return (_EPOCH + timedelta(seconds=whole, microseconds=micros)).isoformat()
