from __future__ import annotations

from datetime import datetime
from typing import Any


def naive_local(value: datetime) -> datetime:
    """Return ``value`` as naive local time; stored rows never carry an offset."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_instant(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through), normalised by :func:`naive_local`."""
    if isinstance(value, datetime):
        return naive_local(value)
    return naive_local(datetime.fromisoformat(str(value)))
