from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from .clock import parse_instant
from .errors import ValidationError

MINUTES_PER_DAY = 1440

_SLOT_RE = re.compile(r"(?P<start>(?:[01]\d|2[0-3]):[0-5]\d)-(?P<end>(?:[01]\d|2[0-3]):[0-5]\d)")


@dataclass(frozen=True)
class TimeSlot:
    """Daily recurring time-of-day range, bounds inclusive."""

    start_minute: int
    end_minute: int

    def __post_init__(self) -> None:
        for value in (self.start_minute, self.end_minute):
            if not 0 <= value < MINUTES_PER_DAY:
                raise ValidationError("Slot minutes must lie within a single day.")
        if self.end_minute <= self.start_minute:
            raise ValidationError("Slot end must be later than slot start.")

    def contains(self, minute_of_day: int) -> bool:
        return self.start_minute <= minute_of_day <= self.end_minute

    def to_text(self) -> str:
        return f"{_format_minutes(self.start_minute)}-{_format_minutes(self.end_minute)}"


@dataclass(frozen=True)
class AvailabilityWindow:
    enabled: bool = False
    available_from: datetime | None = None
    available_to: datetime | None = None
    slots: tuple[TimeSlot, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "available_from": self.available_from.isoformat(timespec="minutes") if self.available_from else None,
            "available_to": self.available_to.isoformat(timespec="minutes") if self.available_to else None,
            "slots": format_time_slots(self.slots),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AvailabilityWindow":
        return AvailabilityWindow(
            enabled=bool(data.get("enabled", False)),
            available_from=_parse_bound(data.get("available_from")),
            available_to=_parse_bound(data.get("available_to")),
            slots=parse_time_slots(str(data.get("slots") or "")),
        )


def parse_time_slots(text: str) -> tuple[TimeSlot, ...]:
    """Parse newline-delimited ``HH:MM-HH:MM`` lines into slots.

    Blank lines are skipped. A single malformed or backwards line rejects
    the whole text. An empty result means "no time-of-day restriction".
    """
    slots: list[TimeSlot] = []
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        match = _SLOT_RE.fullmatch(line)
        if not match:
            raise ValidationError(f"Invalid time slot on line {line_number}: {line!r}. Expected format: HH:MM-HH:MM")

        start_minute = _to_minutes(match.group("start"))
        end_minute = _to_minutes(match.group("end"))
        if end_minute <= start_minute:
            raise ValidationError(f"Time slot on line {line_number} ends before it starts: {line!r}")
        slots.append(TimeSlot(start_minute, end_minute))

    return tuple(slots)


def format_time_slots(slots: Iterable[TimeSlot]) -> str:
    return "\n".join(slot.to_text() for slot in slots)


def is_available_at(window: AvailabilityWindow | None, instant: datetime) -> bool:
    if window is None or not window.enabled:
        return True
    if window.available_from is not None and instant < window.available_from:
        return False
    if window.available_to is not None and instant > window.available_to:
        return False
    if not window.slots:
        return True

    minute_of_day = _minute_of_day(instant)
    return any(slot.contains(minute_of_day) for slot in window.slots)


def enforce_window(window: AvailabilityWindow | None, start: datetime, end: datetime) -> None:
    """Raise ValidationError unless ``[start, end)`` fits the availability window.

    With slots configured the interval must stay on one calendar day and
    inside a single slot.
    """
    if window is None or not window.enabled:
        return

    for instant in (start, end):
        if window.available_from is not None and instant < window.available_from:
            raise ValidationError("Reservation starts before the object becomes available.")
        if window.available_to is not None and instant > window.available_to:
            raise ValidationError("Reservation ends after the object stops being available.")

    if not window.slots:
        return

    if start.date() != end.date():
        raise ValidationError("Reservation must start and end on the same day for objects with time slots.")

    start_minute = _minute_of_day(start)
    end_minute = _minute_of_day(end)
    if not any(slot.contains(start_minute) and slot.contains(end_minute) for slot in window.slots):
        raise ValidationError("Reservation must fit inside a single availability time slot.")


def _minute_of_day(value: datetime) -> int:
    return (value.hour * 60) + value.minute


def _to_minutes(text: str) -> int:
    hours, minutes = text.split(":")
    return (int(hours) * 60) + int(minutes)


def _format_minutes(value: int) -> str:
    return f"{value // 60:02d}:{value % 60:02d}"


def _parse_bound(value: Any) -> datetime | None:
    # 0 / empty means unbounded on that side
    if value in (None, "", 0, "0"):
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    return parse_instant(value)
