from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .availability import AvailabilityWindow
from .clock import naive_local, parse_instant

STATUS_ACTIVE = "active"
STATUS_RETURNED = "returned"

OBJECT_AVAILABLE = "available"
OBJECT_RESERVED = "reserved"
OBJECT_OFFSITE = "offsite"
OBJECT_STATUSES = {OBJECT_AVAILABLE, OBJECT_RESERVED, OBJECT_OFFSITE}


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    object_id: str
    user_id: str
    site_id: str
    time_start: datetime
    time_end: datetime
    created_at: datetime
    modified_at: datetime
    location: str = ""
    status: str = STATUS_ACTIVE
    expired_notified: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "object_id": self.object_id,
            "user_id": self.user_id,
            "site_id": self.site_id,
            "time_start": self.time_start.isoformat(timespec="seconds"),
            "time_end": self.time_end.isoformat(timespec="seconds"),
            "location": self.location,
            "status": self.status,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "modified_at": self.modified_at.isoformat(timespec="seconds"),
            "expired_notified": self.expired_notified,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            object_id=str(data["object_id"]),
            user_id=str(data["user_id"]),
            site_id=str(data.get("site_id") or ""),
            time_start=parse_instant(data["time_start"]),
            time_end=parse_instant(data["time_end"]),
            location=str(data.get("location") or ""),
            status=str(data.get("status") or STATUS_ACTIVE),
            created_at=parse_instant(data["created_at"]),
            modified_at=parse_instant(data["modified_at"]),
            expired_notified=bool(data.get("expired_notified", False)),
        )


@dataclass(frozen=True)
class ObjectType:
    type_id: str
    name: str
    requires_return: bool = True
    requires_location: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type_id": self.type_id,
            "name": self.name,
            "requires_return": self.requires_return,
            "requires_location": self.requires_location,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ObjectType":
        return ObjectType(
            type_id=str(data["type_id"]),
            name=str(data.get("name") or ""),
            requires_return=bool(data.get("requires_return", True)),
            requires_location=bool(data.get("requires_location", True)),
        )


# Objects without a stored type behave like the strictest type.
DEFAULT_OBJECT_TYPE = ObjectType(type_id="", name="", requires_return=True, requires_location=True)


@dataclass(frozen=True)
class InventoryObject:
    object_id: str
    name: str
    site_id: str
    type_id: str
    visible: bool = True
    status: str = OBJECT_AVAILABLE
    availability: AvailabilityWindow | None = None
    modified_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "object_id": self.object_id,
            "name": self.name,
            "site_id": self.site_id,
            "type_id": self.type_id,
            "visible": self.visible,
            "status": self.status,
        }
        if self.availability is not None:
            payload["availability"] = self.availability.to_dict()
        if self.modified_at is not None:
            payload["modified_at"] = self.modified_at.isoformat(timespec="seconds")
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "InventoryObject":
        status = str(data.get("status") or OBJECT_AVAILABLE)
        availability = data.get("availability")
        return InventoryObject(
            object_id=str(data["object_id"]),
            name=str(data.get("name") or ""),
            site_id=str(data.get("site_id") or ""),
            type_id=str(data.get("type_id") or ""),
            visible=bool(data.get("visible", True)),
            status=status if status in OBJECT_STATUSES else OBJECT_AVAILABLE,
            availability=AvailabilityWindow.from_dict(availability) if isinstance(availability, dict) else None,
            modified_at=(parse_instant(data["modified_at"]) if data.get("modified_at") else None),
        )


@dataclass(frozen=True)
class Actor:
    """The acting user of a core call, with the rights the caller resolved."""

    user_id: str
    privileged: bool = False
    manage_returns: bool = False


@dataclass(frozen=True)
class ReservationRequest:
    object_id: str
    time_start: datetime
    time_end: datetime
    reservation_id: str | None = None
    user_id: str | None = None
    site_id: str | None = None
    location: str = ""
    periodic: bool = False
    repeat_count: int = 1
    repeat_days: int = 1

    def __post_init__(self) -> None:
        # aware and naive datetimes cannot be compared against stored rows
        object.__setattr__(self, "time_start", naive_local(self.time_start))
        object.__setattr__(self, "time_end", naive_local(self.time_end))

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRequest":
        return ReservationRequest(
            object_id=str(data["object_id"]),
            time_start=parse_instant(data["time_start"]),
            time_end=parse_instant(data["time_end"]),
            reservation_id=(str(data["reservation_id"]) if data.get("reservation_id") else None),
            user_id=(str(data["user_id"]) if data.get("user_id") else None),
            site_id=(str(data["site_id"]) if data.get("site_id") else None),
            location=str(data.get("location") or ""),
            periodic=bool(data.get("periodic", False)),
            repeat_count=int(data.get("repeat_count") or 1),
            repeat_days=int(data.get("repeat_days") or 1),
        )
