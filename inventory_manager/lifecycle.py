from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from .config import InventorySettings
from .errors import AuthorizationError, StateError
from .models import DEFAULT_OBJECT_TYPE, STATUS_ACTIVE, STATUS_RETURNED, Actor, ObjectType, ReservationRecord
from .status import ObjectStatusProjector
from .yaml_store import InventoryYamlRepository

SUMMARY_ACTIVE = "active"
SUMMARY_EXPIRED = "expired"


@dataclass(frozen=True)
class ReservationSummary:
    reservation: ReservationRecord
    state: str


@dataclass(frozen=True)
class ObjectUsage:
    object_id: str
    name: str
    total: int


@dataclass(frozen=True)
class UsageStats:
    objects: int
    reserved_now: int
    usage: list[ObjectUsage]


class ReservationLifecycle:
    """Return/cancel transitions (``active -> returned``) and the queries around them."""

    def __init__(
        self,
        repository: InventoryYamlRepository,
        settings: InventorySettings | None = None,
        projector: ObjectStatusProjector | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or InventorySettings()
        self._clock: Callable[[], datetime] = now_provider or datetime.now
        self.projector = projector or ObjectStatusProjector(repository, self._clock)

    def is_active_now(self, object_id: str, now: datetime | None = None) -> bool:
        effective_now = now or self._clock()
        return any(
            record.time_start <= effective_now < record.time_end
            for record in self.repository.list_reservations(object_id=object_id, status=STATUS_ACTIVE)
        )

    def count_open_returns(self, object_id: str, now: datetime | None = None) -> int:
        """Count ended, still-active reservations of an object whose type expects a return."""
        obj = self.repository.get_object(object_id)
        if obj is None or not self._object_type(obj.type_id).requires_return:
            return 0

        effective_now = now or self._clock()
        return sum(
            1
            for record in self.repository.list_reservations(object_id=object_id, status=STATUS_ACTIVE)
            if record.time_end < effective_now
        )

    def unreturned_object_ids(self, now: datetime | None = None) -> list[str]:
        effective_now = now or self._clock()
        object_ids = {
            record.object_id
            for record in self.repository.list_reservations(status=STATUS_ACTIVE)
            if record.time_end < effective_now
        }
        return sorted(object_ids)

    def find_overdue(self, now: datetime | None = None) -> list[ReservationRecord]:
        """Active reservations past their end by more than the grace period, for return reminders."""
        threshold = (now or self._clock()) - timedelta(minutes=self.settings.overdue_grace_minutes)
        overdue: list[ReservationRecord] = []
        for record in self.repository.list_reservations(status=STATUS_ACTIVE):
            if record.time_end >= threshold:
                continue
            obj = self.repository.get_object(record.object_id)
            object_type = self._object_type(obj.type_id) if obj else DEFAULT_OBJECT_TYPE
            if object_type.requires_return:
                overdue.append(record)
        return overdue

    def find_expired_unnotified(self, now: datetime | None = None) -> list[ReservationRecord]:
        effective_now = now or self._clock()
        return [
            record
            for record in self.repository.list_reservations()
            if record.status != STATUS_RETURNED and record.time_end < effective_now and not record.expired_notified
        ]

    def mark_expired_notified(self, reservation_id: str) -> ReservationRecord:
        return self.repository.mark_expired_notified(reservation_id, self._clock())

    def last_reservation_summary(self, object_id: str, now: datetime | None = None) -> ReservationSummary | None:
        """Latest reservation of an object (by start), labelled ``active``, ``expired`` or ``""``."""
        records = self.repository.list_reservations(object_id=object_id)
        if not records:
            return None

        latest = max(records, key=lambda record: (record.time_start, record.created_at))
        effective_now = now or self._clock()
        state = ""
        if latest.time_start <= effective_now < latest.time_end:
            state = SUMMARY_ACTIVE
        elif latest.time_end < effective_now:
            state = SUMMARY_EXPIRED
        return ReservationSummary(reservation=latest, state=state)

    def usage_stats(self, include_hidden: bool = False, now: datetime | None = None) -> UsageStats:
        effective_now = now or self._clock()
        objects = self.repository.list_objects(include_hidden=include_hidden)
        object_ids = {obj.object_id for obj in objects}

        totals = {object_id: 0 for object_id in object_ids}
        reserved_now: set[str] = set()
        for record in self.repository.list_reservations():
            if record.object_id not in object_ids:
                continue
            totals[record.object_id] += 1
            if record.is_active and record.time_start <= effective_now < record.time_end:
                reserved_now.add(record.object_id)

        usage = [
            ObjectUsage(object_id=obj.object_id, name=obj.name, total=totals[obj.object_id])
            for obj in sorted(objects, key=lambda item: (-totals[item.object_id], item.name, item.object_id))
        ]
        return UsageStats(objects=len(objects), reserved_now=len(reserved_now), usage=usage)

    def user_reservation_total(self, user_id: str) -> int:
        """All reservations ever made for ``user_id``, returned ones included."""
        return len(self.repository.list_reservations(user_id=user_id))

    def return_reservation(self, reservation_id: str, actor: Actor) -> ReservationRecord:
        with self.repository.transaction():
            reservation = self._reservation_for_actor(reservation_id, actor)
            return self._mark_returned(reservation)

    def delete_reservation(self, reservation_id: str, actor: Actor) -> ReservationRecord:
        """Cancel a reservation that has not ended yet; history is kept as ``returned``."""
        with self.repository.transaction():
            reservation = self._reservation_for_actor(reservation_id, actor)
            if reservation.time_end <= self._clock():
                raise StateError("An expired reservation cannot be deleted; return it instead.")
            return self._mark_returned(reservation)

    def _reservation_for_actor(self, reservation_id: str, actor: Actor) -> ReservationRecord:
        reservation = self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise StateError(f"Reservation not found: {reservation_id}")
        if reservation.user_id != actor.user_id and not (actor.privileged and actor.manage_returns):
            raise AuthorizationError("You are not allowed to manage this reservation.")
        if reservation.status != STATUS_ACTIVE:
            raise StateError("Reservation has already been returned.")
        return reservation

    def _mark_returned(self, reservation: ReservationRecord) -> ReservationRecord:
        now = self._clock()
        returned = replace(
            reservation,
            status=STATUS_RETURNED,
            time_end=min(reservation.time_end, now),
            modified_at=now,
        )
        self.repository.update_reservation(returned, event_type="RESERVATION_RETURNED")
        # close stale rows that should already have been returned
        self.repository.bulk_mark_returned(reservation.object_id, reservation.reservation_id, reservation.time_start, now)
        self.projector.project_available(reservation.object_id)
        return returned

    def _object_type(self, type_id: str) -> ObjectType:
        return self.repository.get_type(type_id) or DEFAULT_OBJECT_TYPE
