from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from .availability import enforce_window
from .booking import has_conflict
from .config import InventorySettings
from .entitlements import FEATURE_PERIODIC, EntitlementGate, StaticEntitlementGate, safe_feature_enabled, safe_limits
from .errors import AuthorizationError, ConflictError, EntitlementError, StateError, ValidationError
from .models import (
    DEFAULT_OBJECT_TYPE,
    STATUS_ACTIVE,
    Actor,
    InventoryObject,
    ReservationRecord,
    ReservationRequest,
)
from .notifications import NotificationDispatcher
from .status import ObjectStatusProjector
from .yaml_store import InventoryYamlRepository


@dataclass(frozen=True)
class _ValidatedRequest:
    obj: InventoryObject
    existing: ReservationRecord | None
    user_id: str
    site_id: str
    location: str


class ReservationScheduler:
    """Creates and edits reservations.

    Validation runs in a fixed order and the first failure wins. Overlap
    checks and writes share one repository transaction, so a periodic
    batch is stored completely or not at all.
    """

    def __init__(
        self,
        repository: InventoryYamlRepository,
        settings: InventorySettings | None = None,
        gate: EntitlementGate | None = None,
        dispatcher: NotificationDispatcher | None = None,
        projector: ObjectStatusProjector | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or InventorySettings()
        self.gate = gate or StaticEntitlementGate.from_settings(self.settings)
        self.dispatcher = dispatcher
        self._clock: Callable[[], datetime] = now_provider or datetime.now
        self.projector = projector or ObjectStatusProjector(repository, self._clock)

    def save(self, request: ReservationRequest, actor: Actor) -> str:
        """Create or edit a reservation and return its id (the first occurrence for periodic requests)."""
        now = self._clock()
        with self.repository.transaction():
            validated = self._validate(request, actor, now)

            if validated.existing is not None:
                saved = self._update(validated.existing, validated, request, now)
                if validated.existing.object_id != saved.object_id:
                    self.projector.project_available(validated.existing.object_id)
            else:
                repeat_count, repeat_days = (1, 1)
                if request.periodic:
                    repeat_count, repeat_days = self._periodic_plan(request, now)
                occurrences = self._insert_occurrences(validated, request, repeat_count, repeat_days, now)
                saved = occurrences[0]

            self.projector.project_reserved(validated.obj.object_id)

        self._notify(saved, validated.obj, validated.user_id, now)
        return saved.reservation_id

    def _periodic_plan(self, request: ReservationRequest, now: datetime) -> tuple[int, int]:
        if not self.settings.allow_periodic or not safe_feature_enabled(self.gate, FEATURE_PERIODIC, self.repository, now):
            raise EntitlementError("Periodic reservations are not enabled.")

        limits = safe_limits(self.gate, self.repository, now)
        repeat_count = max(1, request.repeat_count)
        if limits.periodic_max > 0 and repeat_count > limits.periodic_max:
            repeat_count = limits.periodic_max
        repeat_days = min(max(1, request.repeat_days), max(1, limits.periodic_gap_days))
        return repeat_count, repeat_days

    def _validate(self, request: ReservationRequest, actor: Actor, now: datetime) -> _ValidatedRequest:
        existing: ReservationRecord | None = None
        if request.reservation_id:
            existing = self.repository.get_reservation(request.reservation_id)
            if existing is None or existing.status != STATUS_ACTIVE:
                raise StateError(f"Reservation not found: {request.reservation_id}")
            if existing.time_end <= now:
                raise StateError("An expired reservation cannot be edited.")
            if not actor.privileged and existing.user_id != actor.user_id:
                raise AuthorizationError("You can only edit your own reservations.")

        obj = self.repository.get_object(request.object_id)
        if obj is None:
            raise ValidationError(f"Object not found: {request.object_id}")
        if not obj.visible and not actor.privileged:
            raise AuthorizationError("This object is hidden and cannot be reserved.")

        object_type = self.repository.get_type(obj.type_id) or DEFAULT_OBJECT_TYPE
        location = ""
        if object_type.requires_location:
            location = request.location.strip()
            if not location:
                raise ValidationError("A location is required for this type of object.")

        if request.time_end <= request.time_start:
            raise ValidationError("Reservation start time must be earlier than end time.")

        if not actor.privileged and request.user_id and request.user_id != actor.user_id:
            raise AuthorizationError("You can only reserve objects for yourself.")
        user_id = request.user_id if (actor.privileged and request.user_id) else actor.user_id
        if existing is not None and not request.user_id:
            user_id = existing.user_id

        self._check_slot(obj, request.time_start, request.time_end, existing.reservation_id if existing else None)

        return _ValidatedRequest(
            obj=obj,
            existing=existing,
            user_id=user_id,
            site_id=request.site_id or obj.site_id,
            location=location,
        )

    def _check_slot(self, obj: InventoryObject, start: datetime, end: datetime, exclude_id: str | None) -> None:
        enforce_window(obj.availability, start, end)
        if has_conflict(self.repository, obj.object_id, start, end, exclude_id):
            raise ConflictError(
                f"Reservation {start.isoformat(timespec='minutes')}~{end.isoformat(timespec='minutes')} "
                "overlaps with an existing active reservation."
            )

    def _update(
        self,
        existing: ReservationRecord,
        validated: _ValidatedRequest,
        request: ReservationRequest,
        now: datetime,
    ) -> ReservationRecord:
        updated = ReservationRecord(
            reservation_id=existing.reservation_id,
            object_id=validated.obj.object_id,
            user_id=validated.user_id,
            site_id=validated.site_id,
            time_start=request.time_start,
            time_end=request.time_end,
            location=validated.location,
            status=STATUS_ACTIVE,
            created_at=existing.created_at,
            modified_at=now,
            expired_notified=existing.expired_notified,
        )
        return self.repository.update_reservation(updated)

    def _insert_occurrences(
        self,
        validated: _ValidatedRequest,
        request: ReservationRequest,
        repeat_count: int,
        repeat_days: int,
        now: datetime,
    ) -> list[ReservationRecord]:
        created: list[ReservationRecord] = []
        for index in range(repeat_count):
            offset = timedelta(days=index * repeat_days)
            start = request.time_start + offset
            end = request.time_end + offset
            if index > 0:
                self._check_slot(validated.obj, start, end, None)

            record = ReservationRecord(
                reservation_id=str(uuid4()),
                object_id=validated.obj.object_id,
                user_id=validated.user_id,
                site_id=validated.site_id,
                time_start=start,
                time_end=end,
                location=validated.location,
                status=STATUS_ACTIVE,
                created_at=now,
                modified_at=now,
            )
            created.append(self.repository.insert_reservation(record))
        return created

    def _notify(self, reservation: ReservationRecord, obj: InventoryObject, user_id: str, now: datetime) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.send_confirmation(reservation, obj, user_id)
        except Exception as error:
            self.repository.log_event(
                "NOTIFICATION_FAILED",
                {"reservation_id": reservation.reservation_id, "reason": str(error) or error.__class__.__name__},
                now,
            )
