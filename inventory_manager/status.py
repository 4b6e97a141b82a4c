from __future__ import annotations

from datetime import datetime
from typing import Callable

from .availability import is_available_at
from .models import OBJECT_AVAILABLE, OBJECT_RESERVED, InventoryObject
from .yaml_store import InventoryYamlRepository

DISPLAY_UNAVAILABLE = "unavailable"


class ObjectStatusProjector:
    """Keeps the cached ``status`` field of objects in step with reservation writes.

    The cached value is a display hint only. Decisions inside the package
    use reservations and availability windows instead.
    """

    def __init__(self, repository: InventoryYamlRepository, now_provider: Callable[[], datetime] | None = None) -> None:
        self.repository = repository
        self._clock: Callable[[], datetime] = now_provider or datetime.now

    def project_reserved(self, object_id: str) -> None:
        self.repository.set_object_status(object_id, OBJECT_RESERVED, self._clock())

    def project_available(self, object_id: str) -> bool:
        """Mark the object available when it has no active reservation left."""
        with self.repository.transaction():
            if self.repository.count_active(object_id) > 0:
                return False
            self.repository.set_object_status(object_id, OBJECT_AVAILABLE, self._clock())
        return True


def is_available_now(obj: InventoryObject, now: datetime) -> bool:
    return is_available_at(obj.availability, now)


def display_status(obj: InventoryObject, in_use: bool, now: datetime) -> str:
    """Status label shown for an object.

    ``in_use`` must come from the reservations themselves, e.g.
    ``ReservationLifecycle.is_active_now``.
    """
    if not in_use and not is_available_now(obj, now):
        return DISPLAY_UNAVAILABLE
    if in_use:
        return obj.status
    return OBJECT_AVAILABLE
