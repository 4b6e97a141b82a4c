from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from .yaml_store import InventoryYamlRepository


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals overlap by even one second.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    Containment in either direction is covered by the same two comparisons.
    """
    if new_start >= new_end:
        raise ValidationError("new_start must be earlier than new_end.")

    return new_start < exist_end and new_end > exist_start


def has_conflict(
    repository: "InventoryYamlRepository",
    object_id: str,
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> bool:
    """Return True when an active reservation of ``object_id`` intersects ``[start, end)``."""
    return repository.find_active_overlap(object_id, start, end, exclude_id) is not None
