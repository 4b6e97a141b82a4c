from .availability import AvailabilityWindow, TimeSlot, enforce_window, is_available_at, parse_time_slots
from .booking import has_conflict, has_time_overlap
from .clock import naive_local, parse_instant
from .config import InventorySettings, load_settings
from .entitlements import FALLBACK_LIMITS, EntitlementGate, Limits, StaticEntitlementGate
from .errors import (
	AuthorizationError,
	ConflictError,
	EntitlementError,
	InventoryError,
	InventoryStorageError,
	StateError,
	ValidationError,
)
from .lifecycle import ObjectUsage, ReservationLifecycle, ReservationSummary, UsageStats
from .models import Actor, InventoryObject, ObjectType, ReservationRecord, ReservationRequest
from .notifications import NotificationDispatcher, OutboxNotificationDispatcher
from .scheduler import ReservationScheduler
from .status import ObjectStatusProjector, display_status, is_available_now
from .yaml_store import InventoryYamlRepository

__all__ = [
	"AvailabilityWindow",
	"TimeSlot",
	"enforce_window",
	"is_available_at",
	"parse_time_slots",
	"has_conflict",
	"has_time_overlap",
	"naive_local",
	"parse_instant",
	"InventorySettings",
	"load_settings",
	"FALLBACK_LIMITS",
	"EntitlementGate",
	"Limits",
	"StaticEntitlementGate",
	"AuthorizationError",
	"ConflictError",
	"EntitlementError",
	"InventoryError",
	"InventoryStorageError",
	"StateError",
	"ValidationError",
	"ObjectUsage",
	"ReservationLifecycle",
	"ReservationSummary",
	"UsageStats",
	"Actor",
	"InventoryObject",
	"ObjectType",
	"ReservationRecord",
	"ReservationRequest",
	"NotificationDispatcher",
	"OutboxNotificationDispatcher",
	"ReservationScheduler",
	"ObjectStatusProjector",
	"display_status",
	"is_available_now",
	"InventoryYamlRepository",
]
