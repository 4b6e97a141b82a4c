from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from .errors import EntitlementError

if TYPE_CHECKING:
    from .config import InventorySettings
    from .yaml_store import InventoryYamlRepository

FEATURE_PERIODIC = "periodic"
FEATURE_ALLOW_HIDDEN = "allowHidden"
FEATURE_AVAILABILITY = "availability"
FEATURE_VISIBILITY = "visibility"
PRO_FEATURES = {FEATURE_PERIODIC, FEATURE_ALLOW_HIDDEN, FEATURE_AVAILABILITY, FEATURE_VISIBILITY}


@dataclass(frozen=True)
class Limits:
    max_objects: int = 0
    max_properties: int = 0
    allow_hidden: bool = False
    periodic_max: int = 0
    periodic_gap_days: int = 1

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Limits":
        return Limits(
            max_objects=max(0, int(data.get("max_objects") or 0)),
            max_properties=max(0, int(data.get("max_properties") or 0)),
            allow_hidden=bool(data.get("allow_hidden", False)),
            periodic_max=max(0, int(data.get("periodic_max") or 0)),
            periodic_gap_days=max(1, int(data.get("periodic_gap_days") or 1)),
        )


# Used whenever limits cannot be resolved. periodic_max=1 keeps a broken
# gate from turning into "unlimited" (0 means no cap).
FALLBACK_LIMITS = Limits(
    max_objects=1,
    max_properties=1,
    allow_hidden=False,
    periodic_max=1,
    periodic_gap_days=7,
)


class EntitlementGate(Protocol):
    def get_limits(self) -> Limits: ...

    def is_feature_enabled(self, name: str) -> bool: ...

    def is_pro(self) -> bool: ...

    def require_pro(self) -> None: ...


class StaticEntitlementGate:
    """Gate answering from a fixed mode and limit set, usually read from settings."""

    def __init__(self, mode: str = "free", limits: Limits | None = None) -> None:
        self.mode = mode
        self._limits = limits or FALLBACK_LIMITS

    @classmethod
    def from_settings(cls, settings: "InventorySettings") -> "StaticEntitlementGate":
        limits = Limits.from_dict(settings.entitlement_limits) if settings.entitlement_limits else None
        return cls(settings.entitlement_mode, limits)

    def is_pro(self) -> bool:
        return self.mode == "pro"

    def require_pro(self) -> None:
        if not self.is_pro():
            raise EntitlementError("This feature requires a Pro license.")

    def get_limits(self) -> Limits:
        if self.is_pro():
            return self._limits
        return replace(self._limits, allow_hidden=False)

    def is_feature_enabled(self, name: str) -> bool:
        if name not in PRO_FEATURES or not self.is_pro():
            return False
        if name == FEATURE_ALLOW_HIDDEN:
            return self._limits.allow_hidden
        return True


def safe_limits(
    gate: EntitlementGate,
    repository: "InventoryYamlRepository | None" = None,
    now: datetime | None = None,
) -> Limits:
    """Return the gate's limits, or the conservative fallback when the lookup fails."""
    try:
        return gate.get_limits()
    except Exception as error:
        if repository is not None:
            repository.log_event(
                "ENTITLEMENT_FALLBACK",
                {"call": "get_limits", "reason": str(error) or error.__class__.__name__},
                now,
            )
        return FALLBACK_LIMITS


def safe_feature_enabled(
    gate: EntitlementGate,
    name: str,
    repository: "InventoryYamlRepository | None" = None,
    now: datetime | None = None,
) -> bool:
    try:
        return bool(gate.is_feature_enabled(name))
    except Exception as error:
        if repository is not None:
            repository.log_event(
                "ENTITLEMENT_FALLBACK",
                {"call": "is_feature_enabled", "feature": name, "reason": str(error) or error.__class__.__name__},
                now,
            )
        return False
