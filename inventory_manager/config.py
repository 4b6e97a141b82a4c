from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError

SETTINGS_FILE_NAME = "settings.yaml"

DEFAULT_OVERDUE_GRACE_MINUTES = 60
DEFAULT_CONFIRMATION_SUBJECT = "Reservation confirmed: {object}"
DEFAULT_CONFIRMATION_BODY = (
    "Hello {user},\n\n"
    "Your reservation has been registered.\n\n"
    "- Object: {object}\n"
    "- Type: {type}\n"
    "- Site: {site}\n"
    "- Location: {location}\n"
    "- Period: {start} - {end}\n"
)


@dataclass(frozen=True)
class InventorySettings:
    allow_periodic: bool = False
    overdue_grace_minutes: int = DEFAULT_OVERDUE_GRACE_MINUTES
    confirmation_subject_template: str = DEFAULT_CONFIRMATION_SUBJECT
    confirmation_body_template: str = DEFAULT_CONFIRMATION_BODY
    entitlement_mode: str = "free"
    entitlement_limits: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "InventorySettings":
        known = {item.name for item in fields(InventorySettings)}
        unknown = sorted(key for key in data if key not in known)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(unknown)}")

        grace = int(data.get("overdue_grace_minutes", DEFAULT_OVERDUE_GRACE_MINUTES))
        limits = data.get("entitlement_limits") or {}
        if not isinstance(limits, dict):
            raise ValidationError("entitlement_limits must be a mapping")

        return InventorySettings(
            allow_periodic=bool(data.get("allow_periodic", False)),
            overdue_grace_minutes=max(0, grace),
            confirmation_subject_template=str(data.get("confirmation_subject_template") or DEFAULT_CONFIRMATION_SUBJECT),
            confirmation_body_template=str(data.get("confirmation_body_template") or DEFAULT_CONFIRMATION_BODY),
            entitlement_mode=str(data.get("entitlement_mode") or "free"),
            entitlement_limits=dict(limits),
        )


def load_settings(path: str | Path) -> InventorySettings:
    """Load settings from a YAML mapping; a missing file yields the defaults."""
    settings_path = Path(path)
    if settings_path.is_dir():
        settings_path = settings_path / SETTINGS_FILE_NAME

    try:
        payload = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return InventorySettings()
    except yaml.YAMLError as error:
        raise ValidationError(f"Settings file is not valid YAML: {settings_path}") from error

    if payload is None:
        return InventorySettings()
    if not isinstance(payload, dict):
        raise ValidationError("Settings file must contain a mapping at the top level.")
    return InventorySettings.from_dict(payload)
