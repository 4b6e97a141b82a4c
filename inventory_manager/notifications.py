from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol

import yaml
from filelock import FileLock, Timeout

from .config import InventorySettings
from .errors import InventoryStorageError
from .models import InventoryObject, ObjectType, ReservationRecord


class NotificationDispatcher(Protocol):
    def send_confirmation(self, reservation: ReservationRecord, obj: InventoryObject, user_id: str) -> None: ...


def replace_tokens(template: str, values: dict[str, str]) -> str:
    """Substitute ``{token}`` placeholders; unknown tokens are left as-is."""
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{" + key + "}", value)
    return rendered


class OutboxNotificationDispatcher:
    """Renders confirmation messages and queues them in ``outbox.yaml`` for delivery."""

    def __init__(
        self,
        base_dir: str | Path,
        settings: InventorySettings | None = None,
        type_lookup: Callable[[str], ObjectType | None] | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.outbox_file = Path(base_dir) / "outbox.yaml"
        self._outbox_lock = FileLock(str(self.outbox_file) + ".lock", timeout=10)
        self.settings = settings or InventorySettings()
        self._type_lookup = type_lookup
        self._clock: Callable[[], datetime] = now_provider or datetime.now

    def render_confirmation(self, reservation: ReservationRecord, obj: InventoryObject, user_id: str) -> dict[str, str]:
        object_type = self._type_lookup(obj.type_id) if self._type_lookup else None
        values = {
            "object": obj.name,
            "type": object_type.name if object_type else obj.type_id,
            "site": reservation.site_id,
            "location": reservation.location or "-",
            "start": reservation.time_start.isoformat(sep=" ", timespec="minutes"),
            "end": reservation.time_end.isoformat(sep=" ", timespec="minutes"),
            "user": user_id,
        }
        return {
            "subject": replace_tokens(self.settings.confirmation_subject_template, values),
            "body": replace_tokens(self.settings.confirmation_body_template, values),
        }

    def send_confirmation(self, reservation: ReservationRecord, obj: InventoryObject, user_id: str) -> None:
        message: dict[str, Any] = {
            "kind": "reservation_confirmation",
            "to": user_id,
            "reservation_id": reservation.reservation_id,
            "queued_at": self._clock().isoformat(timespec="seconds"),
            **self.render_confirmation(reservation, obj, user_id),
        }
        temp_path = self.outbox_file.with_suffix(self.outbox_file.suffix + ".tmp")
        try:
            self.outbox_file.parent.mkdir(parents=True, exist_ok=True)
            with self._outbox_lock:
                messages = self.pending_messages()
                messages.append(message)
                try:
                    temp_path.write_text(yaml.safe_dump(messages, allow_unicode=True, sort_keys=False), encoding="utf-8")
                    temp_path.replace(self.outbox_file)
                finally:
                    if temp_path.exists():
                        temp_path.unlink(missing_ok=True)
        except Timeout as error:
            raise InventoryStorageError(f"Timed out waiting for the outbox lock: {self.outbox_file}") from error
        except OSError as error:
            raise InventoryStorageError(f"Failed to queue confirmation: {self.outbox_file}") from error

    def pending_messages(self) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(self.outbox_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        if not isinstance(payload, list):
            return []
        return [row for row in payload if isinstance(row, dict)]
