from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator
import shutil
import threading

import yaml
from filelock import FileLock, Timeout

from .availability import AvailabilityWindow, parse_time_slots
from .booking import has_time_overlap
from .errors import InventoryStorageError, StateError, ValidationError
from .models import (
    OBJECT_AVAILABLE,
    OBJECT_STATUSES,
    STATUS_ACTIVE,
    STATUS_RETURNED,
    InventoryObject,
    ObjectType,
    ReservationRecord,
)

DEMO_TYPES = [
    ObjectType(type_id="room", name="Meeting room", requires_return=False, requires_location=False),
    ObjectType(type_id="device", name="Test device", requires_return=True, requires_location=True),
]


class InventoryYamlRepository:
    """YAML-backed storage for objects, types and reservations.

    Every public method runs inside :meth:`transaction`, which holds a
    re-entrant lock plus an exclusive lock file on the data directory, and
    stages rows in memory until the outermost block exits cleanly. Any
    number of repositories (and processes) may share one directory.
    """

    def __init__(self, base_dir: str | Path = "data", lock_timeout: float = 10.0) -> None:
        self.base_dir = Path(base_dir)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.objects_file = self.base_dir / "objects.yaml"
        self.types_file = self.base_dir / "types.yaml"
        self.log_file = self.base_dir / "inventory_events.yaml"
        self.lock_file = self.base_dir / ".lock"
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._staged: dict[Path, list[dict[str, Any]]] | None = None
        self._dirty: set[Path] = set()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(str(self.lock_file), timeout=lock_timeout)
        self._ensure_files()

    def _ensure_files(self) -> None:
        with self.transaction():
            for path in (self.reservations_file, self.objects_file, self.types_file, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        try:
            self._file_lock.acquire()
        except Timeout as error:
            raise InventoryStorageError(f"Timed out waiting for the data directory lock: {self.lock_file}") from error
        try:
            yield
        finally:
            self._file_lock.release()

    @contextmanager
    def transaction(self) -> Iterator["InventoryYamlRepository"]:
        with self._lock:
            if self._staged is not None:
                yield self
                return

            with self._exclusive():
                # rows are read lazily under the lock, so other writers' commits are always seen
                self._staged = {}
                self._dirty = set()
                try:
                    yield self
                except BaseException:
                    self._staged = None
                    self._dirty = set()
                    raise

                staged, dirty = self._staged, self._dirty
                self._staged = None
                self._dirty = set()
                for path in (self.reservations_file, self.objects_file, self.types_file, self.log_file):
                    if path in dirty:
                        self._write_yaml_list(path, staged[path])

    def _rows(self, path: Path) -> list[dict[str, Any]]:
        if self._staged is None:
            return self._read_yaml_list(path)
        if path not in self._staged:
            self._staged[path] = self._read_yaml_list(path)
        return self._staged[path]

    def _store(self, path: Path, rows: list[dict[str, Any]]) -> None:
        if self._staged is None:
            self._write_yaml_list(path, rows)
            return
        self._staged[path] = rows
        self._dirty.add(path)

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise InventoryStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._lock:
            events = list(self._rows(self.log_file))
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._store(self.log_file, events)

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        """Append an event outside of any pending transaction."""
        with self._lock:
            if self._staged is None:
                with self.transaction():
                    self._log_event(event_type, payload, event_time)
                return
            # keep failure records even when the surrounding transaction rolls back
            timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)
            if self.log_file in self._staged:
                self._staged[self.log_file].append(events[-1])

    def get_events(self) -> list[dict[str, Any]]:
        with self.transaction():
            return list(self._rows(self.log_file))

    # Types.

    def list_types(self) -> list[ObjectType]:
        with self.transaction():
            return [ObjectType.from_dict(row) for row in self._rows(self.types_file)]

    def get_type(self, type_id: str) -> ObjectType | None:
        for object_type in self.list_types():
            if object_type.type_id == type_id:
                return object_type
        return None

    def save_type(self, object_type: ObjectType, now: datetime | None = None) -> ObjectType:
        if not object_type.type_id.strip() or not object_type.name.strip():
            raise ValidationError("type_id and name must not be empty")

        with self.transaction():
            rows = [row for row in self._rows(self.types_file) if str(row.get("type_id")) != object_type.type_id]
            rows.append(object_type.to_dict())
            self._store(self.types_file, rows)
            self._log_event("TYPE_SAVED", object_type.to_dict(), now)
        return object_type

    # Objects.

    def list_objects(self, include_hidden: bool = True, site_id: str | None = None) -> list[InventoryObject]:
        with self.transaction():
            objects = [InventoryObject.from_dict(row) for row in self._rows(self.objects_file)]
        if not include_hidden:
            objects = [item for item in objects if item.visible]
        if site_id:
            objects = [item for item in objects if item.site_id == site_id]
        return sorted(objects, key=lambda item: (item.name, item.object_id))

    def get_object(self, object_id: str) -> InventoryObject | None:
        with self.transaction():
            for row in self._rows(self.objects_file):
                if str(row.get("object_id")) == object_id:
                    return InventoryObject.from_dict(row)
        return None

    def save_object(self, obj: InventoryObject, now: datetime | None = None) -> InventoryObject:
        if not obj.object_id.strip() or not obj.name.strip():
            raise ValidationError("object_id and name must not be empty")
        if not obj.type_id.strip():
            raise ValidationError("type_id must not be empty")

        effective_now = now or datetime.now()
        with self.transaction():
            rows = self._rows(self.objects_file)
            saved = replace(obj, name=obj.name.strip(), modified_at=effective_now)
            updated = [row for row in rows if str(row.get("object_id")) != obj.object_id]
            updated.append(saved.to_dict())
            self._store(self.objects_file, updated)
            self._log_event(
                "OBJECT_SAVED",
                {"object_id": saved.object_id, "name": saved.name, "visible": saved.visible},
                effective_now,
            )
        return saved

    def set_object_status(self, object_id: str, status: str, now: datetime | None = None) -> InventoryObject | None:
        if status not in OBJECT_STATUSES:
            raise ValidationError(f"Unknown object status: {status}")

        effective_now = now or datetime.now()
        with self.transaction():
            rows = list(self._rows(self.objects_file))
            for index, row in enumerate(rows):
                if str(row.get("object_id")) != object_id:
                    continue
                current = InventoryObject.from_dict(row)
                updated = replace(current, status=status, modified_at=effective_now)
                rows[index] = updated.to_dict()
                self._store(self.objects_file, rows)
                if current.status != status:
                    self._log_event(
                        "OBJECT_STATUS_CHANGED",
                        {"object_id": object_id, "from": current.status, "to": status},
                        effective_now,
                    )
                return updated
        return None

    # Reservations.

    def list_reservations(
        self,
        *,
        object_id: str | None = None,
        user_id: str | None = None,
        site_id: str | None = None,
        status: str | None = None,
        overlap_from: datetime | None = None,
        overlap_to: datetime | None = None,
        start_from: datetime | None = None,
        end_to: datetime | None = None,
    ) -> list[ReservationRecord]:
        """Filter reservations, sorted by start.

        A complete ``overlap_from``/``overlap_to`` range (bounds inclusive) takes
        precedence over the ``start_from``/``end_to`` containment filters.
        """
        with self.transaction():
            records = [ReservationRecord.from_dict(row) for row in self._rows(self.reservations_file)]

        if object_id is not None:
            records = [record for record in records if record.object_id == object_id]
        if user_id is not None:
            records = [record for record in records if record.user_id == user_id]
        if site_id is not None:
            records = [record for record in records if record.site_id == site_id]
        if status is not None:
            records = [record for record in records if record.status == status]
        if overlap_from is not None and overlap_to is not None:
            records = [record for record in records if record.time_start <= overlap_to and record.time_end >= overlap_from]
        else:
            if start_from is not None:
                records = [record for record in records if record.time_start >= start_from]
            if end_to is not None:
                records = [record for record in records if record.time_end <= end_to]
        return sorted(records, key=lambda record: (record.time_start, record.reservation_id))

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        with self.transaction():
            for row in self._rows(self.reservations_file):
                if str(row.get("reservation_id")) == reservation_id:
                    return ReservationRecord.from_dict(row)
        return None

    def find_active_overlap(
        self,
        object_id: str,
        start: datetime,
        end: datetime,
        exclude_id: str | None = None,
    ) -> ReservationRecord | None:
        for record in self.list_reservations(object_id=object_id, status=STATUS_ACTIVE):
            if record.reservation_id == exclude_id:
                continue
            if has_time_overlap(start, end, record.time_start, record.time_end):
                return record
        return None

    def count_active(self, object_id: str) -> int:
        return len(self.list_reservations(object_id=object_id, status=STATUS_ACTIVE))

    def insert_reservation(self, record: ReservationRecord) -> ReservationRecord:
        with self.transaction():
            rows = self._rows(self.reservations_file)
            if any(str(row.get("reservation_id")) == record.reservation_id for row in rows):
                raise StateError(f"Reservation already exists: {record.reservation_id}")
            self._store(self.reservations_file, rows + [record.to_dict()])
            self._log_event(
                "RESERVATION_CREATED",
                {
                    "reservation_id": record.reservation_id,
                    "object_id": record.object_id,
                    "user_id": record.user_id,
                    "start": record.time_start.isoformat(timespec="minutes"),
                    "end": record.time_end.isoformat(timespec="minutes"),
                },
                record.created_at,
            )
        return record

    def update_reservation(self, record: ReservationRecord, event_type: str = "RESERVATION_UPDATED") -> ReservationRecord:
        with self.transaction():
            rows = list(self._rows(self.reservations_file))
            for index, row in enumerate(rows):
                if str(row.get("reservation_id")) == record.reservation_id:
                    rows[index] = record.to_dict()
                    break
            else:
                raise StateError(f"Reservation not found: {record.reservation_id}")

            self._store(self.reservations_file, rows)
            self._log_event(
                event_type,
                {
                    "reservation_id": record.reservation_id,
                    "object_id": record.object_id,
                    "status": record.status,
                    "start": record.time_start.isoformat(timespec="minutes"),
                    "end": record.time_end.isoformat(timespec="minutes"),
                },
                record.modified_at,
            )
        return record

    def bulk_mark_returned(self, object_id: str, exclude_id: str, before_start: datetime, now: datetime) -> int:
        """Mark every other non-returned reservation starting at or before ``before_start`` as returned."""
        with self.transaction():
            rows = list(self._rows(self.reservations_file))
            swept: list[str] = []
            for index, row in enumerate(rows):
                record = ReservationRecord.from_dict(row)
                if record.object_id != object_id or record.reservation_id == exclude_id:
                    continue
                if record.status == STATUS_RETURNED or record.time_start > before_start:
                    continue
                rows[index] = {**record.to_dict(), "status": STATUS_RETURNED, "modified_at": now.isoformat(timespec="seconds")}
                swept.append(record.reservation_id)

            if swept:
                self._store(self.reservations_file, rows)
                self._log_event("RESERVATIONS_SWEPT", {"object_id": object_id, "reservation_ids": swept}, now)
        return len(swept)

    def mark_expired_notified(self, reservation_id: str, now: datetime | None = None) -> ReservationRecord:
        with self.transaction():
            current = self.get_reservation(reservation_id)
            if current is None:
                raise StateError(f"Reservation not found: {reservation_id}")
            return self.update_reservation(
                replace(current, expired_notified=True, modified_at=now or datetime.now()),
                event_type="RESERVATION_EXPIRY_NOTIFIED",
            )

    def seed_demo_catalog(self, now: datetime | None = None, site_id: str = "main") -> list[InventoryObject]:
        """Create a small catalog of rooms and devices for local trials."""
        effective_now = now or datetime.now()
        created: list[InventoryObject] = []
        with self.transaction():
            for object_type in DEMO_TYPES:
                self.save_type(object_type, effective_now)

            for i in range(1, 4):
                created.append(
                    self.save_object(
                        InventoryObject(
                            object_id=f"room-{i}",
                            name=f"Meeting room {i}",
                            site_id=site_id,
                            type_id="room",
                            status=OBJECT_AVAILABLE,
                            availability=AvailabilityWindow(
                                enabled=True,
                                slots=parse_time_slots("08:00-12:00\n13:00-19:00"),
                            ),
                        ),
                        effective_now,
                    )
                )
            for i in range(1, 6):
                created.append(
                    self.save_object(
                        InventoryObject(
                            object_id=f"device-{i}",
                            name=f"Test device {i}",
                            site_id=site_id,
                            type_id="device",
                            visible=i != 5,
                        ),
                        effective_now,
                    )
                )
        return created
