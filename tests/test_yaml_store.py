import tempfile
import threading
import time
import unittest
from datetime import datetime
from pathlib import Path

from inventory_manager import (
    InventoryObject,
    InventoryStorageError,
    InventoryYamlRepository,
    ObjectType,
    ReservationRecord,
    StateError,
    ValidationError,
)
from inventory_manager.models import OBJECT_RESERVED, STATUS_RETURNED


def _record(reservation_id: str, start: datetime, end: datetime, object_id: str = "device-1") -> ReservationRecord:
    created = datetime(2026, 2, 24, 8, 0)
    return ReservationRecord(
        reservation_id=reservation_id,
        object_id=object_id,
        user_id="alice",
        site_id="main",
        time_start=start,
        time_end=end,
        created_at=created,
        modified_at=created,
        location="Lab A",
    )


class TestInventoryYamlRepository(unittest.TestCase):
    def test_creates_empty_files_on_first_use(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            InventoryYamlRepository(data_dir)

            for name in ("reservations.yaml", "objects.yaml", "types.yaml", "inventory_events.yaml"):
                self.assertEqual((data_dir / name).read_text(encoding="utf-8"), "[]\n")

    def test_seed_demo_catalog_creates_rooms_and_devices(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            repo.seed_demo_catalog(now=datetime(2026, 2, 24, 9, 0))

            self.assertEqual(len(repo.list_objects()), 8)
            self.assertEqual(len(repo.list_objects(include_hidden=False)), 7)
            room = repo.get_object("room-1")
            self.assertIsNotNone(room)
            self.assertTrue(room.availability.enabled)
            self.assertEqual([slot.to_text() for slot in room.availability.slots], ["08:00-12:00", "13:00-19:00"])
            self.assertFalse(repo.get_type("room").requires_location)
            self.assertTrue(repo.get_type("device").requires_return)

    def test_insert_update_and_log_events(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            record = _record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))
            repo.insert_reservation(record)

            with self.assertRaises(StateError):
                repo.insert_reservation(record)

            moved = ReservationRecord.from_dict({**record.to_dict(), "time_end": "2026-02-24T12:00:00"})
            repo.update_reservation(moved)

            self.assertEqual(repo.get_reservation("r1").time_end, datetime(2026, 2, 24, 12, 0))
            event_types = [event["event_type"] for event in repo.get_events()]
            self.assertIn("RESERVATION_CREATED", event_types)
            self.assertIn("RESERVATION_UPDATED", event_types)

    def test_update_missing_reservation_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            with self.assertRaises(StateError):
                repo.update_reservation(_record("missing", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))

    def test_transaction_rolls_back_on_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")

            with self.assertRaises(RuntimeError):
                with repo.transaction():
                    repo.insert_reservation(_record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
                    self.assertIsNotNone(repo.get_reservation("r1"))
                    raise RuntimeError("boom")

            self.assertIsNone(repo.get_reservation("r1"))
            reloaded = InventoryYamlRepository(Path(temp_dir) / "data")
            self.assertEqual(reloaded.list_reservations(), [])

    def test_log_event_survives_rollback(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")

            with self.assertRaises(RuntimeError):
                with repo.transaction():
                    repo.insert_reservation(_record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
                    repo.log_event("NOTIFICATION_FAILED", {"reservation_id": "r1"})
                    raise RuntimeError("boom")

            event_types = [event["event_type"] for event in repo.get_events()]
            self.assertEqual(event_types, ["NOTIFICATION_FAILED"])

    def test_find_active_overlap_ignores_returned_and_excluded(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            repo.insert_reservation(_record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
            returned = _record("r2", datetime(2026, 2, 24, 12, 0), datetime(2026, 2, 24, 13, 0))
            repo.insert_reservation(ReservationRecord.from_dict({**returned.to_dict(), "status": STATUS_RETURNED}))

            hit = repo.find_active_overlap("device-1", datetime(2026, 2, 24, 10, 30), datetime(2026, 2, 24, 10, 45))
            self.assertEqual(hit.reservation_id, "r1")
            self.assertIsNone(
                repo.find_active_overlap("device-1", datetime(2026, 2, 24, 10, 30), datetime(2026, 2, 24, 10, 45), "r1")
            )
            self.assertIsNone(
                repo.find_active_overlap("device-1", datetime(2026, 2, 24, 12, 0), datetime(2026, 2, 24, 13, 0))
            )
            self.assertIsNone(
                repo.find_active_overlap("device-2", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))
            )

    def test_bulk_mark_returned_only_touches_earlier_rows_of_same_object(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            repo.insert_reservation(_record("old", datetime(2026, 2, 20, 10, 0), datetime(2026, 2, 20, 11, 0)))
            repo.insert_reservation(_record("current", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
            repo.insert_reservation(_record("future", datetime(2026, 2, 28, 10, 0), datetime(2026, 2, 28, 11, 0)))
            repo.insert_reservation(
                _record("other", datetime(2026, 2, 20, 10, 0), datetime(2026, 2, 20, 11, 0), object_id="device-2")
            )

            swept = repo.bulk_mark_returned("device-1", "current", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 10, 30))

            self.assertEqual(swept, 1)
            self.assertEqual(repo.get_reservation("old").status, STATUS_RETURNED)
            self.assertTrue(repo.get_reservation("current").is_active)
            self.assertTrue(repo.get_reservation("future").is_active)
            self.assertTrue(repo.get_reservation("other").is_active)
            self.assertIn("RESERVATIONS_SWEPT", [event["event_type"] for event in repo.get_events()])

    def test_list_reservations_filters(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            repo.insert_reservation(_record("b", datetime(2026, 2, 25, 10, 0), datetime(2026, 2, 25, 11, 0)))
            repo.insert_reservation(_record("a", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))

            ordered = repo.list_reservations(object_id="device-1")
            self.assertEqual([record.reservation_id for record in ordered], ["a", "b"])

            window = repo.list_reservations(
                overlap_from=datetime(2026, 2, 25, 0, 0),
                overlap_to=datetime(2026, 2, 25, 23, 59),
            )
            self.assertEqual([record.reservation_id for record in window], ["b"])
            self.assertEqual(repo.list_reservations(user_id="bob"), [])

    def test_set_object_status_logs_changes_only(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            now = datetime(2026, 2, 24, 9, 0)
            repo.save_type(ObjectType(type_id="device", name="Test device"), now)
            repo.save_object(InventoryObject(object_id="device-1", name="Device", site_id="main", type_id="device"), now)

            repo.set_object_status("device-1", OBJECT_RESERVED, now)
            repo.set_object_status("device-1", OBJECT_RESERVED, now)

            self.assertEqual(repo.get_object("device-1").status, OBJECT_RESERVED)
            changes = [event for event in repo.get_events() if event["event_type"] == "OBJECT_STATUS_CHANGED"]
            self.assertEqual(len(changes), 1)
            with self.assertRaises(ValidationError):
                repo.set_object_status("device-1", "broken", now)

    def test_save_object_rejects_blank_identifiers(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            with self.assertRaises(ValidationError):
                repo.save_object(InventoryObject(object_id=" ", name="Device", site_id="main", type_id="device"))

    def test_corrupted_yaml_is_recovered(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = InventoryYamlRepository(data_dir)
            reservations_path = data_dir / "reservations.yaml"
            reservations_path.write_text("this: [is: invalid", encoding="utf-8")

            self.assertEqual(repo.list_reservations(), [])
            self.assertIn("[]", reservations_path.read_text(encoding="utf-8"))
            self.assertEqual(len(list(data_dir.glob("reservations.corrupt.*.yaml"))), 1)
            self.assertIn("YAML_RECOVERED", [event["event_type"] for event in repo.get_events()])

    def test_list_reservations_start_and_end_filters(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = InventoryYamlRepository(Path(temp_dir) / "data")
            repo.insert_reservation(_record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
            repo.insert_reservation(_record("r2", datetime(2026, 2, 26, 10, 0), datetime(2026, 2, 26, 11, 0)))

            def _ids(**filters) -> list[str]:
                return [record.reservation_id for record in repo.list_reservations(**filters)]

            self.assertEqual(_ids(start_from=datetime(2026, 2, 25)), ["r2"])
            self.assertEqual(_ids(end_to=datetime(2026, 2, 24, 11, 0)), ["r1"])
            self.assertEqual(_ids(start_from=datetime(2026, 2, 25), end_to=datetime(2026, 2, 25, 23, 0)), [])
            self.assertEqual(
                _ids(
                    overlap_from=datetime(2026, 2, 24, 11, 0),
                    overlap_to=datetime(2026, 2, 24, 12, 0),
                    start_from=datetime(2026, 2, 25),
                ),
                ["r1"],
            )


class TestSharedDataDirectory(unittest.TestCase):
    def test_second_repository_waits_for_open_transaction(self) -> None:
        start, end = datetime(2026, 2, 25, 10, 0), datetime(2026, 2, 25, 11, 0)
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo_a = InventoryYamlRepository(data_dir)
            repo_b = InventoryYamlRepository(data_dir)
            staged = threading.Event()
            errors: list[Exception] = []

            def _hold_slot() -> None:
                try:
                    with repo_a.transaction():
                        repo_a.find_active_overlap("device-1", start, end)
                        staged.set()
                        time.sleep(0.3)
                        repo_a.insert_reservation(_record("alice-1", start, end))
                except Exception as error:
                    errors.append(error)

            worker = threading.Thread(target=_hold_slot)
            worker.start()
            self.assertTrue(staged.wait(timeout=5))

            with repo_b.transaction():
                overlap = repo_b.find_active_overlap("device-1", start, end)
                if overlap is None:
                    repo_b.insert_reservation(_record("bob-1", start, end))
            worker.join(timeout=10)

            self.assertEqual(errors, [])
            self.assertIsNotNone(overlap)
            self.assertEqual(overlap.reservation_id, "alice-1")
            self.assertEqual([record.reservation_id for record in repo_b.list_reservations()], ["alice-1"])
            self.assertEqual([record.reservation_id for record in repo_a.list_reservations()], ["alice-1"])

    def test_commits_from_other_repository_are_not_overwritten(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo_a = InventoryYamlRepository(data_dir)
            repo_b = InventoryYamlRepository(data_dir)

            repo_a.insert_reservation(_record("r1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
            repo_b.insert_reservation(_record("r2", datetime(2026, 2, 24, 12, 0), datetime(2026, 2, 24, 13, 0)))
            repo_a.insert_reservation(_record("r3", datetime(2026, 2, 24, 14, 0), datetime(2026, 2, 24, 15, 0)))

            self.assertEqual([record.reservation_id for record in repo_b.list_reservations()], ["r1", "r2", "r3"])

    def test_lock_timeout_raises_storage_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo_a = InventoryYamlRepository(data_dir)
            repo_b = InventoryYamlRepository(data_dir, lock_timeout=0.1)
            staged = threading.Event()
            release = threading.Event()

            def _hold_lock() -> None:
                with repo_a.transaction():
                    staged.set()
                    release.wait(timeout=5)

            worker = threading.Thread(target=_hold_lock)
            worker.start()
            try:
                self.assertTrue(staged.wait(timeout=5))
                with self.assertRaises(InventoryStorageError):
                    repo_b.list_reservations()
            finally:
                release.set()
                worker.join(timeout=5)


if __name__ == "__main__":
    unittest.main()
