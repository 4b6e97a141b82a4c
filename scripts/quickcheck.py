from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
import traceback

from inventory_manager import (
    Actor,
    ConflictError,
    InventoryYamlRepository,
    ReservationLifecycle,
    ReservationRequest,
    ReservationScheduler,
)


def main() -> int:
    print("[INFO] Inventory Manager Quick Check")
    print("[INFO] Seeding demo catalog and booking a device...")

    now = datetime(2026, 2, 24, 10, 0)
    repo = InventoryYamlRepository("data")
    objects = repo.seed_demo_catalog(now=now)
    print(f"[OK] Demo catalog saved: {len(objects)} objects")

    scheduler = ReservationScheduler(repo, now_provider=lambda: now)
    lifecycle = ReservationLifecycle(repo, projector=scheduler.projector, now_provider=lambda: now)
    actor = Actor(user_id="quickcheck")

    start = now + timedelta(days=1)
    reservation_id = scheduler.save(
        ReservationRequest(object_id="device-1", time_start=start, time_end=start + timedelta(hours=1), location="Lab A"),
        actor,
    )
    print(f"[OK] Reserved device-1: {reservation_id}")

    try:
        scheduler.save(
            ReservationRequest(
                object_id="device-1",
                time_start=start + timedelta(minutes=30),
                time_end=start + timedelta(minutes=90),
                location="Lab A",
            ),
            actor,
        )
        print("[ERROR] Overlapping reservation was accepted.")
        return 1
    except ConflictError:
        print("[OK] Overlapping reservation rejected")

    returned = lifecycle.delete_reservation(reservation_id, actor)
    print(f"[OK] Reservation cancelled, status={returned.status}")
    print(f"[OK] Reservations YAML: {Path('data/reservations.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/inventory_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
