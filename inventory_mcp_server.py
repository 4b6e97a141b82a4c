from __future__ import annotations

from pathlib import Path

from mcp.server.fastmcp import FastMCP

from inventory_manager import (
    Actor,
    InventoryYamlRepository,
    OutboxNotificationDispatcher,
    ReservationLifecycle,
    ReservationRequest,
    ReservationScheduler,
    load_settings,
    parse_instant,
)

mcp = FastMCP(
    "Inventory Reservation MCP Server",
    instructions="Expose inventory objects and reservation operations from the inventory_manager project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
SETTINGS = load_settings(DATA_DIR)
REPOSITORY = InventoryYamlRepository(DATA_DIR)
SCHEDULER = ReservationScheduler(
    REPOSITORY,
    settings=SETTINGS,
    dispatcher=OutboxNotificationDispatcher(DATA_DIR, SETTINGS, REPOSITORY.get_type),
)
LIFECYCLE = ReservationLifecycle(REPOSITORY, SETTINGS, SCHEDULER.projector)


@mcp.resource("inventory://objects")
async def list_objects() -> list[dict]:
    """List visible inventory objects with their cached status."""
    return [obj.to_dict() for obj in REPOSITORY.list_objects(include_hidden=False)]


@mcp.tool()
def list_active_reservations(object_id: str | None = None) -> list[dict]:
    """Return active reservations, optionally filtered by object."""
    records = REPOSITORY.list_reservations(object_id=object_id, status="active")
    return [record.to_dict() for record in records]


@mcp.tool()
def book_object(user_id: str, object_id: str, start_iso: str, end_iso: str, location: str = "") -> dict:
    """Reserve an object for a user using ISO timestamps."""
    reservation_id = SCHEDULER.save(
        ReservationRequest(
            object_id=object_id,
            time_start=parse_instant(start_iso),
            time_end=parse_instant(end_iso),
            location=location,
        ),
        Actor(user_id=user_id),
    )
    return REPOSITORY.get_reservation(reservation_id).to_dict()


@mcp.tool()
def return_reservation(user_id: str, reservation_id: str) -> dict:
    """Mark a reservation as returned on behalf of its owner."""
    return LIFECYCLE.return_reservation(reservation_id, Actor(user_id=user_id)).to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
