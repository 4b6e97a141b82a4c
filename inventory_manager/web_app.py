from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .clock import parse_instant
from .config import load_settings
from .entitlements import EntitlementGate, StaticEntitlementGate
from .errors import (
    AuthorizationError,
    ConflictError,
    EntitlementError,
    InventoryError,
    StateError,
    ValidationError,
)
from .lifecycle import ReservationLifecycle
from .models import Actor, ReservationRecord, ReservationRequest
from .notifications import NotificationDispatcher, OutboxNotificationDispatcher
from .scheduler import ReservationScheduler
from .status import ObjectStatusProjector, display_status, is_available_now
from .yaml_store import InventoryYamlRepository

ERROR_STATUS_CODES: dict[type[InventoryError], int] = {
    ValidationError: 400,
    EntitlementError: 400,
    AuthorizationError: 403,
    ConflictError: 409,
    StateError: 409,
}


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    gate: EntitlementGate | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = load_settings(data_dir)
    repository = InventoryYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    projector = ObjectStatusProjector(repository, clock)
    scheduler = ReservationScheduler(
        repository,
        settings=settings,
        gate=gate or StaticEntitlementGate.from_settings(settings),
        dispatcher=dispatcher or OutboxNotificationDispatcher(data_dir, settings, repository.get_type, clock),
        projector=projector,
        now_provider=clock,
    )
    lifecycle = ReservationLifecycle(repository, settings, projector, clock)

    def _serialize_reservation(record: ReservationRecord) -> dict[str, Any]:
        return {
            "reservation_id": record.reservation_id,
            "object_id": record.object_id,
            "user_id": record.user_id,
            "site_id": record.site_id,
            "start": record.time_start.isoformat(timespec="minutes"),
            "end": record.time_end.isoformat(timespec="minutes"),
            "location": record.location,
            "status": record.status,
            "created_at": record.created_at.isoformat(timespec="seconds"),
            "modified_at": record.modified_at.isoformat(timespec="seconds"),
        }

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/objects")
    def list_objects() -> Any:
        now = clock()
        include_hidden = str(request.args.get("include_hidden", "0")).lower() in {"1", "true", "yes"}
        site_id = request.args.get("site_id") or None

        rows: list[dict[str, Any]] = []
        for obj in repository.list_objects(include_hidden=include_hidden, site_id=site_id):
            in_use = lifecycle.is_active_now(obj.object_id, now)
            rows.append(
                {
                    "object_id": obj.object_id,
                    "name": obj.name,
                    "site_id": obj.site_id,
                    "type_id": obj.type_id,
                    "visible": obj.visible,
                    "cached_status": obj.status,
                    "status": display_status(obj, in_use, now),
                    "is_currently_reserved": in_use,
                    "is_available_now": is_available_now(obj, now),
                    "open_returns": 0 if in_use else lifecycle.count_open_returns(obj.object_id, now),
                }
            )
        return jsonify({"ok": True, "objects": rows})

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        try:
            bounds = {
                key: _optional_instant(request.args.get(key))
                for key in ("overlap_from", "overlap_to", "start_from", "end_to")
            }
        except ValueError as error:
            return jsonify({"ok": False, "message": f"Invalid date filter: {error}"}), 400

        records = repository.list_reservations(
            object_id=request.args.get("object_id") or None,
            user_id=request.args.get("user_id") or None,
            site_id=request.args.get("site_id") or None,
            status=request.args.get("status") or None,
            **bounds,
        )
        return jsonify({"ok": True, "reservations": [_serialize_reservation(record) for record in records]})

    @app.get("/api/objects/<object_id>/last-reservation")
    def last_reservation(object_id: str) -> Any:
        if repository.get_object(object_id) is None:
            return jsonify({"ok": False, "message": "Object not found."}), 404

        summary = lifecycle.last_reservation_summary(object_id)
        if summary is None:
            return jsonify({"ok": True, "summary": None})
        return jsonify(
            {
                "ok": True,
                "summary": {"state": summary.state, "reservation": _serialize_reservation(summary.reservation)},
            }
        )

    @app.get("/api/stats")
    def stats() -> Any:
        include_hidden = str(request.args.get("include_hidden", "0")).lower() in {"1", "true", "yes"}
        usage_stats = lifecycle.usage_stats(include_hidden=include_hidden)
        return jsonify(
            {
                "ok": True,
                "objects": usage_stats.objects,
                "reserved_now": usage_stats.reserved_now,
                "usage": [
                    {"object_id": item.object_id, "name": item.name, "total": item.total} for item in usage_stats.usage
                ],
            }
        )

    @app.get("/api/users/<user_id>/reservation-total")
    def user_reservation_total(user_id: str) -> Any:
        return jsonify({"ok": True, "user_id": user_id, "total": lifecycle.user_reservation_total(user_id)})

    @app.post("/api/reservations")
    def save_reservation() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            actor = _parse_actor(payload)
            reservation_request = ReservationRequest.from_dict(payload.get("reservation") or {})
        except (KeyError, TypeError, ValueError) as error:
            return jsonify({"ok": False, "message": f"Invalid reservation payload: {error}"}), 400

        try:
            reservation_id = scheduler.save(reservation_request, actor)
        except InventoryError as error:
            return _error_response(error)

        saved = repository.get_reservation(reservation_id)
        return jsonify({"ok": True, "reservation_id": reservation_id, "reservation": _serialize_reservation(saved)})

    @app.post("/api/reservations/<reservation_id>/return")
    def return_reservation(reservation_id: str) -> Any:
        return _finish_reservation(reservation_id, lifecycle.return_reservation)

    @app.post("/api/reservations/<reservation_id>/delete")
    def delete_reservation(reservation_id: str) -> Any:
        return _finish_reservation(reservation_id, lifecycle.delete_reservation)

    def _finish_reservation(reservation_id: str, action: Callable[[str, Actor], ReservationRecord]) -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            actor = _parse_actor(payload)
        except (KeyError, TypeError, ValueError) as error:
            return jsonify({"ok": False, "message": f"Invalid actor: {error}"}), 400

        if repository.get_reservation(reservation_id) is None:
            return jsonify({"ok": False, "message": "Reservation not found."}), 404

        try:
            record = action(reservation_id, actor)
        except InventoryError as error:
            return _error_response(error)
        return jsonify({"ok": True, "reservation": _serialize_reservation(record)})

    return app


def _parse_actor(payload: dict[str, Any]) -> Actor:
    data = payload.get("actor")
    if not isinstance(data, dict):
        raise ValueError("actor must be an object")
    user_id = str(data.get("user_id", "")).strip()
    if not user_id:
        raise ValueError("actor.user_id is required")
    return Actor(
        user_id=user_id,
        privileged=_parse_flag(data, "privileged"),
        manage_returns=_parse_flag(data, "manage_returns"),
    )


def _parse_flag(data: dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"actor.{key} must be a JSON boolean")
    return value


def _optional_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    return parse_instant(value)


def _error_response(error: InventoryError) -> Any:
    status_code = 400
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break
    return jsonify({"ok": False, "error": error.__class__.__name__, "message": str(error)}), status_code


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
