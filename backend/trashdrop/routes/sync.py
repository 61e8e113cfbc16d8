# Overview: Flask API routes for the offline sync queue; status, manual drain and connectivity reports.

from flask import Blueprint, request, jsonify, current_app

from ..services import scan_cache_service, sync_queue_service
from ..services.sync_service import get_sync_service


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.get("/status")
def sync_status_route():
    try:
        return jsonify({"data": get_sync_service().status(), "error": None}), 200
    except Exception:
        current_app.logger.exception("Failed to load sync status")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@sync_bp.get("/queue")
def sync_queue_route():
    """Pending queue entries (oldest first) and the local scan cache."""
    try:
        limit = request.args.get("limit", type=int)
        entries = sync_queue_service.list_pending(
            sync_queue_service.BATCH_ACTIVATION, limit
        )
        cache = scan_cache_service.list_entries()
        return jsonify({
            "data": {
                "entries": [e.to_dict() for e in entries],
                "scan_cache": [c.to_dict() for c in cache],
            },
            "error": None,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list sync queue")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@sync_bp.post("/drain")
def sync_drain_route():
    """
    Replay pending activations now.

    Returns 409 when another drain is already running, 503 when offline.
    """
    try:
        data = request.get_json(silent=True) or {}
        limit = data.get("limit")
        if limit is not None:
            limit = int(limit)
            if limit < 1:
                raise ValueError("limit must be a positive integer")

        sync = get_sync_service()
        if not sync.is_online:
            return jsonify({"data": None, "error": {"message": "Offline; queue will sync when back online"}}), 503

        report = sync.drain(limit)
        if report.skipped:
            return jsonify({"data": report.to_dict(), "error": {"message": "Sync already in progress"}}), 409
        return jsonify({"data": report.to_dict(), "error": None}), 200

    except ValueError as e:
        return jsonify({"data": None, "error": {"message": str(e)}}), 400
    except Exception:
        current_app.logger.exception("Failed to drain sync queue")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@sync_bp.post("/connectivity")
def connectivity_route():
    """
    Report the device's connectivity.

    Body: {online: bool}. Going offline -> online drains the queue.
    """
    try:
        data = request.get_json(silent=True) or {}
        online = data.get("online")
        if not isinstance(online, bool):
            raise ValueError("online must be true or false")

        sync = get_sync_service()
        came_online = sync.set_online(online)
        status = sync.status()
        status["came_online"] = came_online
        return jsonify({"data": status, "error": None}), 200

    except ValueError as e:
        return jsonify({"data": None, "error": {"message": str(e)}}), 400
    except Exception:
        current_app.logger.exception("Failed to update connectivity")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500
