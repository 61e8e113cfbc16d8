# Overview: Flask API routes for individual bag scans; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import http_status_for
from ..services import batch_service
from ..services.sync_service import get_sync_service


bags_bp = Blueprint("bags", __name__, url_prefix="/api/bags")


@bags_bp.post("/<bag_id>/scans")
def record_bag_scan_route(bag_id: str):
    """
    Record a scan of one bag.

    Body: {scanner_id, location?: {text, coordinates}, status?, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = batch_service.record_bag_scan(
            get_sync_service().gateway,
            bag_id,
            data.get("scanner_id") or data.get("user_id"),
            location=data.get("location"),
            status=data.get("status") or "scanned",
            notes=data.get("notes"),
        )
        if result.ok:
            return jsonify(result.to_dict()), 201
        return jsonify(result.to_dict()), http_status_for(result.error)

    except ValueError as e:
        return jsonify({"data": None, "error": {"message": str(e)}}), 400
    except Exception:
        current_app.logger.exception("Failed to record bag scan")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@bags_bp.get("/<bag_id>/scans")
def bag_scan_history_route(bag_id: str):
    try:
        result = batch_service.get_bag_scan_history(get_sync_service().gateway, bag_id)
        return jsonify(result.to_dict()), http_status_for(result.error)
    except Exception:
        current_app.logger.exception("Failed to load bag scan history")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500
