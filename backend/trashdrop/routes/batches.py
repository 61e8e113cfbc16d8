# Overview: Flask API routes for batch scanning and lookup; parses input and returns JSON responses.

# backend/trashdrop/routes/batches.py
"""
Batch API routes

POST /api/batches/scan is the single entry point for a scanned QR code or
typed batch code. Offline scans are accepted with 202 and replayed by the
sync reconciler.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import BATCH_INVALID, Result, http_status_for
from ..services import batch_service
from ..services.identifier_service import normalize_identifier
from ..services.sync_service import get_sync_service


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.post("/scan")
def scan_batch_route():
    """
    Activate a scanned batch for a user.

    Body: {identifier, user_id, include_details?}

    Returns:
    - 200: activated (or already activated)
    - 202: offline, queued for sync
    - 400/403/404/409: permanent errors
    - 503: backend unreachable after retries (scan was queued)
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("identifier") or data.get("batch_id") or data.get("code")
        user_id = data.get("user_id")

        if not identifier or not user_id:
            result = Result.failure(BATCH_INVALID, "identifier and user_id required")
            return jsonify(result.to_dict()), 400

        sync = get_sync_service()
        if data.get("include_details"):
            result = sync.scan_and_fetch(identifier, str(user_id))
        else:
            result = sync.process_scan(identifier, str(user_id))

        if result.ok and result.data.get("queued"):
            return jsonify(result.to_dict()), 202
        return jsonify(result.to_dict()), http_status_for(result.error)

    except ValueError as e:
        return jsonify({"data": None, "error": {"message": str(e)}}), 400
    except Exception:
        current_app.logger.exception("Failed to process batch scan")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@batches_bp.get("/lookup")
def lookup_batch_route():
    """Batch details (with bags) for any identifier form."""
    try:
        identifier = request.args.get("identifier", "")
        if not identifier:
            return jsonify(Result.failure(BATCH_INVALID, "identifier required").to_dict()), 400

        sync = get_sync_service()
        result = batch_service.get_batch_details(sync.gateway, identifier, verifier=sync.verifier)
        return jsonify(result.to_dict()), http_status_for(result.error)

    except ValueError as e:
        return jsonify({"data": None, "error": {"message": str(e)}}), 400
    except Exception:
        current_app.logger.exception("Failed to lookup batch")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500


@batches_bp.get("/normalize")
def normalize_route():
    """Canonical key for a raw scan (URL, deep link, or bare code)."""
    raw = request.args.get("raw", "")
    return jsonify({"data": {"raw": raw, "normalized": normalize_identifier(raw)}, "error": None}), 200
