# Overview: Flask API routes for user bag statistics.

from flask import Blueprint, jsonify, current_app

from ..errors import http_status_for
from ..services import batch_service
from ..services.sync_service import get_sync_service


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/<user_id>/stats")
def user_stats_route(user_id: str):
    try:
        result = batch_service.get_user_stats(get_sync_service().gateway, user_id)
        return jsonify(result.to_dict()), http_status_for(result.error)
    except Exception:
        current_app.logger.exception("Failed to load user stats")
        return jsonify({"data": None, "error": {"message": "Internal server error"}}), 500
