# backend/trashdrop/routes/system.py
"""
System health and version endpoints.

Health covers the batch backend (ping) and the local queue store.
"""

import sys
import time
from flask import Blueprint, current_app
from ..services import sync_queue_service
from ..services.sync_service import get_sync_service
from trashdrop.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_backend_health() -> dict:
    """
    Ping the batch backend through the configured adapter.

    Returns dict with status and details.
    """
    start_time = time.time()
    gateway = get_sync_service().gateway
    res = gateway.ping()
    elapsed_ms = (time.time() - start_time) * 1000

    if res.error:
        current_app.logger.warning("Batch backend health check failed: %s", res.error.message)
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "backend": gateway.name,
            "error": "Backend unreachable",
        }
    return {
        "status": "healthy",
        "latency_ms": round(elapsed_ms, 2),
        "backend": gateway.name,
    }


def check_queue_health() -> dict:
    """
    Check the local store by counting pending operations.
    """
    start_time = time.time()
    try:
        pending = sync_queue_service.count_pending()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending": pending,
                "online": get_sync_service().is_online,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Local queue health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Local store error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: backend reachable and local store readable
    - 200 "degraded": backend unreachable, scans will be queued
    - 503: local store unreadable (scans cannot be queued)
    """
    start_time = time.time()

    backend_health = check_backend_health()
    queue_health = check_queue_health()

    if queue_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif backend_health["status"] == "unhealthy":
        overall_status = "degraded"
        http_status = 200  # Scans still accepted into the queue
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "backend": backend_health,
            "sync_queue": queue_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose keys, database URLs or internal paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "0.1.0",
        "environment": env,
        "backend_mode": current_app.config.get("BACKEND_MODE"),
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
