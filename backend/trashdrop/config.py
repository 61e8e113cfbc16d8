# backend/trashdrop/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw or raw.lower() == "none":
        return None
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Backend database (batches, bags, user stats). Point DATABASE_URL at the
    # hosted Postgres DSN in production.
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///trashdrop.sqlite3",
    )
    # Device-local state: scan cache and sync queue
    SQLALCHEMY_BINDS = {
        "local": os.environ.get("LOCAL_STORE_URL", "sqlite:///trashdrop_local.sqlite3"),
    }
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" talks to the database above, "rest" talks to the PostgREST API
    BACKEND_MODE = os.environ.get("BACKEND_MODE", "sql")

    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    SUPABASE_BATCH_CODE_COLUMN = os.environ.get("SUPABASE_BATCH_CODE_COLUMN", "batch_number")
    SUPABASE_TIMEOUT_SECONDS = _env_float("SUPABASE_TIMEOUT_SECONDS", 15.0)

    # Serverless verification fallback (/check-batch)
    CHECK_BATCH_URL = os.environ.get("CHECK_BATCH_URL", "")
    CHECK_BATCH_TIMEOUT_SECONDS = _env_float("CHECK_BATCH_TIMEOUT_SECONDS", 8.0)

    # Activation retry policy
    ACTIVATION_TIMEOUT_SECONDS = _env_float("ACTIVATION_TIMEOUT_SECONDS", 10.0)
    ACTIVATION_MAX_RETRIES = int(os.environ.get("ACTIVATION_MAX_RETRIES", "3"))
    BACKOFF_BASE_SECONDS = _env_float("BACKOFF_BASE_SECONDS", 1.5)
    BACKOFF_MAX_SECONDS = _env_float("BACKOFF_MAX_SECONDS", 5.0)

    # Reconciler
    SYNC_INTERVAL_SECONDS = _env_float("SYNC_INTERVAL_SECONDS", 30.0)
    SYNC_DRAIN_LIMIT = int(os.environ.get("SYNC_DRAIN_LIMIT", "25"))
    SYNC_AUTOSTART = _env_bool("SYNC_AUTOSTART", False)
    START_ONLINE = _env_bool("START_ONLINE", True)
    CONNECTIVITY_PROBE_URL = os.environ.get("CONNECTIVITY_PROBE_URL", "")
    CONNECTIVITY_PROBE_TIMEOUT_SECONDS = _env_float("CONNECTIVITY_PROBE_TIMEOUT_SECONDS", 5.0)
