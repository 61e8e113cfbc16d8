from .base import (
    BatchGateway,
    BatchRecord,
    GatewayError,
    QueryResult,
    MATCH_EXACT,
    MATCH_ILIKE,
    MATCH_CONTAINS,
)
from .check_batch import CheckBatchClient
from .sql import SqlBatchGateway
from .supabase import SupabaseRestGateway


def build_gateway(config) -> BatchGateway:
    """Pick the backend adapter named by BACKEND_MODE."""
    mode = (config.get("BACKEND_MODE") or "sql").lower()
    if mode == "sql":
        return SqlBatchGateway()
    if mode == "rest":
        return SupabaseRestGateway(
            base_url=config["SUPABASE_URL"],
            api_key=config["SUPABASE_ANON_KEY"],
            code_column=config.get("SUPABASE_BATCH_CODE_COLUMN", "batch_number"),
            timeout=config.get("SUPABASE_TIMEOUT_SECONDS"),
        )
    raise ValueError(f"Unknown BACKEND_MODE '{mode}'. Must be one of: rest, sql")


def build_verifier(config) -> CheckBatchClient | None:
    url = config.get("CHECK_BATCH_URL")
    if not url:
        return None
    return CheckBatchClient(url, timeout=config.get("CHECK_BATCH_TIMEOUT_SECONDS") or 8.0)


__all__ = [
    "BatchGateway", "BatchRecord", "GatewayError", "QueryResult",
    "MATCH_EXACT", "MATCH_ILIKE", "MATCH_CONTAINS",
    "CheckBatchClient", "SqlBatchGateway", "SupabaseRestGateway",
    "build_gateway", "build_verifier",
]
