# Overview: Batch lookup and activation; credits a user's bag balance exactly once per batch.

"""
Batch Service - resolve and activate scanned batches

================================================================================
ACTIVATION: active -> used, exactly once
================================================================================

1. Normalize the scanned identifier
2. Resolve it to a batch (resolve_batch cascade below)
3. Ownership: unowned batches are claimable by anyone, owned ones only by
   their owner
4. Status: used/activated/completed short-circuits as already_activated
   (idempotent replay); any other non-'active' status is BATCH_INACTIVE
5. Bag count: bag_inventory rows if there are any, else batch.bag_count
6. Conditional transition + stats credit
7. bags_updated event

PARTIAL FAILURE: once the batch row says 'used', the bags physically left the
shelf. A failing stats credit is reported as a warning on a successful result,
never as an error.

LOOKUP CASCADE (first non-empty step wins):
    id (only for UUIDs) -> exact code -> case-insensitive code -> code contains
    -> remote /check-batch verifier (if configured)
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..adapters.base import (
    BatchGateway,
    BatchRecord,
    GatewayError,
    MATCH_CONTAINS,
    MATCH_EXACT,
    MATCH_ILIKE,
)
from ..errors import (
    ActivationError,
    Result,
    BACKEND_ERROR,
    BATCH_INACTIVE,
    BATCH_INVALID,
    BATCH_NOT_FOUND,
    BATCH_NOT_OWNED,
)
from .. import signals
from .identifier_service import is_uuid, normalize_identifier

logger = logging.getLogger(__name__)


ACTIVE_STATUS = "active"
USED_STATUS = "used"
CONSUMED_STATUSES = frozenset({"used", "activated", "completed"})

MATCHED_BY_ID = "id"
MATCHED_BY_CODE = "code"
MATCHED_BY_CODE_ILIKE = "code_ilike"
MATCHED_BY_CODE_CONTAINS = "code_contains"
MATCHED_BY_REMOTE = "remote"
NOT_FOUND = "not_found"

_CODE_STEPS = (
    (MATCH_EXACT, MATCHED_BY_CODE),
    (MATCH_ILIKE, MATCHED_BY_CODE_ILIKE),
    (MATCH_CONTAINS, MATCHED_BY_CODE_CONTAINS),
)


@dataclass
class Resolution:
    """Tagged lookup result: which cascade step found the batch, if any."""
    matched_by: str
    batch: Optional[BatchRecord] = None
    error: Optional[GatewayError] = None

    @property
    def found(self) -> bool:
        return self.batch is not None


def _gateway_failure(error: GatewayError, context: str) -> ActivationError:
    return ActivationError(
        error.code or BACKEND_ERROR,
        f"{context}: {error.message}",
        retryable=error.retryable,
    )


def resolve_batch(gateway: BatchGateway, identifier: str, verifier=None) -> Resolution:
    """
    Find the batch for an already-normalized identifier.

    Returns Resolution(NOT_FOUND) when nothing matched. If every step that
    ran failed with a backend error (rather than returning no rows) the
    first error is attached so callers can tell "missing" from "unreachable".
    """
    first_error: GatewayError | None = None

    if is_uuid(identifier):
        res = gateway.get_batch_by_id(identifier)
        if res.error:
            first_error = res.error
        elif res.data is not None:
            return Resolution(MATCHED_BY_ID, res.data)

    for match, tag in _CODE_STEPS:
        res = gateway.find_batches_by_code(identifier, match)
        if res.error:
            first_error = first_error or res.error
            continue
        if res.data:
            return Resolution(tag, res.data[0])

    if verifier is not None:
        if is_uuid(identifier):
            res = verifier.check(batch_id=identifier)
        else:
            res = verifier.check(batch_number=identifier)
        if res.ok and res.data is not None:
            return Resolution(MATCHED_BY_REMOTE, res.data)
        if res.error:
            first_error = first_error or res.error

    return Resolution(NOT_FOUND, error=first_error)


def _require_batch(gateway: BatchGateway, normalized: str, verifier) -> Resolution:
    resolution = resolve_batch(gateway, normalized, verifier)
    if resolution.found:
        return resolution
    if resolution.error is not None:
        raise _gateway_failure(resolution.error, "Batch lookup failed")
    raise ActivationError(BATCH_NOT_FOUND, f"Batch not found for identifier '{normalized}'")


def _check_ownership(batch: BatchRecord, user_id: str) -> None:
    if batch.owner_id is None:
        return
    if batch.owner_id != str(user_id).strip():
        raise ActivationError(
            BATCH_NOT_OWNED,
            "This batch is not assigned to the current user",
            batch_id=batch.id,
        )


def resolve_bag_count(gateway: BatchGateway, batch: BatchRecord) -> int:
    """
    Bags to credit for a batch.

    bag_inventory rows are authoritative when they exist; batches without
    bag-level tracking (or an unreachable bag table) fall back to bag_count.
    """
    res = gateway.count_bags(batch.id)
    if res.ok and res.count:
        return int(res.count)
    return batch.bag_count


def _already_activated(batch: BatchRecord, matched_by: str) -> dict:
    return {
        "activated": False,
        "already_activated": True,
        "bags_added": 0,
        "batch_id": batch.id,
        "batch_code": batch.code,
        "status": batch.status,
        "matched_by": matched_by,
    }


def _activate(gateway: BatchGateway, identifier: str, user_id: str, verifier, source: str) -> Result:
    normalized = normalize_identifier(identifier)
    if not normalized:
        raise ActivationError(BATCH_INVALID, "Batch identifier is required")
    if not user_id or not str(user_id).strip():
        raise ActivationError(BATCH_INVALID, "User ID is required")
    user_id = str(user_id).strip()

    resolution = _require_batch(gateway, normalized, verifier)
    batch = resolution.batch

    _check_ownership(batch, user_id)

    if batch.status in CONSUMED_STATUSES:
        return Result.success(_already_activated(batch, resolution.matched_by))
    if batch.status is not None and batch.status != ACTIVE_STATUS:
        raise ActivationError(
            BATCH_INACTIVE,
            f"Batch is not active (status '{batch.status}')",
            batch_id=batch.id,
            current_status=batch.status,
        )

    bag_count = resolve_bag_count(gateway, batch)

    updated = gateway.mark_batch_used(batch.id, user_id)
    if updated.error:
        raise _gateway_failure(updated.error, "Failed to activate batch")
    if updated.data is None:
        # Lost the race: someone flipped the row between our read and update
        current = gateway.get_batch_by_id(batch.id)
        if current.ok and current.data is not None and current.data.status in CONSUMED_STATUSES:
            return Result.success(_already_activated(current.data, resolution.matched_by))
        status = current.data.status if current.ok and current.data is not None else None
        raise ActivationError(
            BATCH_INACTIVE,
            "Batch is no longer active",
            batch_id=batch.id,
            current_status=status,
        )

    warnings: list[str] = []
    stats = None
    bags_added = bag_count
    credit = gateway.credit_user_stats(user_id, batch.id, bag_count)
    if credit.error:
        logger.warning("Batch %s activated for %s but stats credit failed: %s", batch.id, user_id, credit.error.message)
        warnings.append(f"Batch activated but bag count was not updated: {credit.error.message}")
    else:
        stats = credit.data.get("stats")
        if not credit.data.get("credited"):
            bags_added = 0
            warnings.append("Batch was already credited to this user")

    if bags_added:
        signals.emit(
            signals.bags_updated,
            user_id=user_id,
            delta_bags=bags_added,
            source=source,
        )

    return Result.success(
        {
            "activated": True,
            "already_activated": False,
            "bags_added": bags_added,
            "batch_id": batch.id,
            "batch_code": batch.code,
            "status": USED_STATUS,
            "matched_by": resolution.matched_by,
            "stats": stats,
        },
        warnings=warnings,
    )


def activate_batch_for_user(
    gateway: BatchGateway,
    identifier: str,
    user_id: str,
    *,
    verifier=None,
    source: str = "batch-scan",
) -> Result:
    """
    Activate a scanned batch for user_id and credit its bags.

    Never raises for expected failures; see module docstring for the steps.
    """
    try:
        return _activate(gateway, identifier, user_id, verifier, source)
    except ActivationError as exc:
        return Result(error=exc)


def get_batch_details(gateway: BatchGateway, identifier: str, *, verifier=None) -> Result:
    """Batch record plus its bag rows."""
    normalized = normalize_identifier(identifier)
    if not normalized:
        return Result.failure(BATCH_INVALID, "Batch identifier is required")

    try:
        resolution = _require_batch(gateway, normalized, verifier)
    except ActivationError as exc:
        return Result(error=exc)

    batch = resolution.batch
    warnings = []
    bags_res = gateway.list_bags(batch.id)
    if bags_res.error:
        bags = []
        warnings.append(f"Bags unavailable: {bags_res.error.message}")
    else:
        bags = bags_res.data or []

    data = batch.to_dict()
    data["matched_by"] = resolution.matched_by
    data["bags"] = bags
    data["total_bags"] = len(bags) or batch.bag_count
    return Result.success(data, warnings=warnings)


def get_user_stats(gateway: BatchGateway, user_id: str) -> Result:
    if not user_id:
        return Result.failure(BATCH_INVALID, "User ID is required")
    res = gateway.get_user_stats(str(user_id))
    if res.error:
        return Result.failure(res.error.code, res.error.message)
    stats = res.data or {
        "user_id": str(user_id),
        "available_bags": 0,
        "total_batches": 0,
        "total_bags_scanned": 0,
        "scanned_batch_ids": [],
    }
    return Result.success(stats)


def record_bag_scan(
    gateway: BatchGateway,
    bag_id: str,
    scanner_id: str,
    *,
    location: dict | None = None,
    status: str = "scanned",
    notes: str | None = None,
) -> Result:
    """
    Record one scan of a bag and mark the bag as scanned.

    location: optional {"text": "...", "coordinates": [lat, lng]}
    """
    if not bag_id or not scanner_id:
        return Result.failure(BATCH_INVALID, "Bag ID and scanner ID are required")

    updated = gateway.update_bag_status(str(bag_id), "scanned")
    if updated.error:
        return Result.failure(updated.error.code, updated.error.message)
    if updated.data is None:
        return Result.failure(BATCH_NOT_FOUND, f"Bag {bag_id} not found")

    location = location or {}
    inserted = gateway.insert_bag_scan({
        "bag_id": str(bag_id),
        "scanned_by": str(scanner_id),
        "location": location.get("text"),
        "coordinates": location.get("coordinates"),
        "status": status or "scanned",
        "notes": notes,
    })
    if inserted.error:
        return Result.failure(inserted.error.code, inserted.error.message)
    return Result.success(inserted.data)


def get_bag_scan_history(gateway: BatchGateway, bag_id: str) -> Result:
    if not bag_id:
        return Result.failure(BATCH_INVALID, "Bag ID is required")
    res = gateway.list_bag_scans(str(bag_id))
    if res.error:
        return Result.failure(res.error.code, res.error.message)
    return Result.success(res.data or [])
