# Overview: Persistent queue of operations created while the backend was unreachable.

"""
Sync Queue Store

Append-only list of pending operations, replayed by BatchSyncService.drain
once connectivity returns.

RULES:
- Entries are removed ONLY after the operation succeeded.
- A failed replay records attempts/last_error; the payload is never changed.
- Entries are replayed in creation order; a failed entry goes behind the
  entries that have not been retried since (see list_due).
"""

from __future__ import annotations

from ..extensions import db
from ..models import SyncQueueEntry
from trashdrop.time_utils import utcnow
from . import scan_cache_service


BATCH_ACTIVATION = "batch_activation"
VALID_OPERATIONS = {BATCH_ACTIVATION}


class SyncQueueError(ValueError):
    """Raised for malformed queue operations."""


def _identifier_of(operation: str, payload: dict) -> str | None:
    if operation == BATCH_ACTIVATION:
        return payload.get("batch_identifier")
    return None


def enqueue(operation: str, payload: dict) -> SyncQueueEntry:
    """
    Persist a new pending operation.

    For batch activations the identifier is also marked queued in the local
    scan cache, so the UI can show "pending" without a round trip.
    """
    if operation not in VALID_OPERATIONS:
        raise SyncQueueError(
            f"Invalid operation '{operation}'. Must be one of: {', '.join(sorted(VALID_OPERATIONS))}"
        )
    if not isinstance(payload, dict):
        raise SyncQueueError("Queue payload must be a JSON object")

    identifier = _identifier_of(operation, payload)
    if operation == BATCH_ACTIVATION and not identifier:
        raise SyncQueueError("batch_activation payload requires batch_identifier")

    entry = SyncQueueEntry(
        operation=operation,
        payload=dict(payload),
        identifier=identifier,
        attempts=0,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.commit()

    if identifier:
        scan_cache_service.mark_scanned(
            identifier, payload.get("user_id"), success=False, queued=True
        )
    return entry


def get_entry(entry_id: int) -> SyncQueueEntry | None:
    return db.session.get(SyncQueueEntry, entry_id)


def list_pending(operation: str | None = BATCH_ACTIVATION, limit: int | None = None) -> list[SyncQueueEntry]:
    q = db.session.query(SyncQueueEntry)
    if operation is not None:
        q = q.filter(SyncQueueEntry.operation == operation)
    q = q.order_by(SyncQueueEntry.created_at.asc(), SyncQueueEntry.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def list_due(operation: str = BATCH_ACTIVATION, limit: int | None = None) -> list[SyncQueueEntry]:
    """
    Entries in replay order: never-attempted first, then least recently attempted.

    A failed replay moves its entry behind everything else, so failing
    entries at the head cannot starve the rest of the queue.
    """
    q = (
        db.session.query(SyncQueueEntry)
        .filter(SyncQueueEntry.operation == operation)
        .order_by(
            SyncQueueEntry.last_attempt_at.is_(None).desc(),
            SyncQueueEntry.last_attempt_at.asc(),
            SyncQueueEntry.created_at.asc(),
            SyncQueueEntry.id.asc(),
        )
    )
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def find_pending(operation: str, identifier: str) -> SyncQueueEntry | None:
    """Oldest pending entry for identifier, if any."""
    if not identifier:
        return None
    return (
        db.session.query(SyncQueueEntry)
        .filter(
            SyncQueueEntry.operation == operation,
            SyncQueueEntry.identifier == identifier,
        )
        .order_by(SyncQueueEntry.created_at.asc(), SyncQueueEntry.id.asc())
        .first()
    )


def remove(entry_id: int) -> bool:
    entry = get_entry(entry_id)
    if entry is None:
        return False
    db.session.delete(entry)
    db.session.commit()
    return True


def record_failure(entry_id: int, message: str | None) -> SyncQueueEntry | None:
    entry = get_entry(entry_id)
    if entry is None:
        return None
    entry.attempts = (entry.attempts or 0) + 1
    entry.last_error = message
    entry.last_attempt_at = utcnow()
    db.session.commit()
    return entry


def count_pending(operation: str | None = None) -> int:
    q = db.session.query(SyncQueueEntry)
    if operation is not None:
        q = q.filter(SyncQueueEntry.operation == operation)
    return q.count()
