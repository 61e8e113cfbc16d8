# Overview: Device-local scan cache used to suppress duplicate batch activations.

"""
Local Scan Cache

Best-effort, per-device memory of which identifiers were already scanned.
It is NOT authoritative: user_stats.scanned_batch_ids on the backend decides
whether a batch was credited. The cache only saves a network round trip and
lets the UI show "pending" for scans that are sitting in the sync queue.

Keys are normalized identifiers (see identifier_service.normalize_identifier).
"""

from __future__ import annotations

from ..extensions import db
from ..models import ScanCacheEntry
from trashdrop.time_utils import utcnow


def get_entry(identifier: str) -> ScanCacheEntry | None:
    if not identifier:
        return None
    return db.session.get(ScanCacheEntry, identifier)


def is_locally_scanned(identifier: str) -> bool:
    """True if this device already activated or queued the identifier."""
    entry = get_entry(identifier)
    return bool(entry and (entry.success or entry.queued))


def mark_scanned(
    identifier: str,
    user_id: str | None,
    *,
    success: bool,
    queued: bool,
) -> ScanCacheEntry:
    """Insert or overwrite the cache entry for identifier."""
    entry = get_entry(identifier)
    if entry is None:
        entry = ScanCacheEntry(identifier=identifier)
        db.session.add(entry)

    entry.user_id = str(user_id) if user_id is not None else None
    entry.scanned_at = utcnow()
    entry.success = success
    entry.queued = queued

    db.session.commit()
    return entry


def clear_entry(identifier: str) -> bool:
    entry = get_entry(identifier)
    if entry is None:
        return False
    db.session.delete(entry)
    db.session.commit()
    return True


def clear_all() -> int:
    count = db.session.query(ScanCacheEntry).delete()
    db.session.commit()
    return count


def list_entries(limit: int = 200) -> list[ScanCacheEntry]:
    return (
        db.session.query(ScanCacheEntry)
        .order_by(ScanCacheEntry.scanned_at.desc())
        .limit(limit)
        .all()
    )
