from __future__ import annotations

from ..extensions import db
from trashdrop.time_utils import utcnow, to_utc_z


class SyncQueueEntry(db.Model):
    """
    A pending operation waiting for the backend.

    Lives in the "local" bind: it must survive restarts and offline periods
    and has no server-side mirror. Rows are deleted once the operation
    succeeds; a failed attempt only bumps attempts/last_error, the payload is
    never rewritten.
    """
    __bind_key__ = "local"
    __tablename__ = "sync_queue"
    __table_args__ = (
        db.Index("ix_sync_queue_operation_created", "operation", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operation = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=False)

    # Denormalized from payload so duplicate checks don't scan JSON
    identifier = db.Column(db.String(255), nullable=True, index=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SyncQueueEntry id={self.id} operation={self.operation!r} identifier={self.identifier!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "payload": dict(self.payload or {}),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_attempt_at": to_utc_z(self.last_attempt_at),
            "created_at": to_utc_z(self.created_at),
        }


class ScanCacheEntry(db.Model):
    """Best-effort per-device duplicate filter, keyed by normalized identifier."""
    __bind_key__ = "local"
    __tablename__ = "scan_cache"

    identifier = db.Column(db.String(255), primary_key=True)
    user_id = db.Column(db.String(64), nullable=True)
    scanned_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    success = db.Column(db.Boolean, nullable=False, default=False)
    queued = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "user_id": self.user_id,
            "scanned_at": to_utc_z(self.scanned_at),
            "success": self.success,
            "queued": self.queued,
        }
