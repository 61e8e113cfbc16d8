from __future__ import annotations

import uuid

from ..extensions import db
from trashdrop.time_utils import utcnow, to_utc_z


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Batch(db.Model):
    """
    A provisioned bundle of bags, identified by UUID or printed batch number.

    Batches are provisioned out-of-band; this service only ever moves them
    from 'active' to 'used' (see SqlBatchGateway.mark_batch_used).

    owner_id NULL means the batch is unassigned and claimable by anyone.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.Index("ix_batches_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid_str)
    batch_number = db.Column(db.String(128), nullable=False, unique=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="active")
    bag_count = db.Column(db.Integer, nullable=False, default=0)
    owner_id = db.Column(db.String(64), nullable=True, index=True)

    activated_by = db.Column(db.String(64), nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bags = db.relationship("Bag", backref="batch", lazy=True)

    def __repr__(self) -> str:
        return f"<Batch id={self.id} batch_number={self.batch_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "status": self.status,
            "bag_count": self.bag_count,
            "owner_id": self.owner_id,
            "activated_by": self.activated_by,
            "activated_at": to_utc_z(self.activated_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Bag(db.Model):
    __tablename__ = "bag_inventory"

    id = db.Column(db.String(36), primary_key=True, default=_uuid_str)
    batch_id = db.Column(db.String(36), db.ForeignKey("batches.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="available")
    bag_type = db.Column(db.String(32), nullable=True)
    scan_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "status": self.status,
            "bag_type": self.bag_type,
            "scan_date": to_utc_z(self.scan_date),
            "created_at": to_utc_z(self.created_at),
        }


class BagScan(db.Model):
    """One scan event of a single bag (pickup, drop-off, collector hand-off)."""
    __tablename__ = "scans"

    id = db.Column(db.Integer, primary_key=True)
    bag_id = db.Column(db.String(36), db.ForeignKey("bag_inventory.id"), nullable=False, index=True)
    scanned_by = db.Column(db.String(64), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    coordinates = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(32), nullable=False, default="scanned")
    notes = db.Column(db.Text, nullable=True)
    scanned_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bag_id": self.bag_id,
            "scanned_by": self.scanned_by,
            "location": self.location,
            "coordinates": self.coordinates,
            "status": self.status,
            "notes": self.notes,
            "scanned_at": to_utc_z(self.scanned_at),
        }


class UserStats(db.Model):
    """
    Per-user bag accounting.

    scanned_batch_ids is the authoritative "one credit per batch per user"
    record; the device-local scan cache is only a hint.
    """
    __tablename__ = "user_stats"

    user_id = db.Column(db.String(64), primary_key=True)
    available_bags = db.Column(db.Integer, nullable=False, default=0)
    total_batches = db.Column(db.Integer, nullable=False, default=0)
    total_bags_scanned = db.Column(db.Integer, nullable=False, default=0)
    scanned_batch_ids = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "available_bags": self.available_bags,
            "total_batches": self.total_batches,
            "total_bags_scanned": self.total_bags_scanned,
            "scanned_batch_ids": list(self.scanned_batch_ids or []),
            "updated_at": to_utc_z(self.updated_at),
        }
