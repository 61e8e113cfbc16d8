# Overview: Flask-SQLAlchemy implementation of the batch backend contract.

from __future__ import annotations

import logging

from sqlalchemy import func, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Bag, BagScan, Batch, UserStats
from trashdrop.time_utils import utcnow
from .base import (
    BatchGateway,
    BatchRecord,
    GatewayError,
    QueryResult,
    MATCH_CONTAINS,
    MATCH_EXACT,
    MATCH_ILIKE,
    MATCH_MODES,
)

logger = logging.getLogger(__name__)

CODE_MATCH_LIMIT = 10


def lock_for_update(query):
    """
    Apply row-level locking for the stats read-modify-write.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, Postgres honors it.
    """
    return query.with_for_update()


def _error_from(exc: SQLAlchemyError) -> GatewayError:
    # Lock waits, dropped connections and lost optimistic races are transient
    retryable = isinstance(exc, (OperationalError, StaleDataError, IntegrityError))
    return GatewayError(str(exc.__cause__ or exc), code="DB_ERROR", retryable=retryable)


class SqlBatchGateway(BatchGateway):
    """Talks to the batches / bag_inventory / scans / user_stats tables directly."""

    name = "sql"

    def _run(self, op, *, write: bool = False) -> QueryResult:
        try:
            return op()
        except SQLAlchemyError as exc:
            db.session.rollback()
            if write:
                logger.warning("Batch backend write failed: %s", exc)
            return QueryResult(error=_error_from(exc))

    def get_batch_by_id(self, batch_id: str) -> QueryResult:
        def _op():
            batch = db.session.get(Batch, str(batch_id))
            return QueryResult(data=BatchRecord.from_row(batch.to_dict()) if batch else None)
        return self._run(_op)

    def find_batches_by_code(self, code: str, match: str = MATCH_EXACT) -> QueryResult:
        if match not in MATCH_MODES:
            raise ValueError(f"Invalid match '{match}'. Must be one of: {', '.join(MATCH_MODES)}")

        def _op():
            q = db.session.query(Batch)
            if match == MATCH_EXACT:
                q = q.filter(Batch.batch_number == code)
            elif match == MATCH_ILIKE:
                q = q.filter(func.lower(Batch.batch_number) == code.lower())
            else:
                q = q.filter(func.lower(Batch.batch_number).contains(code.lower(), autoescape=True))
            rows = q.order_by(Batch.created_at.asc(), Batch.id.asc()).limit(CODE_MATCH_LIMIT).all()
            return QueryResult(data=[BatchRecord.from_row(b.to_dict()) for b in rows])
        return self._run(_op)

    def count_bags(self, batch_id: str) -> QueryResult:
        def _op():
            n = db.session.query(func.count(Bag.id)).filter(Bag.batch_id == str(batch_id)).scalar()
            return QueryResult(count=int(n or 0))
        return self._run(_op)

    def list_bags(self, batch_id: str) -> QueryResult:
        def _op():
            bags = (
                db.session.query(Bag)
                .filter(Bag.batch_id == str(batch_id))
                .order_by(Bag.created_at.asc(), Bag.id.asc())
                .all()
            )
            return QueryResult(data=[b.to_dict() for b in bags], count=len(bags))
        return self._run(_op)

    def mark_batch_used(self, batch_id: str, user_id: str) -> QueryResult:
        def _op():
            now = utcnow()
            res = db.session.execute(
                update(Batch)
                .where(Batch.id == str(batch_id), func.lower(Batch.status) == "active")
                .values(status="used", activated_by=str(user_id), activated_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            if res.rowcount == 0:
                return QueryResult(data=None, count=0)
            batch = db.session.get(Batch, str(batch_id))
            return QueryResult(data=BatchRecord.from_row(batch.to_dict()), count=1)
        return self._run(_op, write=True)

    def get_user_stats(self, user_id: str) -> QueryResult:
        def _op():
            stats = db.session.get(UserStats, str(user_id))
            return QueryResult(data=stats.to_dict() if stats else None)
        return self._run(_op)

    def credit_user_stats(self, user_id: str, batch_id: str, bag_count: int) -> QueryResult:
        def _op():
            user_id_s = str(user_id)
            stats = lock_for_update(
                db.session.query(UserStats).filter(UserStats.user_id == user_id_s)
            ).first()
            if stats is None:
                stats = UserStats(
                    user_id=user_id_s,
                    available_bags=0,
                    total_batches=0,
                    total_bags_scanned=0,
                    scanned_batch_ids=[],
                )
                db.session.add(stats)

            scanned = [str(x) for x in (stats.scanned_batch_ids or [])]
            if str(batch_id) in scanned:
                db.session.rollback()
                current = db.session.get(UserStats, user_id_s)
                return QueryResult(data={"credited": False, "stats": current.to_dict()})

            stats.available_bags = (stats.available_bags or 0) + bag_count
            stats.total_bags_scanned = (stats.total_bags_scanned or 0) + bag_count
            stats.total_batches = (stats.total_batches or 0) + 1
            # Reassign so the JSON column is flagged dirty
            stats.scanned_batch_ids = scanned + [str(batch_id)]
            stats.updated_at = utcnow()
            db.session.commit()
            return QueryResult(data={"credited": True, "stats": stats.to_dict()})
        return self._run(_op, write=True)

    def update_bag_status(self, bag_id: str, status: str) -> QueryResult:
        def _op():
            bag = db.session.get(Bag, str(bag_id))
            if bag is None:
                return QueryResult(data=None)
            bag.status = status
            bag.scan_date = utcnow()
            db.session.commit()
            return QueryResult(data=bag.to_dict())
        return self._run(_op, write=True)

    def insert_bag_scan(self, scan: dict) -> QueryResult:
        def _op():
            row = BagScan(
                bag_id=str(scan["bag_id"]),
                scanned_by=str(scan["scanned_by"]),
                location=scan.get("location"),
                coordinates=scan.get("coordinates"),
                status=scan.get("status") or "scanned",
                notes=scan.get("notes"),
                scanned_at=scan.get("scanned_at") or utcnow(),
            )
            db.session.add(row)
            db.session.commit()
            return QueryResult(data=row.to_dict())
        return self._run(_op, write=True)

    def list_bag_scans(self, bag_id: str) -> QueryResult:
        def _op():
            scans = (
                db.session.query(BagScan)
                .filter(BagScan.bag_id == str(bag_id))
                .order_by(BagScan.scanned_at.desc(), BagScan.id.desc())
                .all()
            )
            return QueryResult(data=[s.to_dict() for s in scans])
        return self._run(_op)

    def ping(self) -> QueryResult:
        def _op():
            db.session.execute(text("SELECT 1"))
            return QueryResult(data=True)
        return self._run(_op)
