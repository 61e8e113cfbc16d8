"""Backend access contract shared by the SQL and PostgREST adapters.

Every call returns a QueryResult instead of raising, so "no such row" and
"the query failed" stay distinguishable all the way up to the resolver.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from trashdrop.time_utils import parse_iso_datetime, to_utc_z


CODE_FIELDS = ("batch_number", "batch_qr_code", "code", "qr_code")
OWNER_FIELDS = ("owner_id", "user_id", "assigned_to", "assigned_user_id")
UNOWNED_MARKERS = frozenset({"", "public", "unassigned", "none", "null"})

MATCH_EXACT = "exact"
MATCH_ILIKE = "ilike"
MATCH_CONTAINS = "contains"
MATCH_MODES = (MATCH_EXACT, MATCH_ILIKE, MATCH_CONTAINS)

# HTTP statuses / SQLSTATE classes worth retrying
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class GatewayError(Exception):
    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "BACKEND_ERROR"
        self.status = status
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code, "status": self.status}


@dataclass
class QueryResult:
    data: Any = None
    error: Optional[GatewayError] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _normalize_owner(value: Any) -> Optional[str]:
    if value is None:
        return None
    owner = str(value).strip()
    if owner.lower() in UNOWNED_MARKERS:
        return None
    return owner


@dataclass
class BatchRecord:
    """Canonical batch, independent of which columns the backend row used."""
    id: str
    code: Optional[str] = None
    status: Optional[str] = None
    bag_count: int = 0
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_row(cls, row: dict) -> "BatchRecord":
        code = None
        for name in CODE_FIELDS:
            if row.get(name):
                code = str(row[name])
                break

        owner_id = None
        for name in OWNER_FIELDS:
            owner_id = _normalize_owner(row.get(name))
            if owner_id is not None:
                break

        try:
            bag_count = max(int(row.get("bag_count") or 0), 0)
        except (TypeError, ValueError):
            bag_count = 0

        status = row.get("status")
        return cls(
            id=str(row["id"]),
            code=code,
            status=str(status).strip().lower() if status is not None else None,
            bag_count=bag_count,
            owner_id=owner_id,
            created_at=parse_iso_datetime(row.get("created_at")),
            raw=dict(row),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "status": self.status,
            "bag_count": self.bag_count,
            "owner_id": self.owner_id,
            "created_at": to_utc_z(self.created_at),
        }


class BatchGateway(ABC):
    """Typed queries/mutations against the batch backend."""

    name = "base"

    @abstractmethod
    def get_batch_by_id(self, batch_id: str) -> QueryResult:
        """data: BatchRecord or None."""

    @abstractmethod
    def find_batches_by_code(self, code: str, match: str = MATCH_EXACT) -> QueryResult:
        """data: list[BatchRecord] (possibly empty)."""

    @abstractmethod
    def count_bags(self, batch_id: str) -> QueryResult:
        """count: number of bag rows for the batch."""

    @abstractmethod
    def list_bags(self, batch_id: str) -> QueryResult:
        """data: list[dict]."""

    @abstractmethod
    def mark_batch_used(self, batch_id: str, user_id: str) -> QueryResult:
        """
        Conditional active -> used transition.

        data: the updated BatchRecord, or None when the batch was not
        'active' at update time (someone else got there first).
        """

    @abstractmethod
    def get_user_stats(self, user_id: str) -> QueryResult:
        """data: stats dict or None."""

    @abstractmethod
    def credit_user_stats(self, user_id: str, batch_id: str, bag_count: int) -> QueryResult:
        """data: {"credited": bool, "stats": dict}; credited False if batch already counted."""

    @abstractmethod
    def update_bag_status(self, bag_id: str, status: str) -> QueryResult:
        """data: updated bag dict or None if missing."""

    @abstractmethod
    def insert_bag_scan(self, scan: dict) -> QueryResult:
        """data: inserted scan dict."""

    @abstractmethod
    def list_bag_scans(self, bag_id: str) -> QueryResult:
        """data: list of scan dicts, newest first."""

    @abstractmethod
    def ping(self) -> QueryResult:
        """Cheap reachability check."""
