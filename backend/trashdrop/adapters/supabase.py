# Overview: PostgREST (Supabase REST) implementation of the batch backend contract.

"""
Supabase REST adapter

Talks to /rest/v1/<table> with the project's anon (or service) key. Filters
use PostgREST operators: eq. for exact, ilike. for case-insensitive, and
ilike.*value* for contains.

ATOMICITY: mark_batch_used is a single PATCH filtered on status=ilike.active
(case-insensitive, like the SQL gateway),
so two devices racing for the same batch cannot both flip it. Stats
crediting is read-then-upsert and relies on scanned_batch_ids to reject a
second credit for the same batch.
"""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from trashdrop.time_utils import to_utc_z, utcnow
from .base import (
    BatchGateway,
    BatchRecord,
    GatewayError,
    QueryResult,
    MATCH_EXACT,
    MATCH_ILIKE,
    MATCH_MODES,
    RETRYABLE_STATUSES,
)

logger = logging.getLogger(__name__)

CODE_MATCH_LIMIT = 10


def _like_escape(value: str) -> str:
    # '*' is PostgREST's wildcard and cannot be escaped; drop it
    return value.replace("*", "").replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_content_range(header: str | None) -> int | None:
    # "0-4/5" or "*/0"
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


def _jsonable(row: dict) -> dict:
    return {k: (to_utc_z(v) if isinstance(v, datetime) else v) for k, v in row.items()}


class SupabaseRestGateway(BatchGateway):
    name = "rest"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        code_column: str = "batch_number",
        timeout: float | None = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("SUPABASE_URL is required for the rest backend")
        self.code_column = code_column
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        self.client = httpx.Client(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Request timed out: {exc}", code="TIMEOUT") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Network error: {exc}", code="NETWORK_ERROR") from exc

        if response.is_success:
            return response

        message = f"HTTP {response.status_code}"
        code = None
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get("message") or body.get("error") or message
                code = body.get("code")
        except ValueError:
            pass
        raise GatewayError(
            message,
            code=code or f"HTTP_{response.status_code}",
            status=response.status_code,
            retryable=response.status_code in RETRYABLE_STATUSES,
        )

    def _call(self, op) -> QueryResult:
        try:
            return op()
        except GatewayError as exc:
            logger.warning("Supabase request failed: %s (%s)", exc.message, exc.code)
            return QueryResult(error=exc)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def get_batch_by_id(self, batch_id: str) -> QueryResult:
        def _op():
            rows = self._request(
                "GET", "/batches",
                params={"select": "*", "id": f"eq.{batch_id}", "limit": "1"},
            ).json()
            return QueryResult(data=BatchRecord.from_row(rows[0]) if rows else None)
        return self._call(_op)

    def find_batches_by_code(self, code: str, match: str = MATCH_EXACT) -> QueryResult:
        if match not in MATCH_MODES:
            raise ValueError(f"Invalid match '{match}'. Must be one of: {', '.join(MATCH_MODES)}")

        if match == MATCH_EXACT:
            flt = f"eq.{code}"
        elif match == MATCH_ILIKE:
            flt = f"ilike.{_like_escape(code)}"
        else:
            flt = f"ilike.*{_like_escape(code)}*"

        def _op():
            rows = self._request(
                "GET", "/batches",
                params={
                    "select": "*",
                    self.code_column: flt,
                    "order": "created_at.asc",
                    "limit": str(CODE_MATCH_LIMIT),
                },
            ).json()
            return QueryResult(data=[BatchRecord.from_row(r) for r in rows])
        return self._call(_op)

    def mark_batch_used(self, batch_id: str, user_id: str) -> QueryResult:
        def _op():
            rows = self._request(
                "PATCH", "/batches",
                params={"id": f"eq.{batch_id}", "status": "ilike.active"},
                json={"status": "used", "updated_at": to_utc_z(utcnow())},
                headers={"Prefer": "return=representation"},
            ).json()
            if not rows:
                return QueryResult(data=None, count=0)
            return QueryResult(data=BatchRecord.from_row(rows[0]), count=len(rows))
        return self._call(_op)

    # ------------------------------------------------------------------
    # Bags
    # ------------------------------------------------------------------

    def count_bags(self, batch_id: str) -> QueryResult:
        def _op():
            response = self._request(
                "HEAD", "/bag_inventory",
                params={"select": "id", "batch_id": f"eq.{batch_id}"},
                headers={"Prefer": "count=exact"},
            )
            count = _parse_content_range(response.headers.get("Content-Range"))
            if count is None:
                raise GatewayError("Bag count unavailable", code="COUNT_UNAVAILABLE", retryable=False)
            return QueryResult(count=count)
        return self._call(_op)

    def list_bags(self, batch_id: str) -> QueryResult:
        def _op():
            rows = self._request(
                "GET", "/bag_inventory",
                params={"select": "*", "batch_id": f"eq.{batch_id}", "order": "created_at.asc"},
            ).json()
            return QueryResult(data=rows, count=len(rows))
        return self._call(_op)

    def update_bag_status(self, bag_id: str, status: str) -> QueryResult:
        def _op():
            rows = self._request(
                "PATCH", "/bag_inventory",
                params={"id": f"eq.{bag_id}"},
                json={"status": status, "scan_date": to_utc_z(utcnow())},
                headers={"Prefer": "return=representation"},
            ).json()
            return QueryResult(data=rows[0] if rows else None)
        return self._call(_op)

    def insert_bag_scan(self, scan: dict) -> QueryResult:
        def _op():
            rows = self._request(
                "POST", "/scans",
                json=_jsonable(scan),
                headers={"Prefer": "return=representation"},
            ).json()
            return QueryResult(data=rows[0] if rows else None)
        return self._call(_op)

    def list_bag_scans(self, bag_id: str) -> QueryResult:
        def _op():
            rows = self._request(
                "GET", "/scans",
                params={"select": "*", "bag_id": f"eq.{bag_id}", "order": "scanned_at.desc"},
            ).json()
            return QueryResult(data=rows)
        return self._call(_op)

    # ------------------------------------------------------------------
    # User stats
    # ------------------------------------------------------------------

    def _fetch_stats(self, user_id: str) -> dict | None:
        rows = self._request(
            "GET", "/user_stats",
            params={"select": "*", "user_id": f"eq.{user_id}", "limit": "1"},
        ).json()
        return rows[0] if rows else None

    def get_user_stats(self, user_id: str) -> QueryResult:
        return self._call(lambda: QueryResult(data=self._fetch_stats(user_id)))

    def credit_user_stats(self, user_id: str, batch_id: str, bag_count: int) -> QueryResult:
        def _op():
            current = self._fetch_stats(user_id) or {}
            scanned = [str(x) for x in (current.get("scanned_batch_ids") or [])]
            if str(batch_id) in scanned:
                return QueryResult(data={"credited": False, "stats": current})

            row = {
                "user_id": str(user_id),
                "available_bags": int(current.get("available_bags") or 0) + bag_count,
                "total_bags_scanned": int(current.get("total_bags_scanned") or 0) + bag_count,
                "total_batches": int(current.get("total_batches") or 0) + 1,
                "scanned_batch_ids": scanned + [str(batch_id)],
                "updated_at": to_utc_z(utcnow()),
            }
            rows = self._request(
                "POST", "/user_stats",
                params={"on_conflict": "user_id"},
                json=row,
                headers={"Prefer": "resolution=merge-duplicates,return=representation"},
            ).json()
            return QueryResult(data={"credited": True, "stats": rows[0] if rows else row})
        return self._call(_op)

    def ping(self) -> QueryResult:
        def _op():
            self._request("GET", "/batches", params={"select": "id", "limit": "1"})
            return QueryResult(data=True)
        return self._call(_op)
