# Overview: Client for the serverless /check-batch verification endpoint.

from __future__ import annotations

import logging

import httpx

from .base import BatchRecord, GatewayError, QueryResult, RETRYABLE_STATUSES

logger = logging.getLogger(__name__)


class CheckBatchClient:
    """
    Server-side lookup used when the direct query finds nothing (row-level
    security hides batches the user does not own yet, for instance).

    GET <url>?id=<uuid>  or  GET <url>?batch_number=<code>
    A 2xx with {"data": {"id": ...}} counts as a hit; {"data": null} is a miss.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 8.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def check(self, *, batch_id: str | None = None, batch_number: str | None = None) -> QueryResult:
        params = {}
        if batch_id:
            params["id"] = batch_id
        if batch_number:
            params["batch_number"] = batch_number
        if not params:
            return QueryResult(data=None)

        try:
            response = self.client.get(self.url, params=params)
        except httpx.TimeoutException as exc:
            return QueryResult(error=GatewayError(f"check-batch timed out: {exc}", code="TIMEOUT"))
        except httpx.HTTPError as exc:
            return QueryResult(error=GatewayError(f"check-batch unreachable: {exc}", code="NETWORK_ERROR"))

        if not response.is_success:
            logger.warning("check-batch returned HTTP %s", response.status_code)
            return QueryResult(error=GatewayError(
                f"check-batch returned HTTP {response.status_code}",
                code=f"HTTP_{response.status_code}",
                status=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUSES,
            ))

        try:
            body = response.json()
        except ValueError:
            return QueryResult(error=GatewayError("check-batch returned invalid JSON", retryable=False))

        row = body.get("data") if isinstance(body, dict) else None
        if not isinstance(row, dict) or not row.get("id"):
            return QueryResult(data=None)
        return QueryResult(data=BatchRecord.from_row(row))
