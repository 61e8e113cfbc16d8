# Overview: Offline-first scan handling and sync-queue reconciliation for batch activations.

"""
Batch Sync Service

One BatchSyncService is built by create_app and lives in
app.extensions["batch_sync"]; use get_sync_service() to reach it.

SCAN FLOW (process_scan):
    normalize -> offline?  -> local duplicate check -> enqueue
              -> online?   -> verify_batch_and_update_user (retry/backoff)
                              -> transient failure after retries -> enqueue

RECONCILIATION (drain) is triggered by:
    (a) an offline -> online transition (attach() registers the listener)
    (b) the periodic thread while online (start()/stop())
    (c) a manual call (route, CLI)

Queue entries are removed only after their activation succeeded (already
activated counts as success). Failures stay queued with the payload as-is.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from threading import Event, Lock, Thread
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from ..adapters import build_gateway, build_verifier
from ..errors import (
    ActivationError,
    Result,
    ACTIVATE_RETRY_FAILED,
    BATCH_DUPLICATE,
    BATCH_DUPLICATE_QUEUED,
    BATCH_INVALID,
    QUEUE_ERROR,
)
from ..extensions import db
from .. import signals
from trashdrop.time_utils import to_utc_z, utcnow
from . import batch_service, scan_cache_service, sync_queue_service
from .concurrency import with_retry
from .connectivity import ConnectivityMonitor
from .identifier_service import normalize_identifier
from .sync_queue_service import BATCH_ACTIVATION, SyncQueueError


EXTENSION_KEY = "batch_sync"


@dataclass
class DrainReport:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0
    skipped: bool = False
    finished_at: Optional[datetime] = None
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "remaining": self.remaining,
            "skipped": self.skipped,
            "finished_at": to_utc_z(self.finished_at),
            "errors": list(self.errors),
        }


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, ActivationError):
        return not exc.is_permanent and exc.details.get("retryable", True)
    return True


def get_sync_service() -> "BatchSyncService":
    return current_app.extensions[EXTENSION_KEY]


class BatchSyncService:
    def __init__(self, app=None, *, gateway=None, verifier=None, monitor=None, sleep=time.sleep):
        self.app = None
        self.gateway = gateway
        self.verifier = verifier
        self.monitor = monitor
        self._sleep = sleep

        self._drain_lock = Lock()
        self._attached = False
        self._thread: Thread | None = None
        self._stop_event = Event()

        self.last_report: DrainReport | None = None
        self.last_drain_at: datetime | None = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        cfg = app.config
        self.app = app
        if self.gateway is None:
            self.gateway = build_gateway(cfg)
        if self.verifier is None:
            self.verifier = build_verifier(cfg)
        if self.monitor is None:
            self.monitor = ConnectivityMonitor(
                online=cfg.get("START_ONLINE", True),
                probe_url=cfg.get("CONNECTIVITY_PROBE_URL") or None,
                probe_timeout=cfg.get("CONNECTIVITY_PROBE_TIMEOUT_SECONDS") or 5.0,
            )

        self.activation_timeout = cfg.get("ACTIVATION_TIMEOUT_SECONDS")
        self.max_retries = cfg.get("ACTIVATION_MAX_RETRIES", 3)
        self.backoff_base = cfg.get("BACKOFF_BASE_SECONDS", 1.5)
        self.backoff_max = cfg.get("BACKOFF_MAX_SECONDS", 5.0)
        self.drain_limit = cfg.get("SYNC_DRAIN_LIMIT", 25)
        self.interval = cfg.get("SYNC_INTERVAL_SECONDS", 30.0)

        app.extensions[EXTENSION_KEY] = self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> bool:
        """
        Register the came-back-online listener.

        Idempotent: returns True the first time, False afterwards.
        """
        if self._attached:
            return False
        self.monitor.add_listener(self._on_online)
        self._attached = True
        return True

    def start(self) -> bool:
        """Start the periodic drain thread. Returns False if it is already running."""
        if self._thread is not None and self._thread.is_alive():
            return False
        self._stop_event.clear()
        self._thread = Thread(target=self._run_periodic, name="trashdrop-sync", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run_periodic(self) -> None:
        while not self._stop_event.wait(self.interval):
            with self.app.app_context():
                try:
                    if self.monitor.probe_url:
                        self.monitor.probe()
                    if self.monitor.is_online:
                        self.drain()
                except Exception:
                    self.app.logger.exception("Periodic sync failed")
                finally:
                    db.session.remove()

    def _on_online(self) -> None:
        self.app.logger.info("Back online, draining sync queue")
        if has_app_context():
            self.drain()
            return
        with self.app.app_context():
            self.drain()

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    def set_online(self, online: bool) -> bool:
        return self.monitor.set_online(online)

    # ------------------------------------------------------------------
    # Scan flow
    # ------------------------------------------------------------------

    def process_scan(self, identifier: str, user_id: str) -> Result:
        """Handle one scan: activate now if online, queue it otherwise."""
        normalized = normalize_identifier(identifier)
        if not normalized:
            return Result.failure(BATCH_INVALID, "Batch identifier is required")
        if not user_id:
            return Result.failure(BATCH_INVALID, "User ID is required")

        if not self.monitor.is_online:
            cached = scan_cache_service.get_entry(normalized)
            if cached is not None and cached.queued:
                return Result.failure(
                    BATCH_DUPLICATE, "This batch is already queued and waiting to sync.", queued=True
                )
            if cached is not None and cached.success:
                return Result.failure(BATCH_DUPLICATE, "Batch already scanned", queued=False)
            return self.enqueue_batch_activation(normalized, user_id)

        result = self.verify_batch_and_update_user(normalized, user_id)
        if result.ok:
            return result

        err = result.error
        if err.code == BATCH_DUPLICATE_QUEUED or not _should_retry(err):
            return result

        # Transient failure after all retries: keep it for the reconciler
        if sync_queue_service.find_pending(BATCH_ACTIVATION, normalized) is None:
            queued = self.enqueue_batch_activation(normalized, user_id)
            if queued.ok:
                err.details["queued"] = True
                err.details["entry_id"] = queued.data["entry_id"]
        else:
            err.details["queued"] = True
        return result

    def scan_and_fetch(self, identifier: str, user_id: str) -> Result:
        """process_scan, plus the batch and its bags when the scan went through."""
        result = self.process_scan(identifier, user_id)
        if not result.ok or not result.data.get("batch_id"):
            return result

        details = batch_service.get_batch_details(
            self.gateway, result.data["batch_id"], verifier=self.verifier
        )
        if details.ok:
            result.data["batch"] = details.data
        else:
            result.warnings.append(f"Batch details unavailable: {details.error.message}")
        return result

    def enqueue_batch_activation(self, identifier: str, user_id: str) -> Result:
        normalized = normalize_identifier(identifier)
        if not normalized or not user_id:
            return Result.failure(BATCH_INVALID, "Batch identifier and user ID are required")

        try:
            entry = sync_queue_service.enqueue(
                BATCH_ACTIVATION,
                {"batch_identifier": normalized, "user_id": str(user_id)},
            )
        except SyncQueueError as exc:
            return Result.failure(QUEUE_ERROR, str(exc))
        except SQLAlchemyError as exc:
            db.session.rollback()
            return Result.failure(QUEUE_ERROR, f"Failed to queue scan: {exc}")

        signals.emit(
            signals.batch_queued,
            identifier=normalized,
            user_id=str(user_id),
            entry_id=entry.id,
        )
        return Result.success({
            "queued": True,
            "status": "queued",
            "batch_identifier": normalized,
            "entry_id": entry.id,
        })

    def verify_batch_and_update_user(
        self,
        identifier: str,
        user_id: str,
        *,
        bypass_local_check: bool = False,
        source: str = "batch-scan",
    ) -> Result:
        """
        Activate with timeout + retry.

        The local duplicate check runs once, before the first attempt.
        Replays from the queue bypass it: the cache already says "queued" for
        exactly those identifiers.
        """
        normalized = normalize_identifier(identifier)
        if not normalized or not user_id:
            return Result.failure(BATCH_INVALID, "Batch identifier and user ID are required")

        if not bypass_local_check and scan_cache_service.is_locally_scanned(normalized):
            pending = sync_queue_service.find_pending(BATCH_ACTIVATION, normalized)
            if pending is None:
                return Result.failure(BATCH_DUPLICATE, "Batch already scanned")
            if not self.monitor.is_online:
                return Result.failure(
                    BATCH_DUPLICATE, "Batch already scanned and waiting to sync", queued=True
                )
            entry_id = pending.id
            replay = self._replay_entry(pending)
            if replay.ok:
                return replay
            return Result.failure(
                BATCH_DUPLICATE_QUEUED,
                f"Batch already scanned and queued; immediate sync failed: {replay.error.message}",
                queued=True,
                entry_id=entry_id,
            )

        return self._activate_with_retry(normalized, str(user_id), source)

    def _attempt(self, fn):
        # Worker-thread attempts need their own app context
        if self.activation_timeout is None:
            return fn
        app = self.app

        def _run():
            with app.app_context():
                return fn()
        return _run

    def _activate_with_retry(self, normalized: str, user_id: str, source: str) -> Result:
        def _once():
            result = batch_service.activate_batch_for_user(
                self.gateway, normalized, user_id, verifier=self.verifier, source=source
            )
            if not result.ok:
                raise result.error
            return result

        def _log_retry(attempt, exc, delay):
            self.app.logger.warning(
                "Activation attempt %s for %s failed (%s), retrying in %.1fs",
                attempt, normalized, exc, delay,
            )

        outcome = with_retry(
            self._attempt(_once),
            timeout=self.activation_timeout,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
            should_retry=_should_retry,
            on_retry=_log_retry,
            sleep=self._sleep,
        )

        if outcome.ok:
            result = outcome.result
            scan_cache_service.mark_scanned(normalized, user_id, success=True, queued=False)
            result.data["attempts"] = outcome.attempts
            return result

        failed = Result.from_exception(outcome.error, ACTIVATE_RETRY_FAILED)
        failed.error.details["attempts"] = outcome.attempts
        failed.error.details["timed_out"] = outcome.timed_out
        return failed

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _replay_entry(self, entry) -> Result:
        entry_id = entry.id
        payload = dict(entry.payload or {})
        result = self.verify_batch_and_update_user(
            payload.get("batch_identifier"),
            payload.get("user_id"),
            bypass_local_check=True,
            source="sync-queue",
        )
        if result.ok:
            sync_queue_service.remove(entry_id)
        else:
            sync_queue_service.record_failure(entry_id, result.error.message)
        return result

    def drain(self, limit: int | None = None) -> DrainReport:
        """
        Replay up to limit pending batch activations.

        Only one drain runs at a time; a concurrent call returns a report
        with skipped=True.
        """
        if not self._drain_lock.acquire(blocking=False):
            return DrainReport(skipped=True)
        try:
            report = DrainReport()
            entries = sync_queue_service.list_due(BATCH_ACTIVATION, limit or self.drain_limit)
            for entry in entries:
                entry_id = entry.id
                report.attempted += 1
                result = self._replay_entry(entry)
                if result.ok:
                    report.succeeded += 1
                else:
                    report.failed += 1
                    report.errors.append({
                        "entry_id": entry_id,
                        "code": result.error.code,
                        "message": result.error.message,
                    })

            report.remaining = sync_queue_service.count_pending(BATCH_ACTIVATION)
            report.finished_at = utcnow()
            self.last_report = report
            self.last_drain_at = report.finished_at
        finally:
            self._drain_lock.release()

        if report.attempted:
            self.app.logger.info(
                "Sync drain: %s attempted, %s succeeded, %s failed, %s remaining",
                report.attempted, report.succeeded, report.failed, report.remaining,
            )
        signals.emit(signals.sync_completed, report=report)
        return report

    def status(self) -> dict:
        return {
            "online": self.monitor.is_online,
            "pending": sync_queue_service.count_pending(BATCH_ACTIVATION),
            "syncing": self._drain_lock.locked(),
            "listener_attached": self._attached,
            "periodic_running": self._thread is not None and self._thread.is_alive(),
            "last_drain_at": to_utc_z(self.last_drain_at),
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "backend": self.gateway.name,
        }
