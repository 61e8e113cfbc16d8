# Overview: Tracks whether the backend is reachable and announces offline -> online transitions.

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Online/offline flag with transition listeners.

    Listeners run synchronously on the thread that reported the transition,
    and only for offline -> online. Reporting the current state again is a
    no-op.
    """

    def __init__(
        self,
        online: bool = True,
        *,
        probe_url: str | None = None,
        probe_timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._online = bool(online)
        self._lock = Lock()
        self._listeners: list[Callable[[], None]] = []
        self.probe_url = probe_url or None
        self._probe_timeout = probe_timeout
        self._transport = transport

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def set_online(self, online: bool) -> bool:
        """Record the current state. Returns True if this was an offline -> online transition."""
        with self._lock:
            was_online = self._online
            self._online = bool(online)
            listeners = list(self._listeners)

        if was_online == self._online:
            return False

        logger.info("Connectivity changed: %s", "online" if self._online else "offline")
        if not self._online:
            return False

        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("Online listener failed")
        return True

    def probe(self) -> bool:
        """
        GET the probe URL and update the flag from the outcome.

        Without a probe URL the current flag is returned unchanged.
        """
        if not self.probe_url:
            return self._online
        try:
            with httpx.Client(timeout=self._probe_timeout, transport=self._transport) as client:
                response = client.get(self.probe_url)
            reachable = response.status_code < 500
        except httpx.HTTPError:
            reachable = False
        self.set_online(reachable)
        return reachable
