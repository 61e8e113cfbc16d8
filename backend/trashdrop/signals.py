# Overview: Domain events broadcast to in-process listeners (dashboards, notifiers).

from __future__ import annotations

import logging

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

# kwargs: user_id, delta_bags, source
bags_updated = _signals.signal("bags-updated")

# kwargs: identifier, user_id, entry_id
batch_queued = _signals.signal("batch-queued")

# kwargs: report
sync_completed = _signals.signal("sync-completed")


def emit(signal, sender=None, **kwargs) -> None:
    """
    Fire-and-forget send.

    A failing receiver is logged and skipped; it never changes the outcome of
    the operation that emitted the event.
    """
    for receiver in signal.receivers_for(sender):
        try:
            receiver(sender, **kwargs)
        except Exception:
            logger.exception("Receiver for %s failed", signal.name)
