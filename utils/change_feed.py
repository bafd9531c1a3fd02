"""In-process change notifications for the complaint store.

Writers publish a ``ComplaintChange`` after their transaction commits; readers
subscribe a callback and re-run whatever projection they hold. Delivery is
synchronous and unordered across subscribers; a failing listener is logged and
skipped so it can never undo the write that triggered it.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List

from flask import current_app

logger = logging.getLogger("cims.change_feed")

CHANGE_KINDS: tuple[str, ...] = (
    "created",
    "accepted",
    "redirected",
    "stage_changed",
    "completed",
    "updated",
)


@dataclass(frozen=True)
class ComplaintChange:
    complaint_id: str
    kind: str


Listener = Callable[[ComplaintChange], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it again."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, change: ComplaintChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Change listener failed",
                    extra={"complaint_id": change.complaint_id, "kind": change.kind},
                )

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


def feed_for(app) -> ChangeFeed:
    """Return the feed bound to an application, creating it on first use."""
    feed = app.extensions.get("cims_change_feed")
    if feed is None:
        feed = ChangeFeed()
        app.extensions["cims_change_feed"] = feed
    return feed


def publish_change(complaint_id: str, kind: str) -> None:
    feed_for(current_app._get_current_object()).publish(ComplaintChange(complaint_id=str(complaint_id), kind=kind))
