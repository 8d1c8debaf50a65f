"""
File tree event bus.

Carries structural change notifications (a page was inserted or deleted)
to any number of listeners so UI consumers can patch their view instead
of reloading the whole tree.

Delivery is synchronous and in subscription order. A listener that raises
is logged and skipped; the publisher never sees the error. Nothing is
buffered: a listener only sees events published while it is subscribed.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .types import PageType

logger = logging.getLogger(__name__)


class FileTreeEventType(str, Enum):
    INSERT = "INSERT"
    DELETE = "DELETE"


@dataclass(frozen=True)
class PageSlim:
    """The fields of a page that the file tree needs."""
    uuid: str
    title: str
    type: PageType = PageType.FILE
    parent_uuid: Optional[str] = None
    path: Optional[str] = None


FileTreeCallback = Callable[[FileTreeEventType, PageSlim], None]


class Subscription:
    """
    Handle returned by subscribe().

    Call it (or close() it, or leave a ``with`` block) to unsubscribe.
    Unsubscribing twice is harmless.
    """

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def close(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()

    __call__ = close

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def page_slim_from_row(row: Optional[dict]) -> Optional[PageSlim]:
    """Map a raw store row to a PageSlim. Rows without uuid or title are ignored."""
    if not row or not row.get("uuid") or not row.get("title"):
        return None
    try:
        page_type = PageType(row.get("type") or "file")
    except ValueError:
        page_type = PageType.FILE
    return PageSlim(
        uuid=row["uuid"],
        title=row["title"],
        type=page_type,
        parent_uuid=row.get("parent_uuid"),
        path=row.get("path"),
    )


class FileTreeEvents:
    """Publish/subscribe channel for file tree INSERT and DELETE events."""

    def __init__(self):
        self._callbacks: list[FileTreeCallback] = []
        self._lock = threading.Lock()

    @property
    def listener_count(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: FileTreeCallback) -> Subscription:
        """Register a listener. Returns a handle that unsubscribes it."""
        with self._lock:
            self._callbacks = self._callbacks + [callback]
            count = len(self._callbacks)
        logger.debug("File tree listener subscribed (%d active)", count)

        def cancel() -> None:
            with self._lock:
                # Remove this registration only, not other registrations
                # of the same callable
                for i, cb in enumerate(self._callbacks):
                    if cb is callback:
                        self._callbacks = self._callbacks[:i] + self._callbacks[i + 1:]
                        break
                remaining = len(self._callbacks)
            logger.debug("File tree listener unsubscribed (%d active)", remaining)

        return Subscription(cancel)

    def subscribe_inserts(self, callback: Callable[[PageSlim], None]) -> Subscription:
        """Listen for INSERT events only."""
        def on_event(event_type: FileTreeEventType, page: PageSlim) -> None:
            if event_type == FileTreeEventType.INSERT:
                callback(page)
        return self.subscribe(on_event)

    def subscribe_deletes(self, callback: Callable[[PageSlim], None]) -> Subscription:
        """Listen for DELETE events only."""
        def on_event(event_type: FileTreeEventType, page: PageSlim) -> None:
            if event_type == FileTreeEventType.DELETE:
                callback(page)
        return self.subscribe(on_event)

    def publish(self, event_type: FileTreeEventType | str, page: PageSlim) -> None:
        """Deliver an event to every listener subscribed right now."""
        event_type = FileTreeEventType(event_type)
        # The list is replaced, never mutated, so unsubscribing from inside
        # a callback does not disturb this loop
        callbacks = self._callbacks
        for callback in callbacks:
            try:
                callback(event_type, page)
            except Exception:
                logger.exception(
                    "File tree listener failed on %s for %s",
                    event_type.value, page.uuid,
                )

    def publish_store_change(self, change: str, row: Optional[dict]) -> bool:
        """
        Translate a store change notification into a file tree event.

        ``change`` is INSERT, DELETE, or UPDATE. An UPDATE is only published
        (as DELETE) when it soft-deletes the page. Returns True if an event
        was published.
        """
        page = page_slim_from_row(row)
        if page is None:
            return False
        change = change.upper()
        if change == "INSERT":
            logger.info("File tree INSERT: %s (%s)", page.title, page.uuid)
            self.publish(FileTreeEventType.INSERT, page)
        elif change == "DELETE" or (change == "UPDATE" and row.get("is_deleted")):
            logger.info("File tree DELETE: %s (%s)", page.title, page.uuid)
            self.publish(FileTreeEventType.DELETE, page)
        else:
            return False
        return True
