"""
Organization cache manager.

Holds the in-memory view of organization state: a version counter, the
"organizing" flag, and the optimistic page writes that the server has not
confirmed yet. UI consumers register listeners and get CacheUpdateEvents
as the state changes.

Construct one manager per process and pass it to whatever needs it.

Optimistic writes collapse per page ID (last write wins). Reconciliation
against a fresh page list from the store removes writes the server now
agrees with. Writes the server still disagrees with stay pending and keep
the manager flagged as organizing, until they are older than
``stale_pending_seconds``; then they are dropped with a warning. A stuck
optimistic write is never retried forever.
"""

import asyncio
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .events import Subscription
from .providers.base import PageStore
from .types import CacheUpdateEvent, OrganizationState, Page, PendingUpdate

logger = logging.getLogger(__name__)

OPTIMISTIC_ACTIONS = ("update", "create", "delete")

# Pending writes older than this are given up on during reconciliation
DEFAULT_STALE_PENDING_SECONDS = 30.0

# Delay before the post-organization consistency check
CONSISTENCY_CHECK_DELAY = 0.5

CacheListener = Callable[[CacheUpdateEvent], None]


@dataclass
class ReconcileResult:
    """Page IDs sorted by what reconciliation did with their pending write."""
    confirmed: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


class OrganizationCacheManager:
    """
    Versioned cache of organization state with optimistic updates.

    All mutations happen under one lock and listeners are called after it
    is released, with a snapshot taken under the lock, so no reader ever
    sees a half-applied update.
    """

    def __init__(
        self,
        store: Optional[PageStore] = None,
        user_id: str | None = None,
        *,
        stale_pending_seconds: float = DEFAULT_STALE_PENDING_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if stale_pending_seconds < 0:
            raise ValueError("stale_pending_seconds must be >= 0")
        self._store = store
        self._user_id = user_id
        self._stale_pending_seconds = stale_pending_seconds
        self._clock = clock

        self._lock = threading.RLock()
        self._listeners: dict[str, CacheListener] = {}
        self._anonymous_ids = itertools.count(1)

        self._cache_version = 0
        self._organization_running = False
        self._unresolved = False
        self._last_organization: Optional[float] = None
        self._pending: dict[str, PendingUpdate] = {}

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_user_id(self, user_id: str) -> None:
        self._user_id = user_id

    @property
    def stale_pending_seconds(self) -> float:
        return self._stale_pending_seconds

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def on_cache_update(self, listener_id: str, callback: CacheListener) -> Subscription:
        """
        Register a listener under a caller-chosen ID.

        Registering again with the same ID replaces the earlier callback,
        so a consumer that re-renders never ends up subscribed twice.
        """
        if not listener_id:
            raise ValueError("listener_id is required")
        with self._lock:
            self._listeners[listener_id] = callback

        def cancel() -> None:
            with self._lock:
                # Only remove our own registration, not a replacement
                if self._listeners.get(listener_id) is callback:
                    del self._listeners[listener_id]

        return Subscription(cancel)

    def subscribe(self, callback: CacheListener) -> Subscription:
        """Register a listener with a generated ID. Returns its handle."""
        return self.on_cache_update(f"_anon{next(self._anonymous_ids)}", callback)

    def remove_cache_listener(self, listener_id: str) -> None:
        with self._lock:
            self._listeners.pop(listener_id, None)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit(self, event: CacheUpdateEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.items())
        for listener_id, callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Cache listener %s failed on %s event", listener_id, event.kind)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _snapshot(self) -> OrganizationState:
        return OrganizationState(
            is_organizing=self._organization_running or self._unresolved,
            cache_version=self._cache_version,
            last_organization=self._last_organization,
            pending_updates=tuple(p.page.copy() for p in self._pending.values()),
        )

    def get_state(self) -> OrganizationState:
        """Current state as an immutable snapshot."""
        with self._lock:
            return self._snapshot()

    def get_cache_version(self) -> int:
        return self._cache_version

    def is_organizing(self) -> bool:
        with self._lock:
            return self._organization_running or self._unresolved

    def get_pending_updates(self) -> list[Page]:
        with self._lock:
            return [p.page.copy() for p in self._pending.values()]

    def _queue(self, pages: Iterable[Page], action: str, now: float) -> tuple[Page, ...]:
        """Store a private copy of each page. Returns separate copies for listeners."""
        queued = []
        for page in pages:
            stored = page.copy()
            # Re-insert so order follows the latest write
            self._pending.pop(page.uuid, None)
            self._pending[page.uuid] = PendingUpdate(page=stored, action=action, queued_at=now)
            queued.append(stored.copy())
        return tuple(queued)

    def optimistic_update(self, pages: Iterable[Page], action: str) -> int:
        """
        Apply pages locally before the server confirms them.

        Each page replaces any earlier pending write for the same ID. The
        cache version goes up by one per call and an ``optimistic`` event
        is emitted.

        Returns:
            The new cache version
        """
        if action not in OPTIMISTIC_ACTIONS:
            raise ValueError(
                f"Unknown optimistic action {action!r} (expected one of {', '.join(OPTIMISTIC_ACTIONS)})"
            )
        now = self._clock()
        with self._lock:
            queued = self._queue(pages, action, now)
            self._cache_version += 1
            version = self._cache_version

        logger.debug("Optimistic %s of %d page(s), cache version %d", action, len(queued), version)
        self._emit(CacheUpdateEvent(
            kind="optimistic",
            pages=queued,
            cache_version=version,
            action=f"optimistic_{action}",
            timestamp=now,
        ))
        return version

    def add_pending_updates(self, pages: Iterable[Page]) -> None:
        """Track pages as pending updates without a version bump or event."""
        with self._lock:
            self._queue(pages, "update", self._clock())

    def clear_pending_updates(self) -> None:
        """Forget all pending writes. The version is left alone."""
        with self._lock:
            self._pending.clear()
            self._unresolved = False

    # -------------------------------------------------------------------------
    # Organization lifecycle
    # -------------------------------------------------------------------------

    def start_organization(self) -> None:
        now = self._clock()
        with self._lock:
            self._organization_running = True
            self._cache_version += 1
            version = self._cache_version
        self._emit(CacheUpdateEvent(
            kind="update", cache_version=version,
            action="organizing_started", timestamp=now,
        ))

    def complete_organization(
        self,
        updated_pages: Iterable[Page] = (),
        new_pages: Iterable[Page] = (),
    ) -> None:
        """
        Finish an organization run.

        Emits ``update`` for pages the run changed and ``insert`` for pages
        it created. Follow with a consistency check (refresh()) to pick up
        anything the run changed server-side that it didn't report.
        """
        updated = tuple(p.copy() for p in updated_pages)
        created = tuple(p.copy() for p in new_pages)
        now = self._clock()
        with self._lock:
            self._organization_running = False
            self._last_organization = now
            self._cache_version += 1
            version = self._cache_version

        self._emit(CacheUpdateEvent(
            kind="update", pages=updated, cache_version=version,
            action="organization_complete", timestamp=now,
        ))
        if created:
            self._emit(CacheUpdateEvent(
                kind="insert", pages=created, cache_version=version,
                action="organization_complete", timestamp=now,
            ))

    def fail_organization(self, error: Exception | str) -> None:
        now = self._clock()
        with self._lock:
            self._organization_running = False
            version = self._cache_version
        message = str(error)
        logger.error("Organization failed: %s", message)
        self._emit(CacheUpdateEvent(
            kind="error", cache_version=version,
            action="organization_error", error=message, timestamp=now,
        ))

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    @staticmethod
    def _confirmed(pending: PendingUpdate, server: Optional[Page]) -> bool:
        if pending.action == "delete":
            return server is None or server.is_deleted
        return server is not None and pending.page.same_state(server)

    def reconcile(self, server_pages: Iterable[Page]) -> ReconcileResult:
        """
        Compare pending writes against the server's current pages.

        Matching writes are removed. Mismatches stay pending and flag the
        manager as organizing, unless they have been pending longer than
        ``stale_pending_seconds``, in which case they are dropped.
        """
        server_pages = list(server_pages)
        server = {page.uuid: page for page in server_pages}
        result = ReconcileResult()
        now = self._clock()

        with self._lock:
            for page_id, pending in list(self._pending.items()):
                if self._confirmed(pending, server.get(page_id)):
                    result.confirmed.append(page_id)
                    del self._pending[page_id]
                elif now - pending.queued_at >= self._stale_pending_seconds:
                    result.dropped.append(page_id)
                    del self._pending[page_id]
                else:
                    result.unresolved.append(page_id)
            self._unresolved = bool(result.unresolved)
            version = self._cache_version

        for page_id in result.dropped:
            logger.warning(
                "Dropping optimistic write for %s: not confirmed by server after %.0fs",
                page_id, self._stale_pending_seconds,
            )
        if result.confirmed or result.unresolved:
            logger.debug(
                "Reconciled cache: %d confirmed, %d still pending",
                len(result.confirmed), len(result.unresolved),
            )

        self._emit(CacheUpdateEvent(
            kind="refresh",
            pages=tuple(server_pages),
            cache_version=version,
            action="consistency_refresh",
            timestamp=now,
        ))
        return result

    async def refresh(self) -> Optional[ReconcileResult]:
        """
        Consistency check: load the user's pages from the store and reconcile.

        Store failures are logged and emitted as an ``error`` event.
        Returns None when there is no store or user, or the load failed.
        """
        if self._store is None or not self._user_id:
            return None
        try:
            pages = self._store.list_pages(self._user_id)
        except Exception as e:
            logger.error("Consistency check failed: %s", e)
            self.fail_organization(e)
            return None
        return self.reconcile(pages)

    async def check_consistency_later(self, delay: float = CONSISTENCY_CHECK_DELAY) -> Optional[ReconcileResult]:
        """Wait briefly for server writes to land, then refresh()."""
        await asyncio.sleep(delay)
        return await self.refresh()

    def destroy(self) -> None:
        """Drop all listeners and reset the state."""
        with self._lock:
            self._listeners.clear()
            self._pending.clear()
            self._cache_version = 0
            self._organization_running = False
            self._unresolved = False
            self._last_organization = None
