"""
Background sync of page content into the semantic index.

Each page carries a sync status in its metadata (``isMemSynced``):

    never  content has never been pushed
    no     content changed since the last successful push
    yes    the index has the current content

A page only reaches ``yes`` after a push to the index succeeded. Status
writes re-read the page's metadata from the store right before writing,
so they never clobber a concurrent change to other metadata keys.

Delivery to the index is at-least-once: a push whose status write fails
is repeated on the next pass, as an update of the mapped document rather
than a second add.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from .document import to_markdown
from .errors import DocumentNotFound, InvalidTransition
from .providers.base import IndexDocument, PageStore, SemanticIndex
from .tree import folder_path, path_tags
from .types import OrganizeStatus, Page, PageMetadata, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY = 0.5  # seconds between batches


class SyncStatusTracker:
    """Reads and advances the per-page sync status stored in the page store."""

    def __init__(self, store: PageStore):
        self._store = store

    @staticmethod
    def get_sync_status(page: Page) -> SyncStatus:
        return page.metadata.sync_status

    @staticmethod
    def should_sync(page: Page) -> bool:
        """Folders, unorganized pages and pages queued for organizing are skipped."""
        if page.is_folder:
            logger.debug("Skipping folder: %s", page.title)
            return False
        if page.is_deleted:
            logger.debug("Skipping deleted page: %s", page.title)
            return False
        if page.metadata.organize_status == OrganizeStatus.SOON.value or not page.organized:
            logger.debug("Skipping unorganized page: %s", page.title)
            return False
        return True

    def needs_sync(self, page: Page) -> bool:
        return self.should_sync(page) and self.get_sync_status(page) in (
            SyncStatus.NEVER, SyncStatus.NO,
        )

    def get_current_sync_status(self, page_id: str) -> SyncStatus:
        """Status as stored right now. Missing pages read as never."""
        raw = self._store.get_metadata(page_id)
        if raw is None:
            return SyncStatus.NEVER
        return PageMetadata.from_dict(raw).sync_status

    def set_status(self, page_id: str, status: SyncStatus) -> bool:
        """
        Write a page's sync status, keeping all other metadata.

        Returns:
            True if the page exists and was updated

        Raises:
            InvalidTransition: If asked to move a page back to never
        """
        raw = self._store.get_metadata(page_id)
        if raw is None:
            logger.warning("Cannot set sync status of missing page %s", page_id)
            return False
        metadata = PageMetadata.from_dict(raw)
        current = metadata.sync_status
        if status == SyncStatus.NEVER and current != SyncStatus.NEVER:
            raise InvalidTransition(page_id, current.value, status.value)

        metadata.is_mem_synced = status
        updated = self._store.update_metadata(page_id, metadata.to_dict())
        if updated:
            logger.debug("Sync status of %s: %s -> %s", page_id, current.value, status.value)
        return updated

    def mark_dirty(self, page_id: str) -> SyncStatus:
        """
        Record that a page's content changed.

        yes becomes no. never stays never, so the next push is still an add.
        Returns the resulting status.
        """
        current = self.get_current_sync_status(page_id)
        if current == SyncStatus.YES:
            if self.set_status(page_id, SyncStatus.NO):
                return SyncStatus.NO
        return current


@dataclass
class SyncReport:
    """What a sync_all_pending() pass did."""
    attempted: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    batches: list[int] = field(default_factory=list)


class MemorySyncService:
    """
    Pushes eligible pages into the semantic index and tracks their status.

    Pages are pushed in batches: every page in a batch at once, batches
    one after another with a pause in between, which keeps bursts under
    the index's rate limit.
    """

    def __init__(
        self,
        store: PageStore,
        index: SemanticIndex,
        *,
        user_id: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        tracker: Optional[SyncStatusTracker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")
        self._store = store
        self._index = index
        self._user_id = user_id
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.tracker = tracker or SyncStatusTracker(store)
        self._sleep = sleep

    @staticmethod
    def build_enhanced_content(page: Page) -> str:
        """Page Markdown with the title as a heading, to favour title matches."""
        return f"# {page.title}\n\n{to_markdown(page.content)}"

    def build_path_tags(self, page_id: str) -> list[str]:
        """Hierarchical folder tags for a page, e.g. ``["A", "A/B"]``."""
        try:
            return path_tags(folder_path(page_id, self._store.get_page))
        except Exception as e:
            logger.error("Error building path tags for %s: %s", page_id, e)
            return []

    def get_pending_sync_pages(self, pages: Iterable[Page]) -> list[Page]:
        return [page for page in pages if self.tracker.needs_sync(page)]

    async def _add(self, page: Page, content: str, metadata: dict, tags: list[str]) -> None:
        logger.info("Adding page to index: %s", page.title)
        result = await self._index.add(content, metadata, tags)
        self._store.set_mapping(page.uuid, result.id, self._user_id or page.user_id)

    async def _push(self, page: Page, status: SyncStatus) -> None:
        content = self.build_enhanced_content(page)
        tags = self.build_path_tags(page.uuid)
        metadata = {"title": page.title, "page_uuid": page.uuid}

        # A mapping means an earlier add landed, even if the status
        # write after it did not; update instead of adding again
        external_id = self._store.get_mapping(page.uuid)
        if external_id is None:
            if status == SyncStatus.NO:
                logger.warning("Page %s is marked changed but has no index mapping, re-adding", page.uuid)
            await self._add(page, content, metadata, tags)
            return

        logger.info("Updating page in index: %s", page.title)
        try:
            updated = await self._index.update(external_id, content, metadata, tags)
        except DocumentNotFound:
            logger.warning(
                "Index document %s for page %s is gone, re-adding", external_id, page.uuid,
            )
            self._store.delete_mapping(page.uuid)
            await self._add(page, content, metadata, tags)
            return
        if not updated:
            raise RuntimeError(f"Index refused update of {external_id}")

    async def sync_page(self, page: Page) -> bool:
        """
        Push one page to the index if it is eligible.

        Returns:
            True if the page is now current in the index. False if it was
            skipped or the push failed; its status is then unchanged.
        """
        if not self.tracker.should_sync(page):
            return False
        if not page.content_text:
            logger.debug("Skipping empty page: %s", page.title)
            return False

        status = self.tracker.get_sync_status(page)
        if status == SyncStatus.YES:
            return True

        logger.info("Syncing page %s (status: %s)", page.title, status.value)
        try:
            await self._push(page, status)
            if not self.tracker.set_status(page.uuid, SyncStatus.YES):
                return False
        except Exception as e:
            logger.error("Error syncing page %s: %s", page.title, e)
            return False

        page.metadata.is_mem_synced = SyncStatus.YES
        return True

    async def sync_all_pending(self, pages: Iterable[Page]) -> SyncReport:
        """
        Push every eligible page whose status is never or no.

        A failed page is reported and left for the next pass; it never
        stops the rest of its batch or the batches after it.
        """
        pending = self.get_pending_sync_pages(pages)
        report = SyncReport()
        if not pending:
            logger.debug("No pages need syncing")
            return report

        batches = [
            pending[i:i + self.batch_size]
            for i in range(0, len(pending), self.batch_size)
        ]
        logger.info("Syncing %d page(s) in %d batch(es)", len(pending), len(batches))

        for number, batch in enumerate(batches, start=1):
            logger.debug("Syncing batch %d of %d", number, len(batches))
            results = await asyncio.gather(*(self.sync_page(page) for page in batch))
            report.batches.append(len(batch))
            for page, ok in zip(batch, results):
                report.attempted.append(page.uuid)
                (report.succeeded if ok else report.failed).append(page.uuid)

            if number < len(batches):
                await self._sleep(self.batch_delay)

        logger.info(
            "Background sync finished: %d synced, %d failed",
            len(report.succeeded), len(report.failed),
        )
        return report

    async def mark_page_for_sync(self, page_id: str) -> Optional[SyncStatus]:
        """
        Mark a page's content as changed (yes -> no).

        Returns the resulting status, or None if the store failed.
        """
        try:
            return self.tracker.mark_dirty(page_id)
        except Exception as e:
            logger.error("Error marking page %s for sync: %s", page_id, e)
            return None

    async def forget_page(self, page_id: str) -> bool:
        """Remove a page's document from the index and drop its mapping."""
        external_id = self._store.get_mapping(page_id)
        if external_id is None:
            return True
        try:
            await self._index.delete(external_id)
        except Exception as e:
            logger.error("Error removing page %s from index: %s", page_id, e)
            return False
        self._store.delete_mapping(page_id)
        logger.info("Removed page %s from index", page_id)
        return True

    async def search(
        self, query: str, limit: int = 10, tags: list[str] | None = None
    ) -> list[IndexDocument]:
        """Search the index. Failures are logged and give no results."""
        try:
            return await self._index.search(query, limit, tags)
        except Exception as e:
            logger.error("Index search failed: %s", e)
            return []
