"""
Corta: wiring of the page store, organization cache, sync engine and
summary updater for one user in one process.

Page edits go through here so each one is applied optimistically to the
cache, written to the store, and marked for re-indexing in one place.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .cache import OrganizationCacheManager, ReconcileResult
from .config import StoreConfig, get_store_path, load_or_create_config
from .events import FileTreeEvents
from .logging_config import configure_ops_log
from .page_store import SQLitePageStore
from .providers.base import SemanticIndex, TextGenerator, get_registry
from .providers.memory import LOCAL_INDEX_FILENAME
from .summary import SummaryUpdateResult, refresh_stored_summary
from .sync import MemorySyncService, SyncReport
from .types import Page, PageType, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "local"


class Corta:
    """
    One user's notes: store, cache, event bus, index sync and summaries.

    Create one per process and share it. Providers come from the store's
    config unless passed in.
    """

    def __init__(
        self,
        store_path: str | Path | None = None,
        *,
        user_id: str | None = None,
        config: Optional[StoreConfig] = None,
        index: Optional[SemanticIndex] = None,
        generator: Optional[TextGenerator] = None,
    ):
        path = get_store_path(store_path)
        self.config = config or load_or_create_config(path)
        self.user_id = user_id or os.environ.get("CORTA_USER_ID") or DEFAULT_USER_ID

        registry = get_registry()
        if index is None:
            params = dict(self.config.index.params)
            if self.config.index.name == "supermemory":
                params.setdefault("user_id", self.user_id)
            elif self.config.index.name == "local":
                params.setdefault("path", self.config.path / LOCAL_INDEX_FILENAME)
            index = registry.create_index(self.config.index.name, params)
        self.index = index
        self._generator = generator

        self.events = FileTreeEvents()
        self.store = SQLitePageStore(self.config.database_path, events=self.events)
        self.cache = OrganizationCacheManager(
            self.store,
            self.user_id,
            stale_pending_seconds=self.config.cache.stale_pending_seconds,
        )
        self.sync = MemorySyncService(
            self.store,
            self.index,
            user_id=self.user_id,
            batch_size=self.config.sync.batch_size,
            batch_delay=self.config.sync.batch_delay,
        )
        # Must stay last: a failed __init__ has no close() to remove it
        self._ops_handler = configure_ops_log(self.config.path)

    @property
    def generator(self) -> TextGenerator:
        """The configured text generator, created on first use."""
        if self._generator is None:
            if self.config.generator is None:
                raise ValueError(
                    "No text generator configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY, "
                    "or add a [generator] section to corta.toml"
                )
            self._generator = get_registry().create_generator(
                self.config.generator.name, self.config.generator.params,
            )
        return self._generator

    # -------------------------------------------------------------------------
    # Page edits
    # -------------------------------------------------------------------------

    def _require_page(self, page_id: str) -> Page:
        if not page_id:
            raise ValueError("page_id is required")
        page = self.store.get_page(page_id)
        if page is None or page.is_deleted:
            raise KeyError(f"Page not found: {page_id}")
        return page

    def create_page(
        self,
        title: str,
        *,
        type: PageType = PageType.FILE,
        parent_uuid: str | None = None,
        content: dict | None = None,
        organized: bool = True,
        organize_status: str | None = None,
    ) -> Page:
        """Create a page. It starts unsynced (never)."""
        if not title:
            raise ValueError("title is required")
        page = Page.new(
            title,
            type=type,
            parent_uuid=parent_uuid,
            content=content,
            organized=organized,
            user_id=self.user_id,
            organize_status=organize_status,
        )
        self.cache.optimistic_update([page], "create")
        self.store.save_page(page)
        return page

    def edit_page(
        self,
        page_id: str,
        *,
        content: dict | None = None,
        title: str | None = None,
        organized: bool | None = None,
    ) -> Page:
        """
        Change a page's content, title or organized flag.

        A content or title change marks an indexed page as needing sync.
        """
        page = self._require_page(page_id)
        changes = {}
        if content is not None and content != page.content:
            changes["content"] = content
        if title is not None and title != page.title:
            changes["title"] = title
        if organized is not None and organized != page.organized:
            changes["organized"] = organized
        if not changes:
            return page

        updated = page.copy(**changes)
        self.cache.optimistic_update([updated], "update")
        self.store.save_page(updated)
        if "content" in changes or "title" in changes:
            status = self.sync.tracker.mark_dirty(page_id)
            updated.metadata.is_mem_synced = status
        return updated

    def move_page(self, page_id: str, parent_uuid: str | None) -> Page:
        """Move a page under another folder (or to the root)."""
        page = self._require_page(page_id)
        updated = page.copy(parent_uuid=parent_uuid)
        self.cache.optimistic_update([updated], "update")
        self.store.save_page(updated)
        return updated

    async def delete_page(self, page_id: str) -> list[str]:
        """
        Soft-delete a page and its subtree, and remove them from the index.

        Returns the deleted page IDs.
        """
        page = self._require_page(page_id)
        self.cache.optimistic_update([page], "delete")
        deleted = self.store.soft_delete(page_id)
        for deleted_id in deleted:
            await self.sync.forget_page(deleted_id)
        return deleted

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def list_pages(self) -> list[Page]:
        return self.store.list_pages(self.user_id)

    async def refresh(self) -> Optional[ReconcileResult]:
        """Reconcile the cache with the store."""
        return await self.cache.refresh()

    async def sync_pending(self) -> SyncReport:
        """Push every page that needs it into the semantic index."""
        return await self.sync.sync_all_pending(self.list_pages())

    async def refresh_summary(self, page_id: str) -> SummaryUpdateResult:
        """Update a page's stored summary from what was added since the last one."""
        self._require_page(page_id)
        return await refresh_stored_summary(self.store, page_id, self.generator)

    def status(self) -> dict:
        """Counts of pages by sync status, plus cache state."""
        counts = {status.value: 0 for status in SyncStatus}
        skipped = 0
        pages = self.list_pages()
        for page in pages:
            if self.sync.tracker.should_sync(page):
                counts[page.metadata.sync_status.value] += 1
            else:
                skipped += 1
        state = self.cache.get_state()
        return {
            "pages": len(pages),
            "sync": counts,
            "not_eligible": skipped,
            "mappings": self.store.count_mappings(),
            "cache_version": state.cache_version,
            "pending_updates": len(state.pending_updates),
            "is_organizing": state.is_organizing,
        }

    async def aclose(self) -> None:
        """Close the index client, then the store."""
        close = getattr(self.index, "close", None)
        if close is not None:
            await close()
        self.close()

    def close(self) -> None:
        close_db = getattr(self.index, "close_db", None)
        if close_db is not None:
            close_db()
        self.store.close()
        if self._ops_handler is not None:
            logging.getLogger("corta").removeHandler(self._ops_handler)
            self._ops_handler.close()
            self._ops_handler = None
