"""
Corta

Client-side organization cache and background memory sync for a
note-taking app: optimistic page updates reconciled against the page
store, file tree change events, incremental sync of page content into a
semantic index, and summaries updated from newly added text.

Quick Start:
    from corta import Corta, paragraph_doc

    corta = Corta()                   # uses ~/.corta/
    page = corta.create_page("Ideas", content=paragraph_doc("..."))
    report = await corta.sync_pending()

CLI Usage:
    corta status
    corta sync
    corta summarize <page-uuid>

Environment Variables:
    CORTA_STORE_PATH             - Override default store location
    CORTA_USER_ID                - User whose pages to work on
    CORTA_SYNC_BATCH_SIZE        - Pages pushed concurrently per batch
    CORTA_SYNC_BATCH_DELAY       - Seconds between batches
    CORTA_STALE_PENDING_SECONDS  - Age at which unconfirmed optimistic writes are dropped
    SUPERMEMORY_API_KEY          - Use the hosted Supermemory index
    ANTHROPIC_API_KEY / OPENAI_API_KEY - Text generation for summaries
"""

from .api import Corta
from .cache import OrganizationCacheManager, ReconcileResult
from .document import extract_plain_text, paragraph_doc, to_markdown
from .events import FileTreeEvents, FileTreeEventType, PageSlim, Subscription
from .summary import SummaryUpdateResult, find_content_diff, update_page_summary
from .sync import MemorySyncService, SyncReport, SyncStatusTracker
from .types import (
    CacheUpdateEvent,
    ContentDiff,
    OrganizationState,
    Page,
    PageMetadata,
    PageType,
    SyncStatus,
)

__version__ = "0.1.0"
__all__ = [
    "CacheUpdateEvent",
    "ContentDiff",
    "Corta",
    "FileTreeEventType",
    "FileTreeEvents",
    "MemorySyncService",
    "OrganizationCacheManager",
    "OrganizationState",
    "Page",
    "PageMetadata",
    "PageSlim",
    "PageType",
    "ReconcileResult",
    "Subscription",
    "SummaryUpdateResult",
    "SyncReport",
    "SyncStatus",
    "SyncStatusTracker",
    "extract_plain_text",
    "find_content_diff",
    "paragraph_doc",
    "to_markdown",
    "update_page_summary",
]
