"""
Shared pytest fixtures for corta tests.

Provides fake index and generator providers so no test talks to a
hosted service.
"""

import asyncio
import threading

import pytest

from corta.document import paragraph_doc
from corta.errors import DocumentNotFound, IndexClientError
from corta.events import FileTreeEvents
from corta.page_store import SQLitePageStore
from corta.providers.base import IndexAddResult, IndexDocument
from corta.types import Page, PageType, SyncStatus


class RecordingIndex:
    """
    Semantic index fake that records calls and can fail on demand.

    Every call yields to the event loop once, so pushes started together
    overlap; ``max_active`` is the most calls seen in flight at once.
    """

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_titles: set[str] = set()
        self.active = 0
        self.max_active = 0
        self._next_id = 0

    async def _enter(self, op: str, title: str, doc_id: str | None) -> None:
        self.calls.append((op, title, doc_id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
        finally:
            self.active -= 1
        if title in self.fail_titles:
            raise IndexClientError(f"simulated failure for {title}")

    async def add(self, content, metadata, tags=None):
        await self._enter("add", metadata.get("title", ""), None)
        self._next_id += 1
        doc_id = f"mem-{self._next_id}"
        self.docs[doc_id] = {"content": content, "metadata": metadata, "tags": tags or []}
        return IndexAddResult(id=doc_id)

    async def update(self, id, content, metadata, tags=None):
        await self._enter("update", metadata.get("title", ""), id)
        if id not in self.docs:
            raise DocumentNotFound(f"no such document {id}")
        self.docs[id] = {"content": content, "metadata": metadata, "tags": tags or []}
        return True

    async def delete(self, id):
        await self._enter("delete", "", id)
        self.docs.pop(id, None)
        return True

    async def search(self, query, limit=10, tags=None):
        await self._enter("search", query, None)
        return [
            IndexDocument(id=doc_id, content=doc["content"], title=doc["metadata"].get("title", ""))
            for doc_id, doc in self.docs.items()
            if query.lower() in doc["content"].lower()
        ][:limit]

    def ops(self) -> list[str]:
        return [op for op, _, _ in self.calls]


class ScriptedGenerator:
    """Text generator that returns queued replies (or raises queued errors)."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def generate(self, system, user, *, max_tokens=500, temperature=0.3):
        with self._lock:
            self.calls.append((system, user))
            reply = self.replies.pop(0) if self.replies else None
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_page(
    store,
    title: str,
    text: str = "",
    *,
    parent: str | None = None,
    folder: bool = False,
    organized: bool = True,
    organize_status: str | None = None,
    status: SyncStatus | None = None,
    user_id: str = "user-1",
) -> Page:
    """Create and save a page."""
    page = Page.new(
        title,
        type=PageType.FOLDER if folder else PageType.FILE,
        parent_uuid=parent,
        content=paragraph_doc(text) if text else None,
        organized=organized,
        user_id=user_id,
        organize_status=organize_status,
    )
    if status is not None:
        page.metadata.is_mem_synced = status
    store.save_page(page)
    return page


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Keep tests away from real API keys and the user's store."""
    for name in (
        "SUPERMEMORY_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY",
        "CORTA_OPENAI_API_KEY", "CORTA_SYNC_BATCH_SIZE", "CORTA_SYNC_BATCH_DELAY",
        "CORTA_STALE_PENDING_SECONDS", "CORTA_USER_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CORTA_STORE_PATH", str(tmp_path / "default-store"))


@pytest.fixture
def events():
    return FileTreeEvents()


@pytest.fixture
def store(tmp_path, events):
    s = SQLitePageStore(tmp_path / "corta.db", events=events)
    yield s
    s.close()


@pytest.fixture
def index():
    return RecordingIndex()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def clock():
    return FakeClock()
