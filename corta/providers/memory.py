"""
Semantic index providers.

SupermemoryIndex talks to the hosted Supermemory API over HTTPS.
InMemoryIndex keeps documents in process, for tests.
LocalIndex is InMemoryIndex persisted to a SQLite file, the offline default.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import threading
import uuid
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..errors import DocumentNotFound, IndexClientError
from .base import IndexAddResult, IndexDocument, get_registry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.supermemory.ai"

# File name of the LocalIndex database inside a store directory
LOCAL_INDEX_FILENAME = "corta-index.db"

# Retry config for writes
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
MAX_RETRY_AFTER = 60.0

DEFAULT_TIMEOUT = 30.0

# Stamped into every document's metadata so searches can tell our notes apart
DOCUMENT_SOURCE = "corta-notes"


def _is_not_found(error: IndexClientError) -> bool:
    cause = error.__cause__
    return isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404


class SupermemoryIndex:
    """
    Async HTTP client for the Supermemory v3 API.

    Authentication: api_key parameter, else SUPERMEMORY_API_KEY.
    Documents are scoped to a user via the userId field and filtered by
    container tags (hierarchical folder paths).
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        api_url: str = DEFAULT_API_URL,
        user_id: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        key = api_key or os.environ.get("SUPERMEMORY_API_KEY")
        if not key:
            raise ValueError(
                "Supermemory API key required. Set SUPERMEMORY_API_KEY"
            )

        self._api_url = api_url.rstrip("/")
        self._user_id = user_id

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Index API URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _document_metadata(self, metadata: dict) -> dict:
        merged = {"source": DOCUMENT_SOURCE, "document_type": "note"}
        merged.update(metadata or {})
        return merged

    async def _request(self, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        """Send a request, retrying transient failures.

        Retries up to MAX_RETRIES times with exponential backoff on
        5xx, timeouts and connection errors. 429 waits for Retry-After.
        Other 4xx responses are rejected immediately.
        """
        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = await self._client.request(method, path, json=payload)
                if resp.status_code == 429:
                    retry_after = min(float(resp.headers.get("Retry-After", "5")), MAX_RETRY_AFTER)
                    logger.info("Rate limited, retrying after %.1fs", retry_after)
                    last_error = IndexClientError(f"Rate limited on {method} {path}")
                    await asyncio.sleep(retry_after)
                    continue
                resp.raise_for_status()
                return resp
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise IndexClientError(
                        f"{method} {path} rejected: {e.response.status_code} {e.response.text}"
                    ) from e
                last_error = e
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e

            if attempt < MAX_RETRIES - 1:
                delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.info(
                    "%s %s attempt %d failed, retrying in %.1fs: %s",
                    method, path, attempt + 1, delay, last_error,
                )
                await asyncio.sleep(delay)

        raise IndexClientError(
            f"{method} {path} failed after {MAX_RETRIES} attempts: {last_error}"
        ) from last_error

    async def add(
        self, content: str, metadata: dict, tags: list[str] | None = None
    ) -> IndexAddResult:
        payload: dict = {
            "content": content,
            "metadata": self._document_metadata(metadata),
        }
        if self._user_id:
            payload["userId"] = self._user_id
        if tags:
            payload["containerTags"] = tags

        resp = await self._request("POST", "/v3/memories", payload)
        try:
            doc_id = resp.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise IndexClientError(f"Add response has no document id: {resp.text}") from e
        if not doc_id:
            raise IndexClientError("Add response has an empty document id")
        return IndexAddResult(id=str(doc_id))

    async def update(
        self, id: str, content: str, metadata: dict, tags: list[str] | None = None
    ) -> bool:
        payload: dict = {
            "content": content,
            "metadata": self._document_metadata(metadata),
        }
        if tags:
            payload["containerTags"] = tags
        try:
            await self._request("PUT", f"/v3/memories/{id}", payload)
        except IndexClientError as e:
            if _is_not_found(e):
                raise DocumentNotFound(f"No such document: {id}") from e
            raise
        return True

    async def delete(self, id: str) -> bool:
        try:
            await self._request("DELETE", f"/v3/memories/{id}")
        except IndexClientError as e:
            # Already gone is as good as deleted
            if _is_not_found(e):
                return True
            raise
        return True

    async def search(
        self, query: str, limit: int = 10, tags: list[str] | None = None
    ) -> list[IndexDocument]:
        payload: dict = {"q": query, "limit": limit}
        if self._user_id:
            payload["userId"] = self._user_id
        if tags:
            payload["containerTags"] = tags

        resp = await self._request("POST", "/v3/search", payload)
        try:
            results = resp.json().get("results") or []
        except ValueError as e:
            raise IndexClientError(f"Search response is not JSON: {resp.text}") from e

        documents = []
        for result in results:
            meta = result.get("metadata") or {}
            chunks = result.get("chunks") or []
            content = "\n".join(c.get("content", "") for c in chunks if isinstance(c, dict))
            documents.append(IndexDocument(
                id=str(result.get("documentId") or result.get("id") or ""),
                content=content or result.get("content") or "",
                title=result.get("title") or meta.get("title") or "Untitled Document",
                score=float(result.get("score") or 0.0),
                metadata=meta,
            ))
        return documents

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class InMemoryIndex:
    """
    Process-local index.

    Search scores are the fraction of query words found in a document,
    so results are deterministic. Nothing survives the process.
    """

    def __init__(self, **_params):
        self.documents: dict[str, dict] = {}

    async def add(
        self, content: str, metadata: dict, tags: list[str] | None = None
    ) -> IndexAddResult:
        doc_id = uuid.uuid4().hex
        self.documents[doc_id] = {
            "content": content,
            "metadata": dict(metadata or {}),
            "tags": list(tags or []),
        }
        return IndexAddResult(id=doc_id)

    async def update(
        self, id: str, content: str, metadata: dict, tags: list[str] | None = None
    ) -> bool:
        if id not in self.documents:
            raise DocumentNotFound(f"No such document: {id}")
        self.documents[id] = {
            "content": content,
            "metadata": dict(metadata or {}),
            "tags": list(tags or []),
        }
        return True

    async def delete(self, id: str) -> bool:
        self.documents.pop(id, None)
        return True

    async def search(
        self, query: str, limit: int = 10, tags: list[str] | None = None
    ) -> list[IndexDocument]:
        words = [w for w in query.lower().split() if w]
        if not words:
            return []
        hits = []
        for doc_id, doc in self.documents.items():
            if tags and not set(tags) & set(doc["tags"]):
                continue
            text = doc["content"].lower()
            score = sum(1 for w in words if w in text) / len(words)
            if score > 0:
                hits.append(IndexDocument(
                    id=doc_id,
                    content=doc["content"],
                    title=doc["metadata"].get("title", ""),
                    score=score,
                    metadata=doc["metadata"],
                ))
        hits.sort(key=lambda d: (-d.score, d.id))
        return hits[:limit]

    async def close(self) -> None:
        pass


class LocalIndex(InMemoryIndex):
    """
    InMemoryIndex persisted to SQLite, so offline documents (and the page
    mappings that point at them) stay valid across runs.

    Documents are loaded into memory on open; every write goes to both.
    """

    def __init__(self, path: str | Path, **_params):
        super().__init__()
        self._db_path = Path(path)
        self._lock = threading.Lock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            str(self._db_path), check_same_thread=False
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS index_documents (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                tags_json TEXT NOT NULL DEFAULT '[]'
            )
        """)
        self._conn.commit()

        for doc_id, content, metadata_json, tags_json in self._conn.execute(
            "SELECT id, content, metadata_json, tags_json FROM index_documents"
        ):
            self.documents[doc_id] = {
                "content": content,
                "metadata": json.loads(metadata_json),
                "tags": json.loads(tags_json),
            }
        logger.debug("Opened local index %s (%d documents)", self._db_path, len(self.documents))

    def _write(self, doc_id: str) -> None:
        doc = self.documents[doc_id]
        with self._lock:
            self._conn.execute("""
                INSERT OR REPLACE INTO index_documents (id, content, metadata_json, tags_json)
                VALUES (?, ?, ?, ?)
            """, (
                doc_id, doc["content"],
                json.dumps(doc["metadata"], ensure_ascii=False),
                json.dumps(doc["tags"], ensure_ascii=False),
            ))
            self._conn.commit()

    async def add(
        self, content: str, metadata: dict, tags: list[str] | None = None
    ) -> IndexAddResult:
        result = await super().add(content, metadata, tags)
        self._write(result.id)
        return result

    async def update(
        self, id: str, content: str, metadata: dict, tags: list[str] | None = None
    ) -> bool:
        await super().update(id, content, metadata, tags)
        self._write(id)
        return True

    async def delete(self, id: str) -> bool:
        await super().delete(id)
        with self._lock:
            self._conn.execute("DELETE FROM index_documents WHERE id = ?", (id,))
            self._conn.commit()
        return True

    def close_db(self) -> None:
        """Close the database connection. Safe to call more than once."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def close(self) -> None:
        self.close_db()


_registry = get_registry()
_registry.register_index("supermemory", SupermemoryIndex)
_registry.register_index("local", LocalIndex)
_registry.register_index("memory", InMemoryIndex)
