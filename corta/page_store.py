"""
Page store using SQLite.

The relational record of pages and of the mapping between a page and its
document in the semantic index. This is the source of truth for:
- Page identity, title, type and position in the tree
- Structured content and the summary derived from it
- Metadata (folder flag, organize status, sync status)

Pages are soft-deleted; deleting a folder soft-deletes its subtree.
When constructed with a FileTreeEvents bus, inserts and soft deletes are
published to it the way a realtime change feed would.
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import StoreError
from .events import FileTreeEvents
from .types import Page, PageMetadata, PageType, utc_now

_PAGE_COLUMNS = """
    uuid, user_id, title, type, parent_uuid, content_json, content_text,
    organized, metadata_json, is_deleted, created_at, updated_at,
    page_summary_json, last_summary_content_json
"""


def _dump(value) -> Optional[str]:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


def _load(text: Optional[str]):
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


class SQLitePageStore:
    """
    SQLite-backed store for pages and index mappings.

    Each method is a single statement or a single transaction; there is no
    cross-call transaction. Callers that read-modify-write metadata re-read
    it right before writing.
    """

    def __init__(self, store_path: Path, *, events: FileTreeEvents | None = None):
        """
        Args:
            store_path: Path to SQLite database file
            events: Optional bus that receives INSERT/DELETE notifications
        """
        self._db_path = Path(store_path)
        self._events = events
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL for concurrent readers, and wait for locks rather than failing
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pages (
                uuid TEXT PRIMARY KEY,
                user_id TEXT,
                title TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'file',
                parent_uuid TEXT,
                content_json TEXT,
                content_text TEXT NOT NULL DEFAULT '',
                organized INTEGER NOT NULL DEFAULT 0,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                page_summary_json TEXT,
                last_summary_content_json TEXT
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pages_user_updated
            ON pages(user_id, updated_at)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pages_parent
            ON pages(parent_uuid)
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS document_mapping (
                page_uuid TEXT PRIMARY KEY,
                external_id TEXT NOT NULL UNIQUE,
                user_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def _row_to_page(self, row: sqlite3.Row) -> Page:
        try:
            page_type = PageType(row["type"])
        except ValueError:
            page_type = PageType.FILE
        return Page(
            uuid=row["uuid"],
            user_id=row["user_id"],
            title=row["title"],
            type=page_type,
            parent_uuid=row["parent_uuid"],
            content=_load(row["content_json"]),
            organized=bool(row["organized"]),
            metadata=PageMetadata.from_dict(_load(row["metadata_json"])),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            page_summary=_load(row["page_summary_json"]),
            last_summary_content=_load(row["last_summary_content_json"]),
        )

    def _check_parent(self, page: Page) -> None:
        """Parent must be an existing folder, and not create a cycle."""
        if page.parent_uuid is None:
            return
        seen = {page.uuid}
        current = page.parent_uuid
        first = True
        while current is not None:
            if current in seen:
                raise StoreError(f"Moving page {page.uuid} under {page.parent_uuid} creates a cycle")
            seen.add(current)
            row = self._conn.execute(
                "SELECT type, parent_uuid FROM pages WHERE uuid = ?", (current,)
            ).fetchone()
            if row is None:
                raise StoreError(f"Parent page not found: {current}")
            if first and row["type"] != PageType.FOLDER.value:
                raise StoreError(f"Parent page {current} is not a folder")
            first = False
            current = row["parent_uuid"]

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    def save_page(self, page: Page) -> None:
        """
        Insert or update a page.

        Preserves created_at on update. Updates updated_at always.

        Raises:
            StoreError: If the parent is missing, not a folder, or would
                make the tree cyclic
        """
        now = utc_now()
        with self._lock:
            self._check_parent(page)
            existing = self._conn.execute(
                "SELECT created_at FROM pages WHERE uuid = ?", (page.uuid,)
            ).fetchone()
            created_at = existing["created_at"] if existing else (page.created_at or now)

            self._conn.execute(f"""
                INSERT OR REPLACE INTO pages ({_PAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                page.uuid, page.user_id, page.title, page.type.value, page.parent_uuid,
                _dump(page.content), page.content_text, int(page.organized),
                json.dumps(page.metadata.to_dict(), ensure_ascii=False),
                int(page.is_deleted), created_at, now,
                _dump(page.page_summary), _dump(page.last_summary_content),
            ))
            self._conn.commit()

        page.created_at = created_at
        page.updated_at = now
        if existing is None and self._events is not None:
            self._events.publish_store_change("INSERT", {
                "uuid": page.uuid, "title": page.title,
                "type": page.type.value, "parent_uuid": page.parent_uuid,
            })

    def get_page(self, page_id: str) -> Optional[Page]:
        """Get a page by UUID, deleted or not."""
        row = self._conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM pages WHERE uuid = ?", (page_id,)
        ).fetchone()
        return self._row_to_page(row) if row else None

    def list_pages(
        self,
        user_id: str | None = None,
        *,
        include_deleted: bool = False,
        newest_first: bool = True,
    ) -> list[Page]:
        """List pages, optionally for one user, ordered by updated_at."""
        clauses = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if not include_deleted:
            clauses.append("is_deleted = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "DESC" if newest_first else "ASC"
        cursor = self._conn.execute(f"""
            SELECT {_PAGE_COLUMNS} FROM pages
            {where}
            ORDER BY updated_at {order}, uuid
        """, params)
        return [self._row_to_page(row) for row in cursor]

    def soft_delete(self, page_id: str) -> list[str]:
        """
        Mark a page and all of its descendants deleted.

        Returns the UUIDs of the pages newly marked.
        """
        now = utc_now()
        with self._lock:
            cursor = self._conn.execute("""
                WITH RECURSIVE subtree(uuid) AS (
                    SELECT uuid FROM pages WHERE uuid = ?
                    UNION
                    SELECT p.uuid FROM pages p JOIN subtree s ON p.parent_uuid = s.uuid
                )
                SELECT uuid, title, type, parent_uuid FROM pages
                WHERE uuid IN (SELECT uuid FROM subtree) AND is_deleted = 0
            """, (page_id,))
            rows = [dict(row) for row in cursor]
            if rows:
                self._conn.executemany(
                    "UPDATE pages SET is_deleted = 1, updated_at = ? WHERE uuid = ?",
                    [(now, row["uuid"]) for row in rows],
                )
                self._conn.commit()

        if self._events is not None:
            for row in rows:
                self._events.publish_store_change("UPDATE", {**row, "is_deleted": True})
        return [row["uuid"] for row in rows]

    def get_metadata(self, page_id: str) -> Optional[dict]:
        """Raw metadata of a page, or None if the page doesn't exist."""
        row = self._conn.execute(
            "SELECT metadata_json FROM pages WHERE uuid = ?", (page_id,)
        ).fetchone()
        if row is None:
            return None
        return _load(row["metadata_json"]) or {}

    def update_metadata(self, page_id: str, metadata: dict) -> bool:
        """
        Replace a page's metadata. Does not touch updated_at, so status
        bookkeeping doesn't reorder the page list.

        Returns:
            True if the page was found and updated
        """
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE pages SET metadata_json = ? WHERE uuid = ?",
                (json.dumps(metadata, ensure_ascii=False), page_id),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def update_summary(
        self, page_id: str, summary: Optional[dict], snapshot: Optional[dict]
    ) -> bool:
        """Store a page summary and the content snapshot it was made from."""
        with self._lock:
            cursor = self._conn.execute("""
                UPDATE pages
                SET page_summary_json = ?, last_summary_content_json = ?
                WHERE uuid = ?
            """, (_dump(summary), _dump(snapshot), page_id))
            self._conn.commit()
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Index mapping
    # -------------------------------------------------------------------------

    def get_mapping(self, page_id: str) -> Optional[str]:
        """External index ID for a page, if it has been added."""
        row = self._conn.execute(
            "SELECT external_id FROM document_mapping WHERE page_uuid = ?", (page_id,)
        ).fetchone()
        return row["external_id"] if row else None

    def set_mapping(
        self, page_id: str, external_id: str, user_id: str | None = None
    ) -> None:
        """Record (or replace) the external index ID for a page."""
        now = utc_now()
        with self._lock:
            self._conn.execute("""
                INSERT INTO document_mapping (page_uuid, external_id, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(page_uuid) DO UPDATE SET
                    external_id = excluded.external_id,
                    updated_at = excluded.updated_at
            """, (page_id, external_id, user_id, now, now))
            self._conn.commit()

    def delete_mapping(self, page_id: str) -> Optional[str]:
        """Remove a page's mapping. Returns the external ID it held."""
        with self._lock:
            row = self._conn.execute(
                "SELECT external_id FROM document_mapping WHERE page_uuid = ?", (page_id,)
            ).fetchone()
            if row is None:
                return None
            self._conn.execute(
                "DELETE FROM document_mapping WHERE page_uuid = ?", (page_id,)
            )
            self._conn.commit()
        return row["external_id"]

    def count_mappings(self) -> int:
        cursor = self._conn.execute("SELECT COUNT(*) FROM document_mapping")
        return cursor.fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
