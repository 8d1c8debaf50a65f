"""
Data types for the organization cache and memory sync core.
"""

import copy
import uuid as uuid_lib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .document import extract_plain_text


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    All timestamps in corta are UTC, stored without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


class PageType(str, Enum):
    FILE = "file"
    FOLDER = "folder"


class SyncStatus(str, Enum):
    """Whether a page's content is current in the semantic index.

    never -> no -> yes, and yes -> no when content changes again.
    Nothing moves back to never.
    """
    NEVER = "never"
    NO = "no"
    YES = "yes"


class OrganizeStatus(str, Enum):
    SOON = "soon"
    DONE = "done"


# Stored metadata keys. The relational store keeps camelCase names.
_IS_FOLDER = "isFolder"
_ORGANIZE_STATUS = "organizeStatus"
_IS_MEM_SYNCED = "isMemSynced"


@dataclass
class PageMetadata:
    """
    Typed view of a page's metadata column.

    Known keys get explicit fields. Anything else is carried in ``extra``
    and written back untouched, so keys added by other writers (or renamed
    in a later schema) survive a read-modify-write.
    """
    is_folder: bool = False
    organize_status: Optional[str] = None
    is_mem_synced: Optional[SyncStatus] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PageMetadata":
        data = dict(data or {})
        raw_status = data.pop(_IS_MEM_SYNCED, None)
        try:
            status = SyncStatus(raw_status) if raw_status is not None else None
        except ValueError:
            status = None
        return cls(
            is_folder=bool(data.pop(_IS_FOLDER, False)),
            organize_status=data.pop(_ORGANIZE_STATUS, None),
            is_mem_synced=status,
            extra=data,
        )

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.is_folder:
            data[_IS_FOLDER] = True
        if self.organize_status is not None:
            data[_ORGANIZE_STATUS] = self.organize_status
        if self.is_mem_synced is not None:
            data[_IS_MEM_SYNCED] = self.is_mem_synced.value
        return data

    @property
    def sync_status(self) -> SyncStatus:
        return self.is_mem_synced or SyncStatus.NEVER


@dataclass
class Page:
    """
    A page in the user's document tree: a file, or a folder of pages.

    ``content`` is a structured document (TipTap-style JSON). The plain-text
    projection is computed from it on demand.
    """
    uuid: str
    title: str
    type: PageType = PageType.FILE
    parent_uuid: Optional[str] = None
    content: Optional[dict] = None
    organized: bool = False
    metadata: PageMetadata = field(default_factory=PageMetadata)
    user_id: Optional[str] = None
    is_deleted: bool = False
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    page_summary: Optional[dict] = None
    last_summary_content: Optional[dict] = None

    @classmethod
    def new(
        cls,
        title: str,
        *,
        type: PageType = PageType.FILE,
        parent_uuid: str | None = None,
        content: dict | None = None,
        organized: bool = False,
        user_id: str | None = None,
        organize_status: str | None = None,
    ) -> "Page":
        """Create a fresh page. Files start at sync status ``never``."""
        is_folder = type == PageType.FOLDER
        return cls(
            uuid=str(uuid_lib.uuid4()),
            title=title,
            type=type,
            parent_uuid=parent_uuid,
            content=content,
            organized=organized,
            user_id=user_id,
            metadata=PageMetadata(
                is_folder=is_folder,
                organize_status=organize_status,
                is_mem_synced=None if is_folder else SyncStatus.NEVER,
            ),
        )

    @property
    def is_folder(self) -> bool:
        return self.type == PageType.FOLDER or self.metadata.is_folder

    @property
    def content_text(self) -> str:
        return extract_plain_text(self.content)

    def same_state(self, other: "Page") -> bool:
        """True if both records agree on everything a user can change."""
        return (
            self.uuid == other.uuid
            and self.title == other.title
            and self.type == other.type
            and self.parent_uuid == other.parent_uuid
            and (self.content or None) == (other.content or None)
            and self.organized == other.organized
            and self.is_deleted == other.is_deleted
        )

    def copy(self, **changes) -> "Page":
        """Copy with changes. Documents and metadata are deep-copied, so
        editing the copy in place never reaches the original."""
        for name in ("content", "page_summary", "last_summary_content"):
            changes.setdefault(name, copy.deepcopy(getattr(self, name)))
        changes.setdefault(
            "metadata",
            replace(self.metadata, extra=copy.deepcopy(self.metadata.extra)),
        )
        return replace(self, **changes)


@dataclass(frozen=True)
class PendingUpdate:
    """An optimistic write that the server has not confirmed yet."""
    page: Page
    action: str
    queued_at: float


@dataclass(frozen=True)
class OrganizationState:
    """Snapshot of the organization cache. Never the live object."""
    is_organizing: bool = False
    cache_version: int = 0
    last_organization: Optional[float] = None
    pending_updates: tuple[Page, ...] = ()


@dataclass(frozen=True)
class CacheUpdateEvent:
    """
    Notification sent to cache listeners.

    kind is one of insert, update, delete, optimistic, refresh, error.
    """
    kind: str
    pages: tuple[Page, ...] = ()
    cache_version: int = 0
    action: str = ""
    error: Optional[str] = None
    timestamp: float = 0.0


@dataclass(frozen=True)
class ContentDiff:
    """Difference between two document snapshots' plain text."""
    has_changes: bool
    added_text: str = ""
    old_text: str = ""
    new_text: str = ""
