"""
Page tree helpers: nested file trees, folder paths and path tags.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .types import Page, PageType


@dataclass
class FileTreeNode:
    uuid: str
    title: str
    type: PageType
    path: str
    parent_uuid: Optional[str] = None
    children: list["FileTreeNode"] = field(default_factory=list)


def build_file_tree(pages: Iterable[Page]) -> list[FileTreeNode]:
    """Build nested nodes from a flat page list.

    Paths are ``/``-joined titles from the root. Pages whose parent is
    missing from the list are dropped along with their subtrees.
    """
    by_parent: dict[Optional[str], list[Page]] = {}
    for page in pages:
        if page.is_deleted:
            continue
        by_parent.setdefault(page.parent_uuid, []).append(page)

    def build(parent_uuid: Optional[str], parent_path: str, seen: frozenset) -> list[FileTreeNode]:
        nodes = []
        for page in by_parent.get(parent_uuid, []):
            if page.uuid in seen:
                continue
            path = f"{parent_path}/{page.title}"
            node = FileTreeNode(
                uuid=page.uuid,
                title=page.title,
                type=page.type,
                path=path,
                parent_uuid=page.parent_uuid,
            )
            if page.type == PageType.FOLDER:
                node.children = build(page.uuid, path, seen | {page.uuid})
            nodes.append(node)
        return nodes

    return build(None, "", frozenset())


def folder_path(page_id: str, lookup: Callable[[str], Optional[Page]]) -> Optional[str]:
    """
    Folder path of a page, e.g. ``Projects/Ideas`` for a page in Ideas.

    Walks the parent chain through ``lookup``; stops at a missing parent
    or at a cycle. Returns None for root-level pages.
    """
    segments: list[str] = []
    seen: set[str] = set()
    current: Optional[str] = page_id
    while current and current not in seen:
        seen.add(current)
        page = lookup(current)
        if page is None:
            break
        segments.insert(0, page.title)
        current = page.parent_uuid

    # Drop the page itself
    segments = segments[:-1]
    return "/".join(segments) if segments else None


def path_tags(path: Optional[str]) -> list[str]:
    """Cumulative tags for a folder path: ``A/B`` -> ``["A", "A/B"]``."""
    if not path:
        return []
    segments = [s for s in path.split("/") if s.strip()]
    return ["/".join(segments[: i + 1]) for i in range(len(segments))]
