"""
External collaborators: page store, semantic index and text generation.
"""

from .base import (
    IndexAddResult,
    IndexDocument,
    PageStore,
    ProviderRegistry,
    SemanticIndex,
    TextGenerator,
    get_registry,
)

__all__ = [
    "IndexAddResult",
    "IndexDocument",
    "PageStore",
    "ProviderRegistry",
    "SemanticIndex",
    "TextGenerator",
    "get_registry",
]
