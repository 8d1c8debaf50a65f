"""
Base provider protocols.

These define the interfaces of the external collaborators the core talks
to: the relational page store, the semantic index and the text generator.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from ..types import Page


# -----------------------------------------------------------------------------
# Relational store
# -----------------------------------------------------------------------------

@runtime_checkable
class PageStore(Protocol):
    """
    Authoritative record of pages and their index mappings.

    Every statement is atomic on its own; callers needing read-modify-write
    re-read immediately before writing.
    """

    def get_page(self, page_id: str) -> Optional[Page]:
        ...

    def list_pages(
        self,
        user_id: str | None = None,
        *,
        include_deleted: bool = False,
        newest_first: bool = True,
    ) -> list[Page]:
        ...

    def save_page(self, page: Page) -> None:
        ...

    def soft_delete(self, page_id: str) -> list[str]:
        ...

    def get_metadata(self, page_id: str) -> Optional[dict]:
        ...

    def update_metadata(self, page_id: str, metadata: dict) -> bool:
        ...

    def update_summary(
        self, page_id: str, summary: Optional[dict], snapshot: Optional[dict]
    ) -> bool:
        ...

    def get_mapping(self, page_id: str) -> Optional[str]:
        ...

    def set_mapping(
        self, page_id: str, external_id: str, user_id: str | None = None
    ) -> None:
        ...

    def delete_mapping(self, page_id: str) -> Optional[str]:
        ...


# -----------------------------------------------------------------------------
# Semantic index
# -----------------------------------------------------------------------------

@dataclass
class IndexDocument:
    """A search hit from the semantic index."""
    id: str
    content: str = ""
    title: str = ""
    score: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexAddResult:
    """Result of adding a document: the index's own ID for it."""
    id: str


@runtime_checkable
class SemanticIndex(Protocol):
    """
    Hosted semantic memory / search service.

    Eventually consistent and rate limited. Methods raise
    IndexClientError on transport or API failures.

    Example implementation:
        class ListIndex:
            def __init__(self):
                self.docs = {}

            async def add(self, content, metadata, tags=None):
                doc_id = str(len(self.docs))
                self.docs[doc_id] = content
                return IndexAddResult(id=doc_id)
            ...
    """

    async def add(
        self, content: str, metadata: dict, tags: list[str] | None = None
    ) -> IndexAddResult:
        """Store a new document and return its external ID."""
        ...

    async def update(
        self, id: str, content: str, metadata: dict, tags: list[str] | None = None
    ) -> bool:
        """Replace a stored document's content. True on success."""
        ...

    async def delete(self, id: str) -> bool:
        """Remove a stored document. True if it was removed or already gone."""
        ...

    async def search(
        self, query: str, limit: int = 10, tags: list[str] | None = None
    ) -> list[IndexDocument]:
        """Return the most relevant documents for a query."""
        ...


# -----------------------------------------------------------------------------
# Text generation
# -----------------------------------------------------------------------------

@runtime_checkable
class TextGenerator(Protocol):
    """
    Large language model completion.

    May fail (network, rate limit) and is not deterministic.
    """

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str | None:
        """
        Send a system+user prompt and return the generated text.

        Args:
            system: System prompt
            user: User prompt
            max_tokens: Upper bound on generated tokens
            temperature: Sampling temperature

        Returns:
            Generated text, or None if the model returned nothing
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for index and generator providers.

    Concrete providers register themselves on import; the config names
    which one to build.

    Example:
        registry = get_registry()
        index = registry.create_index("supermemory", {"api_key": "..."})
    """

    def __init__(self):
        self._index_providers: dict[str, type] = {}
        self._generator_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True

        # Import provider modules to trigger registration
        from . import memory  # noqa: F401
        from . import llm  # noqa: F401

    def register_index(self, name: str, provider_class: type) -> None:
        """Register a semantic index provider class."""
        self._index_providers[name] = provider_class

    def register_generator(self, name: str, provider_class: type) -> None:
        """Register a text generator provider class."""
        self._generator_providers[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e

    def create_index(self, name: str, params: dict | None = None) -> SemanticIndex:
        """Create a semantic index instance."""
        self._ensure_providers_loaded()
        return self._create_provider("index", name, self._index_providers, params)

    def create_generator(self, name: str, params: dict | None = None) -> TextGenerator:
        """Create a text generator instance."""
        self._ensure_providers_loaded()
        return self._create_provider("generator", name, self._generator_providers, params)

    def list_index_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._index_providers.keys())

    def list_generator_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._generator_providers.keys())


# Global registry instance
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
