"""Interfaces of the external collaborators.

The engine never talks to Zotero, the exporters, the CSL processor or the
desktop directly; it is handed objects implementing these protocols.
Concrete implementations live in ``citekey_bridge.backends`` and the test
suite provides in-memory fakes.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import CitationGroup, Collection, ItemHandle, SearchQuery


# Zotero translator ids of the exporters the formatter knows by name.
EASYKEY_EXPORTER = "9d774afe-a51d-4055-a6c7-23bc96d19fe7"
BBT_CITEKEY_EXPORTER = "a515a220-6fef-45ea-9842-8025dfebcc8f"
BBT_JSON_EXPORTER = "f4b52ab0-f878-4556-85a0-c7aeedd09dfc"
CSL_JSON_EXPORTER = "bc03b4fe-436d-4a1f-ba59-de4d2d7a63f7"
BIBTEX_EXPORTER = "9cb70025-a888-4a29-a210-93ec52da40d4"


class LibraryStore(Protocol):
    """Read-only view of the bibliographic library."""

    async def run_search(self, query: SearchQuery) -> List[ItemHandle]: ...

    async def text_search(self, text: str, method: str) -> List[ItemHandle]: ...

    async def find_by_key(self, key: str, library_id: Optional[int] = None) -> List[ItemHandle]: ...

    async def find_by_citekey(self, citekey: str) -> List[ItemHandle]: ...

    async def libraries(self) -> List[int]: ...

    async def collections(self, library_id: int, parent_key: Optional[str] = None) -> List[Collection]: ...

    async def collection_items(self, collection: Collection) -> List[ItemHandle]: ...

    async def all_items(self) -> List[ItemHandle]: ...

    async def csl_items(self, items: Sequence[ItemHandle]) -> List[Dict[str, Any]]: ...

    async def attachment_paths(self, item: ItemHandle) -> List[str]: ...

    async def item_uri(self, item: ItemHandle) -> str: ...


class ExporterRegistry(Protocol):
    """Export services addressed by translator id."""

    def is_installed(self, exporter_id: str) -> bool: ...

    async def export(self, items: Sequence[ItemHandle], exporter_id: str) -> str: ...


class StyleEngine(Protocol):
    """A stateful, non-reentrant CSL processor bound to one style and locale.

    The working set loaded by ``update_items`` is shared state: callers
    must hold the engine's lock from ``StyleEngineCache.acquire``.
    """

    style_url: str
    locale: str

    async def update_items(self, items: Sequence[ItemHandle]) -> None: ...

    async def append_citation_cluster(self, group: CitationGroup) -> List[Tuple[int, str]]: ...

    async def make_bibliography(self) -> Any: ...

    async def formatted_bibliography(self, output_format: str) -> str: ...


class StyleEngineFactory(Protocol):
    """Creates engines and reports installed styles and locales."""

    async def create(self, style_url: str, locale: str) -> Optional[StyleEngine]: ...

    async def styles(self) -> List[Dict[str, Any]]: ...

    async def locales(self) -> Dict[str, str]: ...


class DesktopUI(Protocol):
    """The reference manager's user interface."""

    async def get_selection(self) -> List[ItemHandle]: ...

    async def reveal(self, item: ItemHandle) -> None: ...
