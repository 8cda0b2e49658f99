"""Style engine pool and bibliography assembly.

CSL engines keep a working set of loaded items and are not reentrant.
The cache hands out one engine per (style URL, locale) and serializes all
use of it behind an ``asyncio.Lock``; engines for different keys run in
parallel.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .citations import extract_ids
from .collaborators import StyleEngine, StyleEngineFactory
from .exceptions import StyleNotInstalledError
from .models import CitationGroup, ItemHandle

logger = logging.getLogger(__name__)


STYLE_URL_PREFIX = "http://www.zotero.org/styles/"


def canonical_style_url(style_id: str) -> str:
    """``chicago-author-date`` -> ``http://www.zotero.org/styles/chicago-author-date``."""
    style_id = style_id.strip()
    if style_id.startswith(("http://", "https://")):
        return style_id
    return STYLE_URL_PREFIX + style_id


@dataclass
class _CacheEntry:
    engine: StyleEngine
    lock: asyncio.Lock


class StyleEngineCache:
    """Lazily created, exclusively locked style engines.

    Args:
        factory: Creates engines for installed styles
        default_style: Style used when a request names none
        default_locale: Locale used when a request names none
    """

    def __init__(
        self,
        factory: StyleEngineFactory,
        default_style: str = "chicago-note-bibliography",
        default_locale: str = "en-US",
    ):
        self.factory = factory
        self.default_style = default_style
        self.default_locale = default_locale
        self._entries: Dict[Tuple[str, str], _CacheEntry] = {}
        self._create_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def _entry(self, style_id: Optional[str], locale: Optional[str]) -> _CacheEntry:
        raw = (style_id or self.default_style).strip()
        style_url = canonical_style_url(raw)
        locale = locale or self.default_locale
        cache_key = (style_url, locale)

        entry = self._entries.get(cache_key)
        if entry is not None:
            return entry

        async with self._create_locks.setdefault(cache_key, asyncio.Lock()):
            entry = self._entries.get(cache_key)
            if entry is None:
                engine = await self.factory.create(style_url, locale)
                if engine is None and raw != style_url:
                    engine = await self.factory.create(raw, locale)
                if engine is None:
                    raise StyleNotInstalledError(style_url)
                entry = _CacheEntry(engine=engine, lock=asyncio.Lock())
                self._entries[cache_key] = entry
                logger.info(f"Created style engine for {style_url} ({locale})")
        return entry

    @asynccontextmanager
    async def acquire(
        self, style_id: Optional[str] = None, locale: Optional[str] = None
    ) -> AsyncIterator[StyleEngine]:
        """Hold the engine for (style, locale) exclusively.

        The lock is released when the block exits, also on error.

        Raises:
            StyleNotInstalledError: If the style cannot be found
        """
        entry = await self._entry(style_id, locale)
        async with entry.lock:
            yield entry.engine

    async def assemble_bibliography(
        self,
        style_id: Optional[str],
        locale: Optional[str],
        groups: Sequence[CitationGroup],
    ) -> Dict[str, Any]:
        """Render citation clusters and the bibliography for resolved groups.

        Under the engine lock: load exactly the request's items, append one
        cluster per group and write each reported (position, text) update
        at its position, then render the bibliography.

        Returns:
            ``{"bibliography": ..., "citationClusters": [...]}``
        """
        ids = extract_ids(groups)
        async with self.acquire(style_id, locale) as engine:
            await engine.update_items(ids)
            clusters: Dict[int, str] = {}
            for group in groups:
                for position, rendered in await engine.append_citation_cluster(group):
                    clusters[position] = rendered
            bibliography = await engine.make_bibliography()

        size = max(clusters) + 1 if clusters else 0
        return {
            "bibliography": bibliography,
            "citationClusters": [clusters.get(i) for i in range(size)],
        }

    async def render_items(
        self,
        style_id: Optional[str],
        locale: Optional[str],
        items: Sequence[ItemHandle],
    ) -> List[Dict[str, str]]:
        """Render each item on its own as HTML and single-line text."""
        rendered: List[Dict[str, str]] = []
        async with self.acquire(style_id, locale) as engine:
            for item in items:
                await engine.update_items([item])
                html = await engine.formatted_bibliography("html")
                text = await engine.formatted_bibliography("text")
                rendered.append({
                    "key": item.library_key,
                    "html": html,
                    "text": text.replace("\r\n", "").replace("\n", "").replace("\r", ""),
                })
        return rendered
