"""Response formatting for item lists."""

import asyncio
import json
import logging
import re
from typing import Any, List, Optional, Sequence

from .collaborators import (
    BBT_CITEKEY_EXPORTER,
    BBT_JSON_EXPORTER,
    BIBTEX_EXPORTER,
    CSL_JSON_EXPORTER,
    EASYKEY_EXPORTER,
    ExporterRegistry,
    LibraryStore,
)
from .exceptions import UserInputError
from .models import JSON_MEDIA_TYPE, TEXT_MEDIA_TYPE, ItemHandle, ResponseTriple
from .style_cache import StyleEngineCache

logger = logging.getLogger(__name__)


TRANSLATOR_ID_RE = re.compile(r"^[\da-f]{8}-[\da-f]{4}-[\da-f]{4}-[\da-f]{4}-[\da-f]{12}$")
_KEY_SEPARATOR_RE = re.compile(r"[\s,]+")
_KEY_DECORATION_RE = re.compile(r"[\[\]@]")


def json_response(payload: Any, status: int = 200) -> ResponseTriple:
    return ResponseTriple(status, JSON_MEDIA_TYPE, json.dumps(payload, ensure_ascii=False))


def text_response(body: str, status: int = 200) -> ResponseTriple:
    return ResponseTriple(status, TEXT_MEDIA_TYPE, body)


def split_exported_keys(raw: str) -> List[str]:
    """Split key exporter output such as ``[@doe:2005first, @roe:2006x]``."""
    keys = (_KEY_DECORATION_RE.sub("", key) for key in _KEY_SEPARATOR_RE.split(raw))
    return [key for key in keys if key]


def quick_bib(record: dict) -> str:
    """``Doe, John - 2006 - Article`` from a CSL-JSON record."""
    names = []
    for name in record.get("author") or record.get("editor") or []:
        if "literal" in name:
            names.append(name["literal"])
        else:
            names.append(", ".join(p for p in (name.get("family"), name.get("given")) if p))
    date_parts = (record.get("issued") or {}).get("date-parts") or [[]]
    year = str(date_parts[0][0]) if date_parts and date_parts[0] else ""
    parts = ["; ".join(names), year, record.get("title", "")]
    return " - ".join(part for part in parts if part)


class ResponseFormatter:
    """Turns a resolved item list into the response for a ``format`` value.

    Args:
        store: Library store, for attachment paths and item data
        exporters: Export services by translator id
        styles: Style engine cache for the bibliography format
    """

    def __init__(self, store: LibraryStore, exporters: ExporterRegistry, styles: StyleEngineCache):
        self.store = store
        self.exporters = exporters
        self.styles = styles

    async def format(
        self,
        items: Sequence[ItemHandle],
        format: Optional[str] = None,
        style: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> ResponseTriple:
        """Build the response for ``items`` in the requested format.

        An empty item list never reaches an exporter or style engine.
        """
        items = list(items)
        logger.debug(f"Formatting {len(items)} items as {format or 'json'}")
        if format == "key":
            return json_response([item.library_key for item in items])
        if format == "easykey":
            return await self._key_response(items, EASYKEY_EXPORTER)
        if format in ("betterbibtexkey", "citekey"):
            if not self.exporters.is_installed(BBT_CITEKEY_EXPORTER):
                raise UserInputError("BetterBibTex not installed.")
            return await self._key_response(items, BBT_CITEKEY_EXPORTER)
        if format == "bibtex":
            return await self._export_response(items, BIBTEX_EXPORTER)
        if format == "bibliography":
            if not items:
                return json_response([])
            return json_response(await self.styles.render_items(style, locale, items))
        if format == "paths":
            paths = await asyncio.gather(*(self.store.attachment_paths(item) for item in items))
            return json_response([
                {"key": item.library_key, "paths": item_paths}
                for item, item_paths in zip(items, paths)
            ])
        if format == "quickBib":
            records = await self.store.csl_items(items) if items else []
            return json_response([
                {"key": item.library_key, "quickBib": quick_bib(record)}
                for item, record in zip(items, records)
            ])
        if format and TRANSLATOR_ID_RE.match(format):
            if not self.exporters.is_installed(format):
                raise UserInputError(f"Exporter {format} not installed.")
            return await self._export_response(items, format)
        return await self._json_response(items)

    async def _key_response(self, items: List[ItemHandle], exporter_id: str) -> ResponseTriple:
        if not items:
            return json_response([])
        raw = await self.exporters.export(items, exporter_id)
        return json_response(split_exported_keys(raw))

    async def _export_response(self, items: List[ItemHandle], exporter_id: str) -> ResponseTriple:
        if not items:
            return text_response("")
        return text_response(await self.exporters.export(items, exporter_id))

    async def _json_response(self, items: List[ItemHandle]) -> ResponseTriple:
        """CSL-JSON records, from Better BibTeX when it is installed."""
        if not items:
            return json_response([])
        exporter_id = CSL_JSON_EXPORTER
        if self.exporters.is_installed(BBT_JSON_EXPORTER):
            exporter_id = BBT_JSON_EXPORTER
        body = await self.exporters.export(items, exporter_id)
        return ResponseTriple(200, JSON_MEDIA_TYPE, body)
