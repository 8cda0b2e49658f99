"""CSL style engine built on citeproc-py.

Styles are the ``.csl`` files of a styles directory (Zotero keeps them in
``<data dir>/styles``), indexed by the id in their ``<info>`` block.
Dependent styles render with their independent parent.
"""

import asyncio
import copy
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import citeproc
from citeproc import (
    Citation,
    CitationItem,
    CitationStylesBibliography,
    CitationStylesStyle,
    formatter,
)
from citeproc.source import Locator
from citeproc.source.json import CiteProcJSON

from ..collaborators import LibraryStore
from ..models import CitationGroup, ItemHandle

logger = logging.getLogger(__name__)


CSL_NS = {"csl": "http://purl.org/net/xbiblio/csl"}
CSL_TAG = "{http://purl.org/net/xbiblio/csl}"
BIB_START = '<div class="csl-bib-body">\n'
BIB_END = "</div>"

# CSL-JSON keys citeproc-py has no variable for.
_UNSUPPORTED_KEYS = frozenset({"citation-key", "note"})

LOCALE_NAMES = {
    "af-ZA": "Afrikaans",
    "ar": "العربية",
    "bg-BG": "Български",
    "ca-AD": "Català",
    "cs-CZ": "Čeština",
    "da-DK": "Dansk",
    "de-AT": "Deutsch (Österreich)",
    "de-CH": "Deutsch (Schweiz)",
    "de-DE": "Deutsch (Deutschland)",
    "el-GR": "Ελληνικά",
    "en-GB": "English (UK)",
    "en-US": "English (US)",
    "es-ES": "Español (España)",
    "et-EE": "Eesti",
    "eu": "Euskara",
    "fa-IR": "فارسی",
    "fi-FI": "Suomi",
    "fr-CA": "Français (Canada)",
    "fr-FR": "Français (France)",
    "he-IL": "עברית",
    "hr-HR": "Hrvatski",
    "hu-HU": "Magyar",
    "is-IS": "Íslenska",
    "it-IT": "Italiano",
    "ja-JP": "日本語",
    "ko-KR": "한국어",
    "lt-LT": "Lietuvių",
    "nb-NO": "Norsk bokmål",
    "nl-NL": "Nederlands",
    "pl-PL": "Polski",
    "pt-BR": "Português (Brasil)",
    "pt-PT": "Português (Portugal)",
    "ro-RO": "Română",
    "ru-RU": "Русский",
    "sk-SK": "Slovenčina",
    "sl-SI": "Slovenščina",
    "sr-RS": "Српски",
    "sv-SE": "Svenska",
    "th-TH": "ไทย",
    "tr-TR": "Türkçe",
    "uk-UA": "Українська",
    "vi-VN": "Tiếng Việt",
    "zh-CN": "中文 (中国大陆)",
    "zh-TW": "中文 (台灣)",
}


@dataclass
class StyleInfo:
    """Metadata read from a style's ``<info>`` block."""
    style_id: str
    title: str
    path: Path
    categories: List[str]
    parent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"styleID": self.style_id, "title": self.title, "categories": self.categories}


def read_style_info(path: Path) -> Optional[StyleInfo]:
    """Parse the ``<info>`` block of a ``.csl`` file; None if it has no id."""
    root = ET.parse(path).getroot()
    info = root.find("csl:info", CSL_NS)
    if info is None:
        return None
    style_id = (info.findtext("csl:id", default="", namespaces=CSL_NS) or "").strip()
    if not style_id:
        return None
    parent = None
    for link in info.findall("csl:link", CSL_NS):
        if link.get("rel") == "independent-parent":
            parent = link.get("href")
    categories = [
        category.get("citation-format")
        for category in info.findall("csl:category", CSL_NS)
        if category.get("citation-format")
    ]
    return StyleInfo(
        style_id=style_id,
        title=(info.findtext("csl:title", default="", namespaces=CSL_NS) or "").strip(),
        path=path,
        categories=categories,
        parent=parent,
    )


def _engine_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """CSL-JSON as citeproc-py reads it: lower-case id, dated parts only."""
    cleaned = {k: copy.deepcopy(v) for k, v in record.items() if k not in _UNSUPPORTED_KEYS}
    cleaned["id"] = record["id"].lower()
    for variable in ("issued", "accessed"):
        if variable in cleaned and "date-parts" not in cleaned[variable]:
            del cleaned[variable]
    return cleaned


def _citation_item(item: Dict[str, Any]) -> CitationItem:
    handle: ItemHandle = item["id"]
    options: Dict[str, Any] = {}
    if item.get("locator"):
        options["locator"] = Locator(item.get("label") or "page", str(item["locator"]))
    for name in ("prefix", "suffix"):
        if item.get(name):
            options[name] = item[name]
    return CitationItem(handle.library_key.lower(), **options)


def _missing_reference(citation_item: CitationItem) -> None:
    logger.warning(f"Reference {citation_item.key} is not in the working set")


class CiteprocEngine:
    """One style and locale with a working set of items.

    Not reentrant; ``StyleEngineCache`` serializes access.
    """

    def __init__(self, style: CitationStylesStyle, style_url: str, locale: str, store: LibraryStore):
        self.style = style
        self.style_url = style_url
        self.locale = locale
        self.store = store
        self._records: List[Dict[str, Any]] = []
        self._bibliography: Optional[CitationStylesBibliography] = None
        self._clusters = 0

    def _new_bibliography(self, output=formatter.html) -> CitationStylesBibliography:
        source = CiteProcJSON(copy.deepcopy(self._records))
        return CitationStylesBibliography(self.style, source, output)

    async def update_items(self, items: Sequence[ItemHandle]) -> None:
        """Replace the working set with exactly ``items``."""
        records = await self.store.csl_items(items) if items else []
        self._records = [_engine_record(record) for record in records]
        self._bibliography = await asyncio.to_thread(self._new_bibliography)
        self._clusters = 0

    async def append_citation_cluster(self, group: CitationGroup) -> List[Tuple[int, str]]:
        citation = Citation([
            _citation_item(item)
            for item in group.citation_items
            if isinstance(item.get("id"), ItemHandle)
        ])
        rendered = await asyncio.to_thread(self._cite, citation)
        position = self._clusters
        self._clusters += 1
        return [(position, rendered)]

    def _cite(self, citation: Citation) -> str:
        if self._bibliography is None:
            self._bibliography = self._new_bibliography()
        self._bibliography.register(citation)
        return str(self._bibliography.cite(citation, _missing_reference))

    async def make_bibliography(self) -> Any:
        """``[{"bibstart", "bibend"}, [entries]]``, or False without a bibliography."""
        if self.style.root.find(CSL_TAG + "bibliography") is None or self._bibliography is None:
            return False
        entries = await asyncio.to_thread(
            lambda: [str(entry) for entry in self._bibliography.bibliography()]
        )
        return [
            {"bibstart": BIB_START, "bibend": BIB_END},
            [f'  <div class="csl-entry">{entry}</div>\n' for entry in entries],
        ]

    async def formatted_bibliography(self, output_format: str) -> str:
        """The whole working set as one ``html`` or ``text`` bibliography."""
        output = formatter.plain if output_format == "text" else formatter.html
        entries = await asyncio.to_thread(self._render_all, output)
        if output_format == "text":
            return "\n".join(entries)
        return BIB_START + "".join(f'  <div class="csl-entry">{e}</div>\n' for e in entries) + BIB_END

    def _render_all(self, output) -> List[str]:
        bibliography = self._new_bibliography(output)
        for record in self._records:
            bibliography.register(Citation([CitationItem(record["id"])]))
        return [str(entry) for entry in bibliography.bibliography()]


class CiteprocEngineFactory:
    """Creates citeproc-py engines for the styles in a directory.

    Args:
        store: Library store providing CSL-JSON to the engines
        styles_dir: Directory of ``.csl`` files (None = no styles installed)
    """

    def __init__(self, store: LibraryStore, styles_dir: Optional[Path] = None):
        self.store = store
        self.styles_dir = Path(styles_dir) if styles_dir else None
        self._index: Optional[Dict[str, StyleInfo]] = None

    def _build_index(self) -> Dict[str, StyleInfo]:
        index: Dict[str, StyleInfo] = {}
        if self.styles_dir is None or not self.styles_dir.is_dir():
            logger.warning(f"Styles directory not found: {self.styles_dir}")
            return index
        for path in sorted(self.styles_dir.glob("*.csl")):
            try:
                info = read_style_info(path)
            except ET.ParseError as e:
                logger.warning(f"Skipping unreadable style {path.name}: {e}")
                continue
            if info is not None:
                index[info.style_id] = info
                index.setdefault(path.stem, info)
        logger.info(f"Indexed {len(set(i.style_id for i in index.values()))} styles in {self.styles_dir}")
        return index

    async def _styles_index(self) -> Dict[str, StyleInfo]:
        if self._index is None:
            self._index = await asyncio.to_thread(self._build_index)
        return self._index

    async def create(self, style_url: str, locale: str) -> Optional[CiteprocEngine]:
        """Engine for an installed style, or None when it is unknown."""
        index = await self._styles_index()
        info = index.get(style_url)
        if info is None:
            return None
        path = info.path
        if info.parent:
            parent = index.get(info.parent)
            if parent is None:
                logger.warning(f"Parent style {info.parent} of {info.style_id} is not installed")
                return None
            path = parent.path
        style = await asyncio.to_thread(
            CitationStylesStyle, str(path), locale=locale, validate=False
        )
        logger.debug(f"Loaded style {info.style_id} from {path}")
        return CiteprocEngine(style, style_url, locale, self.store)

    async def styles(self) -> List[Dict[str, Any]]:
        index = await self._styles_index()
        seen = {}
        for info in index.values():
            seen.setdefault(info.style_id, info)
        return [info.to_dict() for info in sorted(seen.values(), key=lambda i: i.title.lower())]

    async def locales(self) -> Dict[str, str]:
        """Locales citeproc-py ships, by code with their native names."""
        locales_dir = Path(citeproc.__file__).parent / "data" / "locales"
        codes = sorted(
            path.stem[len("locales-"):]
            for path in locales_dir.glob("locales-*.xml")
        )
        return {code: LOCALE_NAMES.get(code, code) for code in codes}
