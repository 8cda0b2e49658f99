"""Exporters addressed by Zotero translator id.

Every exporter works from the CSL-JSON records of the library store and
returns text, like Zotero's translators do.
"""

import json
import logging
import re
import unicodedata
from typing import Any, Callable, Dict, List, Sequence

from ..collaborators import (
    BBT_CITEKEY_EXPORTER,
    BBT_JSON_EXPORTER,
    BIBTEX_EXPORTER,
    CSL_JSON_EXPORTER,
    EASYKEY_EXPORTER,
    LibraryStore,
)
from ..exceptions import UserInputError
from ..models import ItemHandle

logger = logging.getLogger(__name__)


_TITLE_WORD_RE = re.compile(r"[^\W\d_]+")
_SKIPPED_TITLE_WORDS = frozenset({"a", "an", "the"})
_HYPHENS_RE = re.compile(r"-+")

CSL_TO_BIBTEX_TYPE = {
    "article-journal": "article",
    "article-magazine": "article",
    "article-newspaper": "article",
    "book": "book",
    "chapter": "incollection",
    "paper-conference": "inproceedings",
    "thesis": "phdthesis",
    "report": "techreport",
    "manuscript": "unpublished",
    "patent": "patent",
}

# (CSL variable, BibTeX field); values are escaped unless the field is raw.
_BIBTEX_FIELDS = (
    ("title", "title"),
    ("container-title", "journal"),
    ("publisher", "publisher"),
    ("publisher-place", "address"),
    ("volume", "volume"),
    ("issue", "number"),
    ("page", "pages"),
    ("edition", "edition"),
    ("collection-title", "series"),
    ("ISBN", "isbn"),
    ("ISSN", "issn"),
    ("DOI", "doi"),
    ("URL", "url"),
    ("abstract", "abstract"),
)
_RAW_BIBTEX_FIELDS = frozenset({"doi", "url", "pages", "volume", "number"})


def escape_bibtex(s: str) -> str:
    """Escape special characters for BibTeX."""
    return (
        s.replace("&", r"\&")
        .replace("%", r"\%")
        .replace("$", r"\$")
        .replace("#", r"\#")
        .replace("_", r"\_")
        .replace("{", r"\{")
        .replace("}", r"\}")
        .replace("~", r"\textasciitilde{}")
        .replace("^", r"\textasciicircum{}")
    )


def _year(record: Dict[str, Any]) -> str:
    parts = (record.get("issued") or {}).get("date-parts") or [[]]
    return str(parts[0][0]) if parts and parts[0] else ""


def _name_token(name: Dict[str, str]) -> str:
    """Creator part of an easy key: ``O'Brien`` -> ``o_brien``, ``St. John`` -> ``st_john``.

    Only letters, marks and inner hyphens survive; anything else separates
    words, so every word still occurs in the stored name.
    """
    text = unicodedata.normalize("NFC", name.get("family") or name.get("literal") or "").lower()
    text = "".join(
        ch if ch == "-" or unicodedata.category(ch)[0] in ("L", "M") else " "
        for ch in text
    )
    words = (_HYPHENS_RE.sub("-", word).strip("-") for word in text.split())
    return "_".join(word for word in words if word)


def easykey_for(record: Dict[str, Any]) -> str:
    """Easy key of a CSL-JSON record, e.g. ``doe:2005first``.

    Creators are the authors (editors when there are none), joined with
    underscores; the title part is the first significant title word.
    """
    names = record.get("author") or record.get("editor") or []
    creators = "_".join(token for token in (_name_token(name) for name in names) if token)
    title_words = [
        word.lower()
        for word in _TITLE_WORD_RE.findall(unicodedata.normalize("NFC", record.get("title", "")))
    ]
    title = next((word for word in title_words if word not in _SKIPPED_TITLE_WORDS), "")
    return f"{creators or 'anon'}:{_year(record)}{title}"


def _bibtex_names(names: List[Dict[str, str]]) -> str:
    rendered = []
    for name in names:
        if "literal" in name:
            rendered.append("{" + escape_bibtex(name["literal"]) + "}")
        elif name.get("given"):
            rendered.append(f"{escape_bibtex(name['family'])}, {escape_bibtex(name['given'])}")
        else:
            rendered.append(escape_bibtex(name.get("family", "")))
    return " and ".join(rendered)


def bibtex_entry(record: Dict[str, Any]) -> str:
    """One BibTeX entry for a CSL-JSON record."""
    entry_type = CSL_TO_BIBTEX_TYPE.get(record.get("type", ""), "misc")
    citation_key = record.get("citation-key") or easykey_for(record).replace(":", "")
    lines = [f"@{entry_type}{{{citation_key},"]

    for variable in ("author", "editor"):
        if record.get(variable):
            lines.append(f"  {variable} = {{{_bibtex_names(record[variable])}}},")

    year = _year(record)
    if year:
        lines.append(f"  year = {{{year}}},")

    for variable, bibtex_field in _BIBTEX_FIELDS:
        value = record.get(variable)
        if not value:
            continue
        if bibtex_field == "journal" and entry_type != "article":
            bibtex_field = "booktitle"
        if bibtex_field not in _RAW_BIBTEX_FIELDS:
            value = escape_bibtex(str(value))
        lines.append(f"  {bibtex_field} = {{{value}}},")

    lines.append("}")
    return "\n".join(lines) + "\n"


class LibraryExporters:
    """Export services over a library store.

    Args:
        store: The library store providing CSL-JSON
        better_bibtex: Whether Better BibTeX citation keys are available
    """

    def __init__(self, store: LibraryStore, better_bibtex: bool = False):
        self.store = store
        self.better_bibtex = better_bibtex
        self._exporters: Dict[str, Callable[[List[Dict[str, Any]]], str]] = {
            CSL_JSON_EXPORTER: self._csl_json,
            BIBTEX_EXPORTER: self._bibtex,
            EASYKEY_EXPORTER: self._easykeys,
        }
        if better_bibtex:
            self._exporters[BBT_JSON_EXPORTER] = self._better_csl_json
            self._exporters[BBT_CITEKEY_EXPORTER] = self._citekeys
        logger.info(f"Registered {len(self._exporters)} exporters")

    def is_installed(self, exporter_id: str) -> bool:
        return exporter_id in self._exporters

    async def export(self, items: Sequence[ItemHandle], exporter_id: str) -> str:
        """Run one exporter over ``items``.

        Raises:
            UserInputError: If no exporter has that id
        """
        exporter = self._exporters.get(exporter_id)
        if exporter is None:
            raise UserInputError(f"Exporter {exporter_id} not installed.")
        records = await self.store.csl_items(items)
        logger.debug(f"Exporting {len(records)} items with {exporter_id}")
        return exporter(records)

    @staticmethod
    def _csl_json(records: List[Dict[str, Any]]) -> str:
        plain = [{k: v for k, v in record.items() if k != "citation-key"} for record in records]
        return json.dumps(plain, indent=2, ensure_ascii=False)

    @staticmethod
    def _better_csl_json(records: List[Dict[str, Any]]) -> str:
        return json.dumps(records, indent=2, ensure_ascii=False)

    @staticmethod
    def _bibtex(records: List[Dict[str, Any]]) -> str:
        return "\n".join(bibtex_entry(record) for record in records)

    @staticmethod
    def _easykeys(records: List[Dict[str, Any]]) -> str:
        return ", ".join(f"@{easykey_for(record)}" for record in records)

    @staticmethod
    def _citekeys(records: List[Dict[str, Any]]) -> str:
        return ", ".join(
            f"@{record.get('citation-key') or easykey_for(record)}" for record in records
        )
