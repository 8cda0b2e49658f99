"""Read-only Zotero library store backed by ``zotero.sqlite``.

Queries run on a worker thread through ``asyncio.to_thread``; one
connection is shared and guarded by a lock. Matching of search conditions
happens in Python on folded text so that comparisons ignore case and
diacritics.
"""

import asyncio
import logging
import re
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..models import Collection, ItemHandle, SearchCondition, SearchMethod, SearchQuery, fold_diacritics

logger = logging.getLogger(__name__)


YEAR_REGEX = re.compile(r"\b(\d{4})\b")
_SQL_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_TAG_RE = re.compile(r"<[^>]+>")

_NOT_DELETED = "i.itemID NOT IN (SELECT itemID FROM deletedItems)"
_REGULAR_TYPES = "it.typeName NOT IN ('attachment', 'note', 'annotation')"

ZOTERO_TO_CSL_TYPE = {
    "artwork": "graphic",
    "audioRecording": "song",
    "bill": "bill",
    "blogPost": "post-weblog",
    "book": "book",
    "bookSection": "chapter",
    "case": "legal_case",
    "computerProgram": "software",
    "conferencePaper": "paper-conference",
    "dictionaryEntry": "entry-dictionary",
    "document": "article",
    "email": "personal_communication",
    "encyclopediaArticle": "entry-encyclopedia",
    "film": "motion_picture",
    "forumPost": "post",
    "hearing": "bill",
    "instantMessage": "personal_communication",
    "interview": "interview",
    "journalArticle": "article-journal",
    "letter": "personal_communication",
    "magazineArticle": "article-magazine",
    "manuscript": "manuscript",
    "map": "map",
    "newspaperArticle": "article-newspaper",
    "patent": "patent",
    "podcast": "song",
    "preprint": "article",
    "presentation": "speech",
    "radioBroadcast": "broadcast",
    "report": "report",
    "statute": "legislation",
    "thesis": "thesis",
    "tvBroadcast": "broadcast",
    "videoRecording": "motion_picture",
    "webpage": "webpage",
}

# Zotero field name -> CSL variables it fills.
ZOTERO_TO_CSL_FIELDS = {
    "title": ("title",),
    "shortTitle": ("title-short",),
    "publicationTitle": ("container-title",),
    "bookTitle": ("container-title",),
    "proceedingsTitle": ("container-title",),
    "websiteTitle": ("container-title",),
    "encyclopediaTitle": ("container-title",),
    "dictionaryTitle": ("container-title",),
    "blogTitle": ("container-title",),
    "journalAbbreviation": ("container-title-short",),
    "series": ("collection-title",),
    "seriesNumber": ("collection-number",),
    "publisher": ("publisher",),
    "university": ("publisher",),
    "institution": ("publisher",),
    "label": ("publisher",),
    "place": ("publisher-place", "event-place"),
    "conferenceName": ("event",),
    "volume": ("volume",),
    "numberOfVolumes": ("number-of-volumes",),
    "issue": ("issue",),
    "pages": ("page",),
    "numPages": ("number-of-pages",),
    "edition": ("edition",),
    "section": ("section",),
    "number": ("number",),
    "reportNumber": ("number",),
    "thesisType": ("genre",),
    "reportType": ("genre",),
    "websiteType": ("genre",),
    "abstractNote": ("abstract",),
    "language": ("language",),
    "DOI": ("DOI",),
    "ISBN": ("ISBN",),
    "ISSN": ("ISSN",),
    "url": ("URL",),
    "archive": ("archive",),
    "archiveLocation": ("archive_location",),
    "callNumber": ("call-number",),
    "rights": ("rights",),
    "extra": ("note",),
}

ZOTERO_TO_CSL_CREATORS = {
    "author": "author",
    "editor": "editor",
    "bookAuthor": "container-author",
    "seriesEditor": "collection-editor",
    "translator": "translator",
    "reviewedAuthor": "reviewed-author",
    "director": "director",
    "interviewer": "interviewer",
    "recipient": "recipient",
    "composer": "composer",
}


def extract_citation_key_from_extra(extra: str) -> Optional[str]:
    """Citation key stored in Zotero's extra field, if any."""
    for line in extra.splitlines():
        line = line.strip()
        if line.startswith("Citation Key:"):
            return line[len("Citation Key:"):].strip()
        if line.startswith("bibtex:"):
            return line[len("bibtex:"):].strip()
    return None


def extract_year(date: Optional[str]) -> Optional[str]:
    """Year of a Zotero date (``2005-03-00 March 2005``) or free text."""
    if not date:
        return None
    match = _SQL_DATE_RE.match(date)
    if match:
        if match.group(1) != "0000":
            return match.group(1)
        date = date[match.end():]
    match = YEAR_REGEX.search(date)
    return match.group(1) if match else None


def csl_date(date: str) -> Dict[str, Any]:
    """CSL date object for a Zotero date."""
    match = _SQL_DATE_RE.match(date)
    if match and match.group(1) != "0000":
        parts = [int(part) for part in match.groups()]
        while parts and parts[-1] == 0:
            parts.pop()
        return {"date-parts": [parts]}
    year = extract_year(date)
    if year:
        return {"date-parts": [[int(year)]]}
    return {"literal": date}


@dataclass
class ItemRecord:
    """One Zotero item with its field values and creators."""
    item_id: int
    library_id: int
    key: str
    item_type: str
    fields: Dict[str, str] = field(default_factory=dict)
    creators: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    fulltext: List[str] = field(default_factory=list)

    @property
    def handle(self) -> ItemHandle:
        return ItemHandle(self.library_id, self.key)

    @property
    def year(self) -> Optional[str]:
        return extract_year(self.fields.get("date"))

    def creator_names(self) -> List[str]:
        names = []
        for creator in self.creators:
            names.append(creator["last_name"])
            if creator["first_name"]:
                names.append(creator["first_name"])
                names.append(f"{creator['first_name']} {creator['last_name']}")
        return names

    def haystack(self, method: str) -> List[str]:
        """Texts a free-text token may match, by search method."""
        if method == SearchMethod.TITLE_CREATOR_YEAR.value:
            texts = [self.fields.get("title", ""), self.year or ""]
        else:
            texts = list(self.fields.values()) + self.tags
        texts.extend(self.creator_names())
        if method == SearchMethod.EVERYTHING.value:
            texts.extend(self.notes)
            texts.extend(self.fulltext)
        return [fold_diacritics(text) for text in texts if text]


def condition_matches(record: ItemRecord, condition: SearchCondition) -> bool:
    """Evaluate one search condition against an item.

    Raises:
        ValueError: For a field/operator pair the store does not support
    """
    value = fold_diacritics(condition.value)
    if condition.field == "creator" and condition.operator == "contains":
        return any(value in fold_diacritics(name) for name in record.creator_names())
    if condition.field == "title" and condition.operator == "contains":
        return value in fold_diacritics(record.fields.get("title", ""))
    if condition.field == "year":
        year = record.year or ""
        if condition.operator == "is":
            return year == condition.value
        if condition.operator == "beginsWith":
            return year.startswith(condition.value)
    raise ValueError(f"Unsupported search condition: {condition.field} {condition.operator}")


class ZoteroLibrary:
    """Library store reading a local Zotero database.

    Args:
        db_path: Path to ``zotero.sqlite``
        user_library_id: Library id of the personal library
    """

    def __init__(self, db_path: Path, user_library_id: int = 1):
        self.db_path = Path(db_path)
        self.data_dir = self.db_path.parent
        self.user_library_id = user_library_id
        self._lock = threading.Lock()
        self.conn = self._open_connection()
        logger.info(f"Opened Zotero database {self.db_path}")

    def _open_connection(self) -> sqlite3.Connection:
        """Open a read-only connection usable from worker threads."""
        uri = f"file:{self.db_path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA query_only = ON")
        return conn

    @property
    def better_bibtex_path(self) -> Path:
        return self.data_dir / "better-bibtex.sqlite"

    def has_better_bibtex(self) -> bool:
        return self.better_bibtex_path.exists()

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._locked, func, *args)

    def _locked(self, func: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return func(*args)

    async def close(self) -> None:
        await self._run(self.conn.close)
        logger.info("Closed Zotero database")

    # -------------------------------------------------------------------
    # LibraryStore
    # -------------------------------------------------------------------

    async def run_search(self, query: SearchQuery) -> List[ItemHandle]:
        return await self._run(self._run_search, query)

    async def text_search(self, text: str, method: str) -> List[ItemHandle]:
        return await self._run(self._text_search, text, method)

    async def find_by_key(self, key: str, library_id: Optional[int] = None) -> List[ItemHandle]:
        return await self._run(self._find_by_key, key, library_id)

    async def find_by_citekey(self, citekey: str) -> List[ItemHandle]:
        return await self._run(self._find_by_citekey, citekey)

    async def libraries(self) -> List[int]:
        return await self._run(self._libraries)

    async def collections(self, library_id: int, parent_key: Optional[str] = None) -> List[Collection]:
        return await self._run(self._collections, library_id, parent_key)

    async def collection_items(self, collection: Collection) -> List[ItemHandle]:
        return await self._run(self._collection_items, collection)

    async def all_items(self) -> List[ItemHandle]:
        return await self._run(self._all_items)

    async def csl_items(self, items: Sequence[ItemHandle]) -> List[Dict[str, Any]]:
        return await self._run(self._csl_items, list(items))

    async def attachment_paths(self, item: ItemHandle) -> List[str]:
        return await self._run(self._attachment_paths, item)

    async def item_uri(self, item: ItemHandle) -> str:
        return await self._run(self._item_uri, item)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def _item_rows(self, where: str = "", params: Sequence[Any] = (), types: str = _REGULAR_TYPES) -> List[sqlite3.Row]:
        sql = f"""
            SELECT i.itemID, i.libraryID, i.key, it.typeName
            FROM items i
            JOIN itemTypes it ON i.itemTypeID = it.itemTypeID
            WHERE {types}
              AND {_NOT_DELETED}
              {where}
            ORDER BY i.itemID
        """
        return self.conn.execute(sql, list(params)).fetchall()

    def _run_search(self, query: SearchQuery) -> List[ItemHandle]:
        library_id = query.library_id if query.library_id is not None else self.user_library_id
        where = "AND i.libraryID = ?"
        params: List[Any] = [library_id]
        year = next((c.value for c in query.conditions if c.field == "year"), None)
        if year:
            # Zotero stores dates as "YYYY-MM-DD original"; narrow by year prefix first.
            where += """
              AND i.itemID IN (
                SELECT id.itemID FROM itemData id
                JOIN fields f ON id.fieldID = f.fieldID
                JOIN itemDataValues idv ON id.valueID = idv.valueID
                WHERE f.fieldName = 'date' AND idv.value LIKE ?
              )"""
            params.append(f"{year}%")

        records = self._load_records(self._item_rows(where, params))
        matches = [
            record.handle for record in records
            if all(condition_matches(record, condition) for condition in query.conditions)
        ]
        logger.debug(f"Search with {len(query.conditions)} conditions matched {len(matches)} items")
        return matches

    def _text_search(self, text: str, method: str) -> List[ItemHandle]:
        tokens = [fold_diacritics(token) for token in text.split()]
        if not tokens:
            return []
        types = _REGULAR_TYPES
        if method == SearchMethod.EVERYTHING.value:
            types = "it.typeName NOT IN ('attachment', 'annotation')"
        where = "AND i.libraryID = ?"
        if method == SearchMethod.EVERYTHING.value:
            where += " AND i.itemID NOT IN (SELECT itemID FROM itemNotes WHERE parentItemID IS NOT NULL)"
        rows = self._item_rows(where, [self.user_library_id], types=types)
        records = self._load_records(rows, extended=method != SearchMethod.TITLE_CREATOR_YEAR.value)
        if method == SearchMethod.EVERYTHING.value:
            self._load_notes_and_fulltext(records)

        matches = []
        for record in records:
            haystack = record.haystack(method)
            if all(any(token in candidate for candidate in haystack) for token in tokens):
                matches.append(record.handle)
        return matches

    def _find_by_key(self, key: str, library_id: Optional[int]) -> List[ItemHandle]:
        where = "AND i.key = ?"
        params: List[Any] = [key]
        if library_id is not None:
            where += " AND i.libraryID = ?"
            params.append(library_id)
        rows = self._item_rows(where, params, types="1 = 1")
        return [ItemHandle(row["libraryID"], row["key"]) for row in rows]

    def _find_by_citekey(self, citekey: str) -> List[ItemHandle]:
        item_ids = set()

        rows = self.conn.execute(
            """
            SELECT id.itemID, f.fieldName, idv.value
            FROM itemData id
            JOIN fields f ON id.fieldID = f.fieldID
            JOIN itemDataValues idv ON id.valueID = idv.valueID
            WHERE (f.fieldName = 'citationKey' AND idv.value = ?)
               OR (f.fieldName = 'extra' AND idv.value LIKE ?)
            """,
            [citekey, f"%{citekey}%"],
        ).fetchall()
        for row in rows:
            if row["fieldName"] == "citationKey" or extract_citation_key_from_extra(row["value"]) == citekey:
                item_ids.add(row["itemID"])

        if self.has_better_bibtex():
            with closing(sqlite3.connect(f"file:{self.better_bibtex_path}?mode=ro", uri=True)) as bbt:
                for (item_id,) in bbt.execute(
                    "SELECT itemID FROM citationkey WHERE citationKey = ?", [citekey]
                ):
                    item_ids.add(item_id)

        if not item_ids:
            return []
        ids = sorted(item_ids)
        rows = self._item_rows(f"AND i.itemID IN ({_placeholders(ids)})", ids)
        return [ItemHandle(row["libraryID"], row["key"]) for row in rows]

    def _libraries(self) -> List[int]:
        rows = self.conn.execute("SELECT libraryID FROM libraries").fetchall()
        ids = [row["libraryID"] for row in rows]
        return sorted(ids, key=lambda library_id: (library_id != self.user_library_id, library_id))

    def _collections(self, library_id: int, parent_key: Optional[str]) -> List[Collection]:
        sql = """
            SELECT c.key, c.collectionName, pc.key AS parentKey
            FROM collections c
            LEFT JOIN collections pc ON c.parentCollectionID = pc.collectionID
            WHERE c.libraryID = ?
        """
        params: List[Any] = [library_id]
        if parent_key is None:
            sql += " AND c.parentCollectionID IS NULL"
        else:
            sql += " AND pc.key = ?"
            params.append(parent_key)
        sql += " ORDER BY c.collectionName"
        return [
            Collection(library_id, row["key"], row["collectionName"], row["parentKey"])
            for row in self.conn.execute(sql, params).fetchall()
        ]

    def _collection_items(self, collection: Collection) -> List[ItemHandle]:
        rows = self.conn.execute(
            f"""
            SELECT i.libraryID, i.key
            FROM items i
            JOIN itemTypes it ON i.itemTypeID = it.itemTypeID
            JOIN collectionItems ci ON i.itemID = ci.itemID
            JOIN collections c ON ci.collectionID = c.collectionID
            WHERE c.key = ? AND c.libraryID = ?
              AND {_REGULAR_TYPES}
              AND {_NOT_DELETED}
            ORDER BY ci.orderIndex, i.itemID
            """,
            [collection.key, collection.library_id],
        ).fetchall()
        return [ItemHandle(row["libraryID"], row["key"]) for row in rows]

    def _all_items(self) -> List[ItemHandle]:
        rows = self._item_rows("AND i.libraryID = ?", [self.user_library_id])
        return [ItemHandle(row["libraryID"], row["key"]) for row in rows]

    def _attachment_paths(self, item: ItemHandle) -> List[str]:
        rows = self.conn.execute(
            f"""
            SELECT ia.path, i.key
            FROM itemAttachments ia
            JOIN items i ON ia.itemID = i.itemID
            JOIN items parent ON ia.parentItemID = parent.itemID
            WHERE parent.libraryID = ? AND parent.key = ?
              AND ia.path IS NOT NULL
              AND {_NOT_DELETED}
            ORDER BY i.itemID
            """,
            [item.library_id, item.key],
        ).fetchall()
        paths = []
        for row in rows:
            resolved = self._resolve_path(row["path"], row["key"])
            if resolved:
                paths.append(str(resolved))
        return paths

    def _resolve_path(self, path: str, attachment_key: str) -> Optional[Path]:
        """Resolve ``storage:filename`` and linked file paths."""
        if path.startswith("storage:"):
            return self.data_dir / "storage" / attachment_key / path[len("storage:"):]
        if path.startswith("attachments:"):
            # Relative to the linked attachment base directory, a client preference.
            logger.debug(f"Skipping base-relative attachment path {path}")
            return None
        return Path(path)

    def _item_uri(self, item: ItemHandle) -> str:
        if item.library_id == self.user_library_id:
            return f"zotero://select/library/items/{item.key}"
        row = self.conn.execute(
            "SELECT groupID FROM groups WHERE libraryID = ?", [item.library_id]
        ).fetchone()
        if row is None:
            return f"zotero://select/library/items/{item.key}"
        return f"zotero://select/groups/{row['groupID']}/items/{item.key}"

    # -------------------------------------------------------------------
    # Records and CSL-JSON
    # -------------------------------------------------------------------

    def _load_records(self, rows: Iterable[sqlite3.Row], extended: bool = False) -> List[ItemRecord]:
        """Build item records from item rows, fetching data in batches."""
        records = [
            ItemRecord(row["itemID"], row["libraryID"], row["key"], row["typeName"])
            for row in rows
        ]
        if not records:
            return records
        by_id: Dict[int, List[ItemRecord]] = {}
        for record in records:
            by_id.setdefault(record.item_id, []).append(record)
        ids = list(by_id)
        ph = _placeholders(ids)

        for row in self.conn.execute(
            f"""
            SELECT id.itemID, f.fieldName, idv.value
            FROM itemData id
            JOIN fields f ON id.fieldID = f.fieldID
            JOIN itemDataValues idv ON id.valueID = idv.valueID
            WHERE id.itemID IN ({ph})
            """,
            ids,
        ):
            for record in by_id[row["itemID"]]:
                record.fields[row["fieldName"]] = str(row["value"])

        for row in self.conn.execute(
            f"""
            SELECT ic.itemID, c.firstName, c.lastName, c.fieldMode, ct.creatorType
            FROM itemCreators ic
            JOIN creators c ON ic.creatorID = c.creatorID
            JOIN creatorTypes ct ON ic.creatorTypeID = ct.creatorTypeID
            WHERE ic.itemID IN ({ph})
            ORDER BY ic.itemID, ic.orderIndex
            """,
            ids,
        ):
            for record in by_id[row["itemID"]]:
                record.creators.append({
                    "first_name": row["firstName"] or "",
                    "last_name": row["lastName"] or "",
                    "field_mode": row["fieldMode"] or 0,
                    "creator_type": row["creatorType"],
                })

        if extended:
            for row in self.conn.execute(
                f"""
                SELECT it.itemID, t.name
                FROM itemTags it
                JOIN tags t ON it.tagID = t.tagID
                WHERE it.itemID IN ({ph})
                """,
                ids,
            ):
                for record in by_id[row["itemID"]]:
                    record.tags.append(row["name"])

        return records

    def _load_notes_and_fulltext(self, records: List[ItemRecord]) -> None:
        ids = [record.item_id for record in records]
        if not ids:
            return
        ph = _placeholders(ids)
        by_id = {record.item_id: record for record in records}

        for row in self.conn.execute(
            f"""
            SELECT n.itemID, n.parentItemID, n.note
            FROM itemNotes n
            WHERE n.itemID IN ({ph}) OR n.parentItemID IN ({ph})
            """,
            ids + ids,
        ):
            owner = row["parentItemID"] if row["parentItemID"] in by_id else row["itemID"]
            if owner in by_id and row["note"]:
                by_id[owner].notes.append(_TAG_RE.sub(" ", row["note"]))

        for row in self.conn.execute(
            f"""
            SELECT ia.parentItemID, fw.word
            FROM fulltextItemWords fiw
            JOIN fulltextWords fw ON fiw.wordID = fw.wordID
            JOIN itemAttachments ia ON fiw.itemID = ia.itemID
            WHERE ia.parentItemID IN ({ph})
            """,
            ids,
        ):
            by_id[row["parentItemID"]].fulltext.append(row["word"])

    def _citation_keys(self, records: List[ItemRecord]) -> Dict[int, str]:
        """Citation keys from the item data and the Better BibTeX database."""
        result: Dict[int, str] = {}
        for record in records:
            key = record.fields.get("citationKey")
            if not key and record.fields.get("extra"):
                key = extract_citation_key_from_extra(record.fields["extra"])
            if key:
                result[record.item_id] = key

        missing = [record.item_id for record in records if record.item_id not in result]
        if missing and self.has_better_bibtex():
            with closing(sqlite3.connect(f"file:{self.better_bibtex_path}?mode=ro", uri=True)) as bbt:
                for item_id, citation_key in bbt.execute(
                    f"SELECT itemID, citationKey FROM citationkey WHERE itemID IN ({_placeholders(missing)})",
                    missing,
                ):
                    result[item_id] = citation_key
        return result

    def _csl_items(self, items: List[ItemHandle]) -> List[Dict[str, Any]]:
        if not items:
            return []
        wanted = list(dict.fromkeys(items))
        params: List[Any] = []
        for item in wanted:
            params.extend((item.library_id, item.key))
        pairs = ",".join("(?, ?)" for _ in wanted)
        rows = self._item_rows(f"AND (i.libraryID, i.key) IN (VALUES {pairs})", params, types="1 = 1")
        records = {record.handle: record for record in self._load_records(rows)}
        for item in wanted:
            if item not in records:
                raise LookupError(f"Item {item.library_key} is not in the library")
        citation_keys = self._citation_keys(list(records.values()))
        return [
            to_csl_json(records[item], citation_keys.get(records[item].item_id))
            for item in items
        ]


def to_csl_json(record: ItemRecord, citation_key: Optional[str] = None) -> Dict[str, Any]:
    """CSL-JSON for one item, with the library key as its id."""
    csl: Dict[str, Any] = {
        "id": record.handle.library_key,
        "type": ZOTERO_TO_CSL_TYPE.get(record.item_type, "article"),
    }
    if citation_key:
        csl["citation-key"] = citation_key

    for name, value in record.fields.items():
        if not value:
            continue
        if name == "date":
            csl["issued"] = csl_date(value)
        elif name == "accessDate":
            csl["accessed"] = csl_date(value)
        else:
            for variable in ZOTERO_TO_CSL_FIELDS.get(name, ()):
                csl.setdefault(variable, value)

    for creator in record.creators:
        variable = ZOTERO_TO_CSL_CREATORS.get(creator["creator_type"])
        if variable is None:
            continue
        if creator["field_mode"] == 1:
            name = {"literal": creator["last_name"]}
        else:
            name = {"family": creator["last_name"]}
            if creator["first_name"]:
                name["given"] = creator["first_name"]
        csl.setdefault(variable, []).append(name)

    return csl


def _placeholders(ids: Sequence[Any]) -> str:
    return ",".join("?" for _ in ids)
