"""Shared fixtures: in-memory collaborators and a small sample library."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from citekey_bridge.bridge import BridgeServices, CitekeyBridge
from citekey_bridge.collaborators import (
    BBT_CITEKEY_EXPORTER,
    BBT_JSON_EXPORTER,
    BIBTEX_EXPORTER,
    CSL_JSON_EXPORTER,
    EASYKEY_EXPORTER,
)
from citekey_bridge.config import BridgeConfig
from citekey_bridge.models import (
    CitationGroup,
    Collection,
    ItemHandle,
    SearchQuery,
    fold_diacritics,
)


DOE_BOOK = ItemHandle(1, "DOEBOOK1")
DOE_ARTICLE = ItemHandle(1, "DOEART01")
SMITH_A = ItemHandle(1, "SMITHA01")
SMITH_B = ItemHandle(1, "SMITHB01")
ROE_DOE = ItemHandle(1, "ROEDOE01")
HUNING = ItemHandle(1, "HUNING01")
GROUP_POE = ItemHandle(2, "POEGRP01")

SAMPLE_ITEMS: Dict[ItemHandle, Dict[str, Any]] = {
    DOE_BOOK: {
        "creators": [("Doe", "John")],
        "year": "2005",
        "title": "First Book",
        "type": "book",
        "citekey": "doe2005first",
        "easykey": "doe:2005first",
        "attachments": ["/zotero/storage/ATT00001/doe.pdf"],
    },
    DOE_ARTICLE: {
        "creators": [("Doe", "John")],
        "year": "2006",
        "title": "Article",
        "type": "article-journal",
        "citekey": "doe2006article",
        "easykey": "doe:2006article",
        "attachments": [],
    },
    SMITH_A: {
        "creators": [("Smith", "Ann")],
        "year": "2010",
        "title": "Twin Title",
        "type": "book",
        "citekey": "smith2010twin",
        "easykey": "smith:2010twin",
        "attachments": [],
    },
    SMITH_B: {
        "creators": [("Smith", "Bob")],
        "year": "2010",
        "title": "Twin Title Revisited",
        "type": "book",
        "citekey": "smith2010twina",
        "easykey": "smith:2010twin",
        "attachments": [],
    },
    ROE_DOE: {
        "creators": [("Roe-Doe", "Jane")],
        "year": "2015",
        "title": "Hyphens Everywhere",
        "type": "book",
        "citekey": "roedoe2015hyphens",
        "easykey": "roe-doe:2015hyphens",
        "attachments": [],
    },
    HUNING: {
        "creators": [("Hüning", "Matthias")],
        "year": "2012",
        "title": "Wortbildung im Niederländischen",
        "type": "chapter",
        "citekey": "huning2012wortbildung",
        "easykey": "hüning:2012wortbildung",
        "attachments": [],
    },
    GROUP_POE: {
        "creators": [("Poe", "Edgar")],
        "year": "1845",
        "title": "Raven",
        "type": "book",
        "citekey": "poe1845raven",
        "easykey": "poe:1845raven",
        "attachments": [],
    },
}

READING = Collection(1, "COLREAD1", "Reading")
NESTED = Collection(1, "COLNEST1", "Nested", parent_key="COLREAD1")
GROUP_SHELF = Collection(2, "COLGRP01", "Group Shelf")

SAMPLE_COLLECTIONS: Dict[Collection, List[ItemHandle]] = {
    READING: [DOE_BOOK],
    NESTED: [DOE_ARTICLE, HUNING],
    GROUP_SHELF: [GROUP_POE],
}


def csl_record(handle: ItemHandle, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": handle.library_key,
        "type": data["type"],
        "title": data["title"],
        "author": [{"family": family, "given": given} for family, given in data["creators"]],
        "issued": {"date-parts": [[int(data["year"])]]},
        "citation-key": data["citekey"],
    }


class FakeLibraryStore:
    """Library store over ``SAMPLE_ITEMS``; records every search it runs."""

    def __init__(self, items=None, collections=None, user_library_id: int = 1):
        self.items = dict(SAMPLE_ITEMS if items is None else items)
        self.collections_map = dict(SAMPLE_COLLECTIONS if collections is None else collections)
        self.user_library_id = user_library_id
        self.searches: List[SearchQuery] = []
        self.text_searches: List[Tuple[str, str]] = []
        self.csl_requests: List[List[ItemHandle]] = []

    def _matches(self, data: Dict[str, Any], field: str, operator: str, value: str) -> bool:
        value = fold_diacritics(value)
        if field == "creator":
            return any(value in fold_diacritics(family) for family, _ in data["creators"])
        if field == "title":
            return value in fold_diacritics(data["title"])
        if operator == "is":
            return data["year"] == value
        return data["year"].startswith(value)

    async def run_search(self, query: SearchQuery) -> List[ItemHandle]:
        self.searches.append(query)
        await asyncio.sleep(0)
        library_id = query.library_id if query.library_id is not None else self.user_library_id
        return [
            handle for handle, data in self.items.items()
            if handle.library_id == library_id
            and all(self._matches(data, c.field, c.operator, c.value) for c in query.conditions)
        ]

    async def text_search(self, text: str, method: str) -> List[ItemHandle]:
        self.text_searches.append((text, method))
        tokens = [fold_diacritics(token) for token in text.split()]
        results = []
        for handle, data in self.items.items():
            if handle.library_id != self.user_library_id:
                continue
            haystack = [fold_diacritics(data["title"]), data["year"]]
            haystack += [fold_diacritics(family) for family, _ in data["creators"]]
            if all(any(token in candidate for candidate in haystack) for token in tokens):
                results.append(handle)
        return results

    async def find_by_key(self, key: str, library_id: Optional[int] = None) -> List[ItemHandle]:
        await asyncio.sleep(0)
        return [
            handle for handle in self.items
            if handle.key == key and (library_id is None or handle.library_id == library_id)
        ]

    async def find_by_citekey(self, citekey: str) -> List[ItemHandle]:
        return [handle for handle, data in self.items.items() if data["citekey"] == citekey]

    async def libraries(self) -> List[int]:
        return sorted({c.library_id for c in self.collections_map} | {self.user_library_id})

    async def collections(self, library_id: int, parent_key: Optional[str] = None) -> List[Collection]:
        return [
            c for c in self.collections_map
            if c.library_id == library_id and c.parent_key == parent_key
        ]

    async def collection_items(self, collection: Collection) -> List[ItemHandle]:
        return list(self.collections_map[collection])

    async def all_items(self) -> List[ItemHandle]:
        return [handle for handle in self.items if handle.library_id == self.user_library_id]

    async def csl_items(self, items: Sequence[ItemHandle]) -> List[Dict[str, Any]]:
        self.csl_requests.append(list(items))
        return [csl_record(handle, self.items[handle]) for handle in items]

    async def attachment_paths(self, item: ItemHandle) -> List[str]:
        return list(self.items[item]["attachments"])

    async def item_uri(self, item: ItemHandle) -> str:
        return f"zotero://select/library/items/{item.key}"


class FakeExporters:
    """Exporters producing text in the shape of Zotero's translators."""

    def __init__(self, store: FakeLibraryStore, better_bibtex: bool = True):
        self.store = store
        self.installed = {CSL_JSON_EXPORTER, BIBTEX_EXPORTER, EASYKEY_EXPORTER}
        if better_bibtex:
            self.installed |= {BBT_JSON_EXPORTER, BBT_CITEKEY_EXPORTER}
        self.calls: List[Tuple[str, List[ItemHandle]]] = []

    def is_installed(self, exporter_id: str) -> bool:
        return exporter_id in self.installed

    async def export(self, items: Sequence[ItemHandle], exporter_id: str) -> str:
        self.calls.append((exporter_id, list(items)))
        data = [self.store.items[handle] for handle in items]
        if exporter_id == EASYKEY_EXPORTER:
            return ", ".join(f"@{d['easykey']}" for d in data)
        if exporter_id == BBT_CITEKEY_EXPORTER:
            return ", ".join(f"@{d['citekey']}" for d in data)
        if exporter_id == BIBTEX_EXPORTER:
            return "\n".join(f"@{d['type']}{{{d['citekey']},\n  title = {{{d['title']}}},\n}}\n" for d in data)
        records = [csl_record(handle, self.store.items[handle]) for handle in items]
        if exporter_id == CSL_JSON_EXPORTER:
            for record in records:
                record.pop("citation-key")
        return json.dumps(records, ensure_ascii=False)


class FakeStyleEngine:
    """Author-date engine rendering ``(Doe 2005)``; tracks overlapping use."""

    def __init__(self, style_url: str, locale: str, store: FakeLibraryStore, tracker: Dict[str, int]):
        self.style_url = style_url
        self.locale = locale
        self.store = store
        self.tracker = tracker
        self.working_set: List[ItemHandle] = []
        self.cited: List[ItemHandle] = []
        self.loads: List[List[ItemHandle]] = []
        self.cluster_updates: List[List[Tuple[int, str]]] = []
        self._clusters = 0

    async def _enter(self):
        self.tracker["active"] += 1
        self.tracker["max_active"] = max(self.tracker["max_active"], self.tracker["active"])
        await asyncio.sleep(0)
        self.tracker["active"] -= 1

    def _short(self, handle: ItemHandle) -> str:
        data = self.store.items[handle]
        return f"{data['creators'][0][0]} {data['year']}"

    def _entry(self, handle: ItemHandle) -> str:
        data = self.store.items[handle]
        family, given = data["creators"][0]
        return f"{family}, {given}. {data['year']}. {data['title']}."

    async def update_items(self, items: Sequence[ItemHandle]) -> None:
        await self._enter()
        self.working_set = list(items)
        self.loads.append(list(items))
        self.cited = []
        self._clusters = 0

    async def append_citation_cluster(self, group: CitationGroup) -> List[Tuple[int, str]]:
        await self._enter()
        handles = [item["id"] for item in group.citation_items if isinstance(item.get("id"), ItemHandle)]
        for handle in handles:
            if handle not in self.working_set:
                raise KeyError(f"{handle} not loaded")
            if handle not in self.cited:
                self.cited.append(handle)
        text = "(" + "; ".join(self._short(h) for h in handles) + ")"
        updates = self.cluster_updates[self._clusters] if self._clusters < len(self.cluster_updates) else None
        position = self._clusters
        self._clusters += 1
        return updates if updates is not None else [(position, text)]

    async def make_bibliography(self) -> Any:
        await self._enter()
        entries = [f'  <div class="csl-entry">{self._entry(h)}</div>\n' for h in self.cited]
        return [{"bibstart": '<div class="csl-bib-body">\n', "bibend": "</div>"}, entries]

    async def formatted_bibliography(self, output_format: str) -> str:
        await self._enter()
        if output_format == "text":
            return "".join(f"{self._entry(h)}\n" for h in self.working_set)
        return "".join(
            f'<div class="csl-entry">{self._entry(h)}</div>\n' for h in self.working_set
        )


class FakeEngineFactory:
    """Creates fake engines for a fixed set of installed style URLs."""

    def __init__(self, store: FakeLibraryStore, installed=None):
        self.store = store
        self.installed = set(installed or {
            "http://www.zotero.org/styles/chicago-author-date",
            "http://www.zotero.org/styles/chicago-note-bibliography",
            "https://example.org/styles/custom",
        })
        self.created: List[FakeStyleEngine] = []
        self.attempts: List[Tuple[str, str]] = []
        self.tracker = {"active": 0, "max_active": 0}

    async def create(self, style_url: str, locale: str) -> Optional[FakeStyleEngine]:
        self.attempts.append((style_url, locale))
        await asyncio.sleep(0)
        if style_url not in self.installed:
            return None
        engine = FakeStyleEngine(style_url, locale, self.store, self.tracker)
        self.created.append(engine)
        return engine

    async def styles(self) -> List[Dict[str, Any]]:
        return [{"styleID": url, "title": url.rsplit("/", 1)[-1], "categories": []} for url in sorted(self.installed)]

    async def locales(self) -> Dict[str, str]:
        return {"de-DE": "Deutsch (Deutschland)", "en-US": "English (US)"}


class FakeDesktop:
    def __init__(self, selection=None):
        self.selection = list(selection or [])
        self.revealed: List[ItemHandle] = []

    async def get_selection(self) -> List[ItemHandle]:
        return list(self.selection)

    async def reveal(self, item: ItemHandle) -> None:
        self.revealed.append(item)


@pytest.fixture
def store():
    return FakeLibraryStore()


@pytest.fixture
def exporters(store):
    return FakeExporters(store)


@pytest.fixture
def engines(store):
    return FakeEngineFactory(store)


@pytest.fixture
def desktop():
    return FakeDesktop(selection=[DOE_ARTICLE])


@pytest.fixture
def services(store, exporters, engines, desktop):
    return BridgeServices(store=store, exporters=exporters, engines=engines, ui=desktop)


@pytest.fixture
def config():
    return BridgeConfig(default_style="chicago-author-date", default_locale="en-US")


@pytest.fixture
def bridge(services, config):
    return CitekeyBridge(services, config)


@pytest.fixture
def client(services, config):
    """Test client over the fake collaborators; restores the app globals."""
    import citekey_bridge.api.app as app_module

    original_bridge = app_module._bridge
    original_config = app_module._config

    test_app = app_module.create_app(services, config)
    client = TestClient(test_app, raise_server_exceptions=False)

    yield client

    app_module._bridge = original_bridge
    app_module._config = original_config
