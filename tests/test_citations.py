"""Tests for citation group resolution."""

import pytest

from conftest import DOE_ARTICLE, DOE_BOOK, HUNING
from citekey_bridge.citations import CitationGroupProcessor, extract_ids
from citekey_bridge.exceptions import AmbiguousError, NotFoundError
from citekey_bridge.models import CitationGroup
from citekey_bridge.resolver import KeyResolver


@pytest.fixture
def processor(store):
    return CitationGroupProcessor(KeyResolver(store, library_id=1))


class TestResolveItem:
    """Tests for resolving one citation item."""

    @pytest.mark.asyncio
    async def test_easykey_replaced_by_id(self, processor):
        item = await processor.resolve_item({"easyKey": "DoeBook2005", "locator": "12"})
        assert item == {"id": DOE_BOOK, "locator": "12"}

    @pytest.mark.asyncio
    async def test_library_key(self, processor):
        item = await processor.resolve_item({"key": "1_DOEART01", "prefix": "see "})
        assert item == {"id": DOE_ARTICLE, "prefix": "see "}

    @pytest.mark.asyncio
    async def test_citekey(self, processor):
        item = await processor.resolve_item({"citekey": "huning2012wortbildung"})
        assert item == {"id": HUNING}

    @pytest.mark.asyncio
    async def test_easykey_takes_precedence(self, processor):
        item = await processor.resolve_item({"easyKey": "doe:2005first", "key": "1_DOEART01"})
        assert item == {"id": DOE_BOOK}

    @pytest.mark.asyncio
    async def test_item_without_key_is_unchanged(self, processor):
        citation = {"locator": "3"}
        assert await processor.resolve_item(citation) is citation


class TestResolveGroups:
    """Tests for resolving whole groups."""

    @pytest.mark.asyncio
    async def test_structure_and_properties_preserved(self, processor):
        groups = [
            CitationGroup(
                citation_items=[{"easyKey": "doe:2005first"}, {"easyKey": "doe:2006article"}],
                properties={"noteIndex": 1},
            ),
            CitationGroup(citation_items=[{"key": "1_HUNING01"}], properties={"noteIndex": 2}),
        ]
        resolved = await processor.resolve(groups)
        assert [g.properties for g in resolved] == [{"noteIndex": 1}, {"noteIndex": 2}]
        assert [[i["id"] for i in g.citation_items] for g in resolved] == [
            [DOE_BOOK, DOE_ARTICLE],
            [HUNING],
        ]

    @pytest.mark.asyncio
    async def test_first_failure_in_group_order(self, processor):
        groups = [
            CitationGroup(citation_items=[{"easyKey": "doe:2005first"}]),
            CitationGroup(citation_items=[{"easyKey": "doe:1999missing"}, {"easyKey": "smith:2010twin"}]),
            CitationGroup(citation_items=[{"easyKey": "smith:2010twin"}]),
        ]
        with pytest.raises(NotFoundError) as exc_info:
            await processor.resolve(groups)
        assert exc_info.value.message == "doe:1999missing had no results"

    @pytest.mark.asyncio
    async def test_ambiguous_citation(self, processor):
        groups = [CitationGroup(citation_items=[{"easyKey": "smith:2010twin"}])]
        with pytest.raises(AmbiguousError):
            await processor.resolve(groups)

    @pytest.mark.asyncio
    async def test_empty_groups(self, processor):
        assert await processor.resolve([]) == []


class TestExtractIds:
    """Tests for collecting the working set."""

    def test_ordered_without_repeats(self):
        groups = [
            CitationGroup(citation_items=[{"id": DOE_BOOK}, {"id": HUNING}]),
            CitationGroup(citation_items=[{"id": DOE_BOOK, "locator": "4"}, {"locator": "9"}]),
        ]
        assert extract_ids(groups) == [DOE_BOOK, HUNING]
