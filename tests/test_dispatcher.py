"""Tests for selector dispatch."""

import pytest

from conftest import DOE_ARTICLE, DOE_BOOK, GROUP_POE, HUNING, NESTED, ROE_DOE
from citekey_bridge.dispatcher import SelectorDispatcher, choose_selector
from citekey_bridge.exceptions import AmbiguousError, NotFoundError, UserInputError
from citekey_bridge.resolver import KeyResolver


@pytest.fixture
def dispatcher(store, desktop):
    return SelectorDispatcher(store, KeyResolver(store, library_id=1), desktop)


class TestChooseSelector:
    """Tests for selector precedence."""

    def test_key_beats_everything(self):
        params = {"key": "1_A", "easykey": "doe:2005", "collection": "x", "all": "", "q": "doe"}
        assert choose_selector(params) == "key"

    def test_easykey_beats_citekey(self):
        assert choose_selector({"easykey": "doe:2005", "citekey": "doe2005"}) == "easykey"

    def test_betterbibtexkey_before_citekey(self):
        assert choose_selector({"citekey": "a", "betterbibtexkey": "b"}) == "betterbibtexkey"

    def test_collection_beats_selected(self):
        assert choose_selector({"selected": "1", "collection": "Reading"}) == "collection"

    def test_selected_beats_all(self):
        assert choose_selector({"all": "1", "selected": "1"}) == "selected"

    def test_all_beats_query(self):
        assert choose_selector({"q": "doe", "all": "1"}) == "all"

    def test_blank_values_are_absent(self):
        assert choose_selector({"key": "", "easykey": "  ", "collection": "Reading"}) == "collection"

    def test_blank_query_still_selected(self):
        assert choose_selector({"q": ""}) == "q"

    def test_nothing_present(self):
        assert choose_selector({"format": "key"}) is None

    def test_custom_precedence(self):
        params = {"key": "1_DOEBOOK1", "easykey": "doe:2005first", "collection": "Reading"}
        assert choose_selector(params, ("easykey", "key")) == "easykey"
        assert choose_selector({"collection": "Reading"}, ("easykey", "key")) is None


class TestDispatch:
    """Tests for resolving each selector to items."""

    @pytest.mark.asyncio
    async def test_no_selector(self, dispatcher):
        with pytest.raises(UserInputError) as exc_info:
            await dispatcher.dispatch({"format": "json"})
        assert exc_info.value.message == "No param supplied!"

    @pytest.mark.asyncio
    async def test_easykey_list(self, dispatcher):
        items = await dispatcher.dispatch({"easykey": "doe:2006article,doe:2005first"})
        assert items == [DOE_ARTICLE, DOE_BOOK]

    @pytest.mark.asyncio
    async def test_key_list_across_libraries(self, dispatcher):
        items = await dispatcher.dispatch({"key": "2_POEGRP01,1_DOEBOOK1"})
        assert items == [GROUP_POE, DOE_BOOK]

    @pytest.mark.asyncio
    async def test_citekey_alias(self, dispatcher):
        assert await dispatcher.dispatch({"citekey": "roedoe2015hyphens"}) == [ROE_DOE]
        assert await dispatcher.dispatch({"betterbibtexkey": "roedoe2015hyphens"}) == [ROE_DOE]

    @pytest.mark.asyncio
    async def test_ambiguous_key_fails_whole_request(self, dispatcher):
        with pytest.raises(AmbiguousError):
            await dispatcher.dispatch({"easykey": "doe:2005first,smith:2010twin"})

    @pytest.mark.asyncio
    async def test_selected(self, dispatcher):
        assert await dispatcher.dispatch({"selected": "selected"}) == [DOE_ARTICLE]

    @pytest.mark.asyncio
    async def test_all_is_user_library_only(self, dispatcher):
        items = await dispatcher.dispatch({"all": "all"})
        assert GROUP_POE not in items
        assert DOE_BOOK in items

    @pytest.mark.asyncio
    async def test_query(self, dispatcher, store):
        items = await dispatcher.dispatch({"q": "doe 2006"})
        assert items == [DOE_ARTICLE]
        assert store.text_searches == [("doe 2006", "titleCreatorYear")]

    @pytest.mark.asyncio
    async def test_blank_query(self, dispatcher):
        with pytest.raises(UserInputError) as exc_info:
            await dispatcher.dispatch({"q": "   "})
        assert exc_info.value.message == "q param required."


class TestSearch:
    """Tests for free-text search methods."""

    @pytest.mark.asyncio
    async def test_method_passed_through(self, dispatcher, store):
        await dispatcher.search("doe", "everything")
        assert store.text_searches == [("doe", "everything")]

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        with pytest.raises(UserInputError) as exc_info:
            await dispatcher.search("doe", "fuzzy")
        assert exc_info.value.message == "Unknown search method fuzzy."

    @pytest.mark.asyncio
    async def test_missing_query(self, dispatcher):
        with pytest.raises(UserInputError):
            await dispatcher.search(None)


class TestCollections:
    """Tests for collection lookup by name."""

    @pytest.mark.asyncio
    async def test_top_level_collection(self, dispatcher):
        assert await dispatcher.dispatch({"collection": "Reading"}) == [DOE_BOOK]

    @pytest.mark.asyncio
    async def test_nested_collection(self, dispatcher):
        assert await dispatcher.find_collection("Nested") == NESTED
        assert await dispatcher.collection_items("Nested") == [DOE_ARTICLE, HUNING]

    @pytest.mark.asyncio
    async def test_group_library_collection(self, dispatcher):
        assert await dispatcher.collection_items("Group Shelf") == [GROUP_POE]

    @pytest.mark.asyncio
    async def test_missing_collection(self, dispatcher):
        with pytest.raises(NotFoundError) as exc_info:
            await dispatcher.dispatch({"collection": "missing collection"})
        assert exc_info.value.message == "collection missing collection not found"
