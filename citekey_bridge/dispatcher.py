"""Selector dispatch for item requests.

A request names its items with exactly one selector. When several are
present the first in ``SELECTOR_PRECEDENCE`` wins:

    key > easykey > betterbibtexkey/citekey > collection > selected > all > q
"""

import logging
from typing import List, Mapping, Optional, Sequence

from .collaborators import DesktopUI, LibraryStore
from .exceptions import NotFoundError, UserInputError
from .models import Collection, ItemHandle, KeyScheme, SearchMethod
from .resolver import KeyResolver, split_keys

logger = logging.getLogger(__name__)


SELECTOR_PRECEDENCE = (
    "key",
    "easykey",
    "betterbibtexkey",
    "citekey",
    "collection",
    "selected",
    "all",
    "q",
)

_KEY_SCHEMES = {
    "key": KeyScheme.KEY,
    "easykey": KeyScheme.EASYKEY,
    "betterbibtexkey": KeyScheme.CITEKEY,
    "citekey": KeyScheme.CITEKEY,
}

NO_PARAM_MESSAGE = "No param supplied!"
QUERY_REQUIRED_MESSAGE = "q param required."


def choose_selector(
    params: Mapping[str, Optional[str]], precedence: Sequence[str] = SELECTOR_PRECEDENCE
) -> Optional[str]:
    """Return the name of the first selector in ``precedence`` present in ``params``.

    Empty values count as absent, except ``q``: a blank query is still
    chosen so the caller can report it.
    """
    for name in precedence:
        value = params.get(name)
        if value is None:
            continue
        if name == "q" or value.strip():
            return name
    return None


class SelectorDispatcher:
    """Maps request parameters to an ordered list of items.

    Args:
        store: Library store for collections, all-items and text search
        resolver: Key resolver for the key selectors
        ui: Desktop UI providing the current selection
    """

    def __init__(self, store: LibraryStore, resolver: KeyResolver, ui: DesktopUI):
        self.store = store
        self.resolver = resolver
        self.ui = ui

    async def dispatch(self, params: Mapping[str, Optional[str]]) -> List[ItemHandle]:
        """Resolve the single selector present in ``params``.

        Raises:
            UserInputError: If no selector is present or the query is blank
            NotFoundError: If a key or collection matches nothing
            AmbiguousError: If a key matches several items
        """
        selector = choose_selector(params)
        if selector is None:
            raise UserInputError(NO_PARAM_MESSAGE)

        logger.debug(f"Dispatching item request on selector {selector!r}")
        value = params[selector]

        if selector in _KEY_SCHEMES:
            return await self.resolver.resolve_many(split_keys(value), _KEY_SCHEMES[selector])
        if selector == "collection":
            return await self.collection_items(value)
        if selector == "selected":
            return list(await self.ui.get_selection())
        if selector == "all":
            return list(await self.store.all_items())
        return await self.search(value, params.get("method"))

    async def search(self, query: Optional[str], method: Optional[str] = None) -> List[ItemHandle]:
        """Run a free-text search.

        Raises:
            UserInputError: If the query is missing or blank, or the method
                is unknown
        """
        if not query or not query.strip():
            raise UserInputError(QUERY_REQUIRED_MESSAGE)
        try:
            search_method = SearchMethod(method) if method else SearchMethod.TITLE_CREATOR_YEAR
        except ValueError:
            raise UserInputError(f"Unknown search method {method}.")
        return list(await self.store.text_search(query.strip(), search_method.value))

    async def find_collection(self, name: str) -> Optional[Collection]:
        """Find a collection by exact name, depth first in every library."""
        for library_id in await self.store.libraries():
            found = await self._find_in(name, library_id, None)
            if found:
                return found
        return None

    async def _find_in(
        self, name: str, library_id: int, parent_key: Optional[str]
    ) -> Optional[Collection]:
        for collection in await self.store.collections(library_id, parent_key):
            if collection.name == name:
                return collection
            found = await self._find_in(name, library_id, collection.key)
            if found:
                return found
        return None

    async def collection_items(self, name: str) -> List[ItemHandle]:
        """Items of the collection called ``name``.

        Raises:
            NotFoundError: If no collection has that name
        """
        collection = await self.find_collection(name)
        if collection is None:
            raise NotFoundError(name, f"collection {name} not found")
        return list(await self.store.collection_items(collection))
