"""Key resolution.

Turns easy keys, library keys and Better BibTeX citekeys into item
handles through the library store, classifying every lookup as found,
not found or ambiguous. A lookup matching several items is never
narrowed to its first result.
"""

import asyncio
import logging
import re
from typing import List, Optional, Sequence, Tuple

from .collaborators import LibraryStore
from .easykey import parse_easykey, parse_easykey_prefix
from .models import (
    ItemHandle,
    KeyPrefix,
    KeyScheme,
    ResolutionOutcome,
    SearchCondition,
    SearchQuery,
    StructuredKey,
)

logger = logging.getLogger(__name__)


_LIBRARY_KEY_RE = re.compile(r"^(\d+)_([A-Za-z0-9]+)$")


def split_keys(value: str) -> List[str]:
    """Split a comma separated key parameter, dropping blank entries."""
    return [key.strip() for key in value.split(",") if key.strip()]


def parse_library_key(value: str) -> Tuple[Optional[int], str]:
    """Split ``1_ABCD1234`` into (1, "ABCD1234"); a bare key has no library."""
    match = _LIBRARY_KEY_RE.match(value)
    if match:
        return int(match.group(1)), match.group(2)
    return None, value


def build_easykey_query(key: StructuredKey, library_id: Optional[int] = None) -> SearchQuery:
    """Build the store query matching creators, year and short title."""
    conditions = [SearchCondition("creator", "contains", creator) for creator in key.creators]
    conditions.append(SearchCondition("year", "is", key.year))
    if key.title:
        conditions.append(SearchCondition("title", "contains", key.title))
    return SearchQuery(conditions=tuple(conditions), library_id=library_id)


def build_prefix_query(prefix: KeyPrefix, library_id: Optional[int] = None) -> SearchQuery:
    """Build the store query for an incomplete easy key."""
    conditions = [SearchCondition("creator", "contains", creator) for creator in prefix.creators]
    if prefix.year:
        conditions.append(SearchCondition("year", "beginsWith", prefix.year))
    if prefix.title:
        conditions.append(SearchCondition("title", "contains", prefix.title))
    return SearchQuery(conditions=tuple(conditions), library_id=library_id)


class KeyResolver:
    """Resolves keys of every scheme against a library store.

    Args:
        store: The library store
        library_id: Library searched for easy keys (None = the store's default)
    """

    def __init__(self, store: LibraryStore, library_id: Optional[int] = None):
        self.store = store
        self.library_id = library_id

    async def resolve(self, key: str, scheme: KeyScheme) -> ResolutionOutcome:
        """Resolve one key and classify the result.

        Raises:
            EasyKeyParseError: If an easy key is malformed
        """
        scheme = KeyScheme(scheme)
        if scheme == KeyScheme.EASYKEY:
            structured = parse_easykey(key)
            items = await self.store.run_search(build_easykey_query(structured, self.library_id))
        elif scheme == KeyScheme.KEY:
            library_id, item_key = parse_library_key(key)
            items = await self.store.find_by_key(item_key, library_id)
        else:
            items = await self.store.find_by_citekey(key)

        outcome = ResolutionOutcome.classify(key, scheme, items)
        if not outcome.found:
            logger.debug(f"{scheme.value} {key!r} resolved to {outcome.count} items")
        return outcome

    async def resolve_one(self, key: str, scheme: KeyScheme) -> ItemHandle:
        """Resolve one key to exactly one item.

        Raises:
            NotFoundError: If nothing matches
            AmbiguousError: If more than one item matches
        """
        outcome = await self.resolve(key, scheme)
        return outcome.unwrap()[0]

    async def resolve_many(self, keys: Sequence[str], scheme: KeyScheme) -> List[ItemHandle]:
        """Resolve a batch of keys concurrently.

        The result follows the input order. The first failing key in input
        order decides the error; nothing is returned on partial success.
        """
        results = await asyncio.gather(
            *(self.resolve_one(key, scheme) for key in keys),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def complete(self, text: str) -> List[ItemHandle]:
        """Find every item an incomplete easy key could refer to."""
        prefix = parse_easykey_prefix(text)
        return await self.store.run_search(build_prefix_query(prefix, self.library_id))
