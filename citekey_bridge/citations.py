"""Citation group resolution for bibliography requests."""

import asyncio
import logging
from typing import Any, Dict, List, Sequence

from .models import CitationGroup, ItemHandle, KeyScheme
from .resolver import KeyResolver

logger = logging.getLogger(__name__)


# Request fields naming the item, in order of preference.
KEY_FIELDS = (
    ("easyKey", KeyScheme.EASYKEY),
    ("key", KeyScheme.KEY),
    ("citekey", KeyScheme.CITEKEY),
)
KEY_FIELD_NAMES = frozenset(name for name, _ in KEY_FIELDS)


def extract_ids(groups: Sequence[CitationGroup]) -> List[ItemHandle]:
    """Resolved item handles of all groups, in order, without repeats."""
    ids: List[ItemHandle] = []
    for group in groups:
        for item in group.citation_items:
            handle = item.get("id")
            if isinstance(handle, ItemHandle) and handle not in ids:
                ids.append(handle)
    return ids


class CitationGroupProcessor:
    """Replaces the keys inside citation groups with resolved items."""

    def __init__(self, resolver: KeyResolver):
        self.resolver = resolver

    async def resolve_item(self, citation: Dict[str, Any]) -> Dict[str, Any]:
        """Resolve one citation item.

        The caller's properties (locator, prefix, suffix, ...) are kept;
        the key fields are dropped and ``id`` holds the resolved handle.
        Items without a key field are returned unchanged.
        """
        for field_name, scheme in KEY_FIELDS:
            if field_name in citation:
                handle = await self.resolver.resolve_one(citation[field_name], scheme)
                merged = {k: v for k, v in citation.items() if k not in KEY_FIELD_NAMES}
                merged["id"] = handle
                return merged
        return citation

    async def resolve(self, groups: Sequence[CitationGroup]) -> List[CitationGroup]:
        """Resolve every item of every group concurrently.

        Group order, item order and group properties are preserved. The
        first failure in (group, item) order is raised.
        """
        flat = [item for group in groups for item in group.citation_items]
        results = await asyncio.gather(
            *(self.resolve_item(item) for item in flat),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        resolved: List[CitationGroup] = []
        position = 0
        for group in groups:
            count = len(group.citation_items)
            resolved.append(CitationGroup(
                citation_items=list(results[position:position + count]),
                properties=group.properties,
            ))
            position += count
        logger.debug(f"Resolved {len(flat)} citation items in {len(groups)} groups")
        return resolved
