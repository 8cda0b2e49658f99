"""Desktop integration through ``zotero://`` URIs."""

import asyncio
import logging
import webbrowser
from typing import List

from ..collaborators import LibraryStore
from ..exceptions import UnexpectedError, UserInputError
from ..models import ItemHandle

logger = logging.getLogger(__name__)


SELECTION_UNAVAILABLE_MESSAGE = "Selection is not available outside the Zotero client."


class ZoteroDesktop:
    """Reveals items in a running Zotero by opening ``zotero://select`` URIs.

    The Zotero window's selection is not visible from outside the client,
    so asking for it is refused.
    """

    def __init__(self, store: LibraryStore):
        self.store = store

    async def get_selection(self) -> List[ItemHandle]:
        """
        Raises:
            UserInputError: Always; the selection cannot be read from here
        """
        raise UserInputError(SELECTION_UNAVAILABLE_MESSAGE)

    async def reveal(self, item: ItemHandle) -> None:
        """Hand the item's select URI to the platform URI handler.

        Raises:
            UnexpectedError: If no handler accepted the URI
        """
        uri = await self.store.item_uri(item)
        opened = await asyncio.to_thread(webbrowser.open, uri)
        if not opened:
            raise UnexpectedError(f"Could not open {uri}")
        logger.debug(f"Opened {uri}")
