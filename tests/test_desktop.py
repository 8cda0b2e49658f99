"""Tests for the zotero:// desktop integration."""

from unittest.mock import MagicMock, patch

import pytest

from conftest import DOE_BOOK
from citekey_bridge.backends.desktop import SELECTION_UNAVAILABLE_MESSAGE, ZoteroDesktop
from citekey_bridge.bridge import BridgeServices, CitekeyBridge
from citekey_bridge.exceptions import UnexpectedError, UserInputError


@pytest.fixture
def desktop_ui(store):
    return ZoteroDesktop(store)


class TestZoteroDesktop:
    """Tests for selection and reveal."""

    @pytest.mark.asyncio
    async def test_selection_is_refused(self, desktop_ui):
        with pytest.raises(UserInputError) as exc_info:
            await desktop_ui.get_selection()
        assert exc_info.value.message == SELECTION_UNAVAILABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_reveal_opens_select_uri(self, desktop_ui):
        with patch("citekey_bridge.backends.desktop.webbrowser.open", MagicMock(return_value=True)) as opener:
            await desktop_ui.reveal(DOE_BOOK)
        opener.assert_called_once_with("zotero://select/library/items/DOEBOOK1")

    @pytest.mark.asyncio
    async def test_reveal_without_handler(self, desktop_ui):
        with patch("citekey_bridge.backends.desktop.webbrowser.open", MagicMock(return_value=False)):
            with pytest.raises(UnexpectedError):
                await desktop_ui.reveal(DOE_BOOK)

    @pytest.mark.asyncio
    async def test_selected_items_request_reports_unavailable(self, store, exporters, engines, config, desktop_ui):
        bridge = CitekeyBridge(
            BridgeServices(store=store, exporters=exporters, engines=engines, ui=desktop_ui),
            config,
        )
        triple = await bridge.items({"selected": "1", "format": "key"})
        assert triple.status == 400
        assert triple.body == SELECTION_UNAVAILABLE_MESSAGE
