"""Endpoint handlers.

One coroutine per HTTP endpoint. Each takes plain request data and
returns a ``ResponseTriple``; failures are converted by ``handle_errors``
so every path ends in a triple.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import ValidationError

from . import __version__
from .api.models import BibliographyRequest
from .citations import CitationGroupProcessor
from .collaborators import DesktopUI, ExporterRegistry, LibraryStore, StyleEngineFactory
from .config import BridgeConfig
from .dispatcher import NO_PARAM_MESSAGE, SelectorDispatcher, choose_selector
from .error_mapper import to_triple
from .exceptions import UserInputError
from .formatter import ResponseFormatter, json_response
from .models import CitationGroup, KeyScheme, ResponseTriple
from .resolver import KeyResolver
from .style_cache import StyleEngineCache

logger = logging.getLogger(__name__)


# /select checks easykey before key, unlike /items.
_SELECT_SCHEMES = {
    "easykey": KeyScheme.EASYKEY,
    "key": KeyScheme.KEY,
    "betterbibtexkey": KeyScheme.CITEKEY,
    "citekey": KeyScheme.CITEKEY,
}


@dataclass
class BridgeServices:
    """The collaborators a bridge works against.

    Attributes:
        store: Library store
        exporters: Export services
        engines: Style engine factory
        ui: Desktop user interface
        close: Optional coroutine releasing backend resources
    """
    store: LibraryStore
    exporters: ExporterRegistry
    engines: StyleEngineFactory
    ui: DesktopUI
    close: Optional[Callable[[], Awaitable[None]]] = None


def handle_errors(func: Callable[..., Awaitable[ResponseTriple]]) -> Callable[..., Awaitable[ResponseTriple]]:
    """Convert any exception raised by an endpoint into its response triple."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> ResponseTriple:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            return to_triple(e)

    return wrapper


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid bibliography request: {location}: {first.get('msg')}"


class CitekeyBridge:
    """Wires the resolution engine to the collaborators and serves requests.

    Args:
        services: The collaborators
        config: Bridge configuration (defaults when omitted)
    """

    def __init__(self, services: BridgeServices, config: Optional[BridgeConfig] = None):
        self.services = services
        self.config = config or BridgeConfig()
        self.resolver = KeyResolver(services.store, library_id=self.config.user_library_id)
        self.dispatcher = SelectorDispatcher(services.store, self.resolver, services.ui)
        self.citations = CitationGroupProcessor(self.resolver)
        self.styles = StyleEngineCache(
            services.engines,
            default_style=self.config.default_style,
            default_locale=self.config.default_locale,
        )
        self.formatter = ResponseFormatter(services.store, services.exporters, self.styles)

    @handle_errors
    async def items(self, params: Mapping[str, Optional[str]]) -> ResponseTriple:
        """GET /items: select items and format them."""
        items = await self.dispatcher.dispatch(params)
        return await self.formatter.format(
            items, params.get("format"), params.get("style"), params.get("locale")
        )

    @handle_errors
    async def search(self, params: Mapping[str, Optional[str]]) -> ResponseTriple:
        """GET /search: free-text search, formatted like /items."""
        items = await self.dispatcher.search(params.get("q"), params.get("method"))
        return await self.formatter.format(
            items, params.get("format"), params.get("style"), params.get("locale")
        )

    @handle_errors
    async def complete(self, params: Mapping[str, Optional[str]]) -> ResponseTriple:
        """GET /complete: easy keys of every item matching a typed prefix."""
        text = params.get("easykey")
        if not text:
            raise UserInputError("Option easykey is required.")
        items = await self.resolver.complete(text)
        return await self.formatter.format(items, "easykey")

    @handle_errors
    async def bibliography(self, body: Any) -> ResponseTriple:
        """POST /bibliography: citation clusters and bibliography for groups."""
        try:
            request = BibliographyRequest.model_validate(body)
        except ValidationError as e:
            raise UserInputError(_validation_message(e))

        groups = [
            CitationGroup(citation_items=group.citationItems, properties=group.properties)
            for group in request.citationGroups
        ]
        resolved = await self.citations.resolve(groups)
        result = await self.styles.assemble_bibliography(request.styleId, request.locale, resolved)
        return json_response(result)

    @handle_errors
    async def select(self, params: Mapping[str, Optional[str]]) -> ResponseTriple:
        """GET /select: reveal one item in the desktop UI."""
        selector = choose_selector(params, tuple(_SELECT_SCHEMES))
        if selector is None:
            raise UserInputError(NO_PARAM_MESSAGE)
        item = await self.resolver.resolve_one(params[selector].strip(), _SELECT_SCHEMES[selector])
        await self.services.ui.reveal(item)
        logger.info(f"Revealed {item.library_key} in the desktop UI")
        return json_response("success")

    @handle_errors
    async def version(self) -> ResponseTriple:
        return json_response({"version": __version__})

    @handle_errors
    async def locales(self) -> ResponseTriple:
        return json_response(await self.services.engines.locales())

    @handle_errors
    async def styles_list(self) -> ResponseTriple:
        return json_response(await self.services.engines.styles())

    async def close(self) -> None:
        if self.services.close is not None:
            await self.services.close()
