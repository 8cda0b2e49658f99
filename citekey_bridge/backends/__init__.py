"""Concrete collaborators backed by a local Zotero data directory."""

import logging

from ..bridge import BridgeServices
from ..config import BridgeConfig
from .citeproc_engine import CiteprocEngineFactory
from .desktop import ZoteroDesktop
from .exporters import LibraryExporters
from .zotero_sqlite import ZoteroLibrary

logger = logging.getLogger(__name__)


def open_services(config: BridgeConfig) -> BridgeServices:
    """Open the Zotero database and build every collaborator.

    Raises:
        FileNotFoundError: If no Zotero database can be found
    """
    data_dir = config.resolved_data_dir()
    if data_dir is None or not (data_dir / "zotero.sqlite").exists():
        raise FileNotFoundError(
            f"zotero.sqlite not found in {data_dir or 'any default location'}; "
            "set ZOTERO_DATA_DIR or --data-dir"
        )

    library = ZoteroLibrary(data_dir / "zotero.sqlite", user_library_id=config.user_library_id)
    better_bibtex = library.has_better_bibtex()
    if better_bibtex:
        logger.info("Better BibTeX citation keys available")

    return BridgeServices(
        store=library,
        exporters=LibraryExporters(library, better_bibtex=better_bibtex),
        engines=CiteprocEngineFactory(library, config.resolved_styles_dir()),
        ui=ZoteroDesktop(library),
        close=library.close,
    )


__all__ = [
    "CiteprocEngineFactory",
    "LibraryExporters",
    "ZoteroDesktop",
    "ZoteroLibrary",
    "open_services",
]
