"""
Citekey Bridge
==============
A local HTTP API that resolves citation keys against a Zotero library and
returns item data, exports, citation clusters and bibliographies.

Usage:
    from citekey_bridge import load_config
    from citekey_bridge.api.app import create_app
    from citekey_bridge.backends import open_services

    config = load_config("config/bridge.yaml")
    app = create_app(open_services(config), config)

Environment Variables:
    ZOTERO_DATA_DIR: Zotero data directory (auto-detected when unset)
    ZOTERO_STYLES_DIR: Directory of installed CSL styles
    CITEKEY_BRIDGE_PORT: HTTP port (default: 23120)
    LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR
"""

__version__ = "0.1.0"

from .config import BridgeConfig, load_config
from .easykey import parse_easykey, parse_easykey_prefix
from .exceptions import (
    AmbiguousError,
    BridgeError,
    EasyKeyParseError,
    NotFoundError,
    StyleNotInstalledError,
    UnexpectedError,
    UserInputError,
)
from .models import (
    CitationGroup,
    ItemHandle,
    KeyScheme,
    ResolutionOutcome,
    ResponseTriple,
    StructuredKey,
)

__all__ = [
    # Configuration
    "BridgeConfig",
    "load_config",
    # Parsing
    "parse_easykey",
    "parse_easykey_prefix",
    # Models
    "CitationGroup",
    "ItemHandle",
    "KeyScheme",
    "ResolutionOutcome",
    "ResponseTriple",
    "StructuredKey",
    # Errors
    "BridgeError",
    "UserInputError",
    "EasyKeyParseError",
    "NotFoundError",
    "StyleNotInstalledError",
    "AmbiguousError",
    "UnexpectedError",
]
