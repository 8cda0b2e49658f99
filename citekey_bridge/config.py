"""Configuration loading for the citekey bridge.

Values are layered, later sources winning:

1. ``BridgeConfig`` defaults
2. an optional YAML file (``$extends`` pulls in a parent file)
3. environment variables
4. command line flags (applied by ``server.py``)
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


ENV_OVERRIDES = {
    "CITEKEY_BRIDGE_HOST": "host",
    "CITEKEY_BRIDGE_PORT": "port",
    "CITEKEY_BRIDGE_PREFIX": "route_prefix",
    "CITEKEY_BRIDGE_STYLE": "default_style",
    "CITEKEY_BRIDGE_LOCALE": "default_locale",
    "ZOTERO_DATA_DIR": "data_dir",
    "ZOTERO_STYLES_DIR": "styles_dir",
}


@dataclass
class BridgeConfig:
    """Settings of one bridge process.

    Attributes:
        host: Interface the HTTP server binds to
        port: HTTP port
        route_prefix: Extra mount point for every route (``/zotxt``)
        data_dir: Zotero data directory holding ``zotero.sqlite``
        styles_dir: Directory of installed ``.csl`` styles
        default_style: Style used when a request names none
        default_locale: Locale used when a request names none
        user_library_id: Library searched for easy keys
    """
    host: str = "127.0.0.1"
    port: int = 23120
    route_prefix: str = "/zotxt"
    data_dir: Optional[str] = None
    styles_dir: Optional[str] = None
    default_style: str = "chicago-note-bibliography"
    default_locale: str = "en-US"
    user_library_id: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        values = {}
        for name, value in data.items():
            if name not in known or value is None:
                continue
            if name in ("port", "user_library_id"):
                value = int(value)
            values[name] = value
        return cls(**values)

    def resolved_data_dir(self) -> Optional[Path]:
        """The configured data directory, or an auto-detected one."""
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return find_zotero_data_dir()

    def resolved_styles_dir(self) -> Optional[Path]:
        if self.styles_dir:
            return Path(self.styles_dir).expanduser()
        data_dir = self.resolved_data_dir()
        return data_dir / "styles" if data_dir else None


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Merge semantics:
    - Objects (dicts): Recursively merge
    - Scalars and lists: Override replaces
    - None in override: Clears the key from result
    """
    result = base.copy()

    for key, value in override.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load a YAML config file, resolving ``$extends`` chains.

    A relative ``$extends`` path is taken relative to the extending file.

    Raises:
        FileNotFoundError: If the file or one of its parents is missing
    """
    path = Path(config_path)
    with open(path, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    if "$extends" in config_data:
        parent_path = path.parent / config_data.pop("$extends")
        if not parent_path.exists():
            raise FileNotFoundError(f"Parent config not found: {parent_path}")
        config_data = deep_merge(load_config_file(str(parent_path)), config_data)

    config_data.pop("$comment", None)
    return config_data


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Config values set through environment variables."""
    environ = os.environ if environ is None else environ
    return {
        name: environ[var]
        for var, name in ENV_OVERRIDES.items()
        if environ.get(var)
    }


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> BridgeConfig:
    """Load the bridge configuration.

    Args:
        config_path: Optional YAML file
        environ: Environment to read (defaults to ``os.environ``)
        **overrides: Final values, e.g. from command line flags

    Returns:
        The merged configuration
    """
    data: Dict[str, Any] = {}
    if config_path:
        logger.info(f"Loading configuration from: {config_path}")
        data = load_config_file(config_path)
    data = deep_merge(data, env_overrides(environ))
    data = deep_merge(data, {k: v for k, v in overrides.items() if v is not None})
    return BridgeConfig.from_dict(data)


def find_zotero_data_dir() -> Optional[Path]:
    """Auto-detect the Zotero data directory.

    Checks ``~/Zotero``, the snap location, the legacy ``~/.zotero``
    location and macOS profiles, returning the first one containing
    ``zotero.sqlite``.
    """
    home = Path.home()
    candidates = [
        home / "Zotero",
        home / "snap" / "zotero-snap" / "common" / "Zotero",
        home / ".zotero" / "zotero",
    ]

    profiles_dir = home / "Library" / "Application Support" / "Zotero" / "Profiles"
    if profiles_dir.exists():
        for profile in profiles_dir.iterdir():
            if profile.is_dir():
                candidates.append(profile)

    for candidate in candidates:
        if (candidate / "zotero.sqlite").exists():
            return candidate

    return None
