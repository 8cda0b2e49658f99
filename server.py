"""Citekey Bridge Entry Point.

Serve the citekey HTTP API for a local Zotero library.

Logging is controlled via environment variables:
- LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR

Examples:
    # Serve the auto-detected Zotero library on 127.0.0.1:23120
    python server.py

    # Use a config file and an explicit data directory
    python server.py --config config/bridge.yaml --data-dir ~/Zotero

    # Debug logging on another port
    LOG_LEVEL=DEBUG python server.py --port 23121
"""
import argparse
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from citekey_bridge.api.app import create_app
from citekey_bridge.backends import open_services
from citekey_bridge.config import load_config

load_dotenv()


def setup_logging():
    """Configure logging from LOG_LEVEL environment variable.

    Reads LOG_LEVEL env var (default: INFO). Valid values: DEBUG, INFO, WARNING, ERROR.
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    noisy_libraries = [
        "httpx",
        "httpcore",
        "asyncio",
    ]
    for lib in noisy_libraries:
        logging.getLogger(lib).setLevel(logging.WARNING)

    # uvicorn can be INFO level
    logging.getLogger("uvicorn").setLevel(logging.INFO)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Serve citation keys from a Zotero library",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config", "-c",
        help="YAML config file (optional)",
    )
    parser.add_argument(
        "--host",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port for the API server (default: 23120)",
    )
    parser.add_argument(
        "--data-dir",
        help="Zotero data directory holding zotero.sqlite (default: auto-detect)",
    )
    parser.add_argument(
        "--styles-dir",
        help="Directory of installed CSL styles (default: <data-dir>/styles)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging()

    logger = logging.getLogger(__name__)

    config = load_config(
        args.config,
        host=args.host,
        port=args.port,
        data_dir=args.data_dir,
        styles_dir=args.styles_dir,
    )

    try:
        services = open_services(config)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Starting citekey bridge on {config.host}:{config.port}")
    app = create_app(services, config)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
