"""
Marketing Spaces - Main Entry Point

Serves the HTTP API for building and running module graphs.
"""

import argparse
import logging
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for Marketing Spaces.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    if sys.version_info < (3, 11):
        print("Error: Marketing Spaces requires Python 3.11 or later")
        return 1

    parser = argparse.ArgumentParser(prog="marketing-spaces")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--host", help="Interface to bind")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument("--storage-dir", type=Path, help="Directory for saved spaces")
    args = parser.parse_args(argv)

    # Import here to keep --help fast
    from aiohttp import web

    from marketing_spaces.api import create_app
    from marketing_spaces.config import load_config

    config = load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.storage_dir:
        config.storage_dir = args.storage_dir

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info("Storing spaces in %s", config.storage_dir)

    web.run_app(create_app(config), host=config.host, port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
