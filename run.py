#!/usr/bin/env python3
"""
Zona Mix Launcher
Single entry point for the hub server.
"""
# Gevent must patch before any other imports that use socket/threading (so the API can handle multiple requests concurrently).
from gevent import monkey
monkey.patch_all()

import argparse
import logging
import sys

from shared.config import HubConfig


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Zona Mix - DJ Control Hub")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--data-dir", default=None, help="Directory for the database and local storage")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and reloader")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = HubConfig.from_env(args.env_file)
    if args.data_dir:
        config = config.relocated(args.data_dir)
    debug = args.debug or config.debug

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from shared import api
    api.configure(config)
    try:
        api.start_api(port=args.port or config.port, debug=debug)
    except KeyboardInterrupt:
        print("\nZona Mix stopped.")
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
