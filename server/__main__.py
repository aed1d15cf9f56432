"""Run the API server."""

import argparse
import logging
import os

import uvicorn

from phpfpm.cli import setup_logging

from .config import config


def serve(host: str, port: int):
    logging.getLogger("server").info(f"Starting Lightweight PHP API on http://{host}:{port}")
    uvicorn.run(
        "server.app:app",
        host=host,
        port=port,
        log_level="warning",
        timeout_graceful_shutdown=3,
    )


def main():
    parser = argparse.ArgumentParser(description="Lightweight PHP API server")
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging for phpfpm and server modules",
    )
    parser.add_argument("--host", default=config.host)
    parser.add_argument("--port", type=int, default=config.port)
    args = parser.parse_args()

    debug = args.debug or os.environ.get("DEBUG", "").lower() in ("1", "true", "yes")
    setup_logging(debug=debug)
    if debug:
        logging.getLogger("server").info("Debug logging enabled")

    serve(args.host, args.port)


if __name__ == "__main__":
    main()
