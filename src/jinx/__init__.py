"""Jinx: a sequential image generation queue for the Stable Diffusion web UI."""

import logging

from jinx.core.queue import Job, Queue
from jinx.web import app as web_app
from jinx.web import run as start_api
from jinx.web.constants import LOG_LEVEL


def main() -> None:
    """
    Main entry point for the jinx CLI.

    Parses command-line arguments, configures logging and starts the web server.
    """
    import argparse  # noqa: PLC0415

    parser = argparse.ArgumentParser(
        "jinx",
        description="Jinx: queued Stable Diffusion image generation",
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to run the web server on (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the web server on (default: 2025 or PORT env var)",
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for the web server",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO or JINX_LOG_LEVEL env var)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    return start_api(
        port=args.port,
        host=args.host,
        reload=args.reload,
    )


__all__ = ["Job", "Queue", "main", "web_app"]
