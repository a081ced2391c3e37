"""Command-line entry point that runs the tag catalog service.

WHY: The service is a long-running process started by an operator or a
process supervisor, which needs flags for the common knobs and a
meaningful exit code.

HOW: Uses argparse with defaults from config, configures logging once,
then hands control to LifecycleController.run() and exits with its code.

RULES:
- Flag defaults come from config (and therefore from .env / environment)
- Log output goes to stderr in the "asctime name level message" format
- Exit code 0 only after a graceful shutdown
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from exiftool_catalog import __version__
from exiftool_catalog.config import (
    CANCEL_SCOPE,
    CANCEL_SCOPES,
    HOST,
    LOG_LEVEL,
    PORT,
    SHUTDOWN_TIMEOUT_SECONDS,
    load_cancel_scope,
)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable: tests can inspect the parser without starting a server.
    """
    parser = argparse.ArgumentParser(
        prog="exiftool_catalog",
        description="Serve the exiftool tag catalog (exiftool -listx) as streamed JSON.",
    )

    parser.add_argument(
        "--host",
        default=HOST,
        help="Interface to listen on (default: %(default)s).",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=PORT,
        help="Port to listen on (default: %(default)s).",
    )

    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: %(default)s).",
    )

    parser.add_argument(
        "--cancel-scope",
        default=CANCEL_SCOPE,
        choices=list(CANCEL_SCOPES),
        type=load_cancel_scope,
        help="'request' isolates extractor cancellation per request, "
             "'shared' lets one failing request cancel all (default: %(default)s).",
    )

    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=SHUTDOWN_TIMEOUT_SECONDS,
        help="Seconds to wait for a graceful shutdown before forcing it (default: %(default)s).",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s {}".format(__version__),
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m exiftool_catalog`` and ``exiftool-catalog``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    from exiftool_catalog.server.lifecycle import LifecycleController

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    controller = LifecycleController(
        host=args.host,
        port=args.port,
        shutdown_timeout=args.shutdown_timeout,
        cancel_scope=args.cancel_scope,
    )
    sys.exit(controller.run())


if __name__ == "__main__":
    main()
