"""Configuration constants and .env loading.

WHY: Centralizes the values an operator may want to change (extractor
location, listening address, shutdown timeout, cancellation scoping) so
they are easy to find and override without touching the pipeline code.

HOW: python-dotenv loads the .env file on import. Constants are defined
at module level from environment variables with sensible defaults.
Helpers turn the raw strings into the shapes the rest of the package uses.

RULES:
- Every default matches the behavior of a plain ``exiftool -listx`` setup
- All defaults can be overridden via environment variables
- Invalid values raise ValueError at the point of use, not silently
"""

from __future__ import annotations

import os
import shlex
from typing import List

from dotenv import load_dotenv

# Load .env from the project root (where the service is started from)
load_dotenv()

# ---------------------------------------------------------------------------
# Extractor invocation
# ---------------------------------------------------------------------------

EXIFTOOL_PATH = os.getenv("EXIFTOOL_PATH", "exiftool")
EXIFTOOL_ARGS = os.getenv("EXIFTOOL_ARGS", "-listx")

READ_CHUNK_SIZE = int(os.getenv("READ_CHUNK_SIZE", "65536"))
"""Maximum number of bytes read from the extractor's stdout per step."""

# ---------------------------------------------------------------------------
# HTTP listener
# ---------------------------------------------------------------------------

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
TAGS_ROUTE = os.getenv("TAGS_ROUTE", "/tags")

# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

SHUTDOWN_TIMEOUT_SECONDS = float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))

CANCEL_SCOPE_REQUEST = "request"
CANCEL_SCOPE_SHARED = "shared"
CANCEL_SCOPES = (CANCEL_SCOPE_REQUEST, CANCEL_SCOPE_SHARED)

CANCEL_SCOPE = os.getenv("CANCEL_SCOPE", CANCEL_SCOPE_REQUEST)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def extractor_command() -> List[str]:
    """Return the full argv used to start the extractor.

    RULES:
    - EXIFTOOL_ARGS is split with shell quoting rules
    - The binary comes first, arguments follow in order
    """
    return [EXIFTOOL_PATH] + shlex.split(EXIFTOOL_ARGS)


def load_cancel_scope(value: str = CANCEL_SCOPE) -> str:
    """Validate a cancellation scope name.

    WHY: A typo in CANCEL_SCOPE would otherwise fall back to one of the
    modes without anyone noticing, and the two modes differ in how far a
    single failing request reaches.

    RULES:
    - "request": each request gets its own scope under the root context
    - "shared": every request uses the root context directly
    - Anything else raises ValueError
    """
    scope = value.strip().lower()
    if scope not in CANCEL_SCOPES:
        raise ValueError(
            "Unknown cancel scope '{}'. Expected one of: {}".format(
                value, ", ".join(CANCEL_SCOPES)
            )
        )
    return scope
