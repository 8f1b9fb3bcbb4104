"""Process-wide logging setup."""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_FORMAT,
    )
    # httpx logs full request URLs, which carry the API key as a query parameter.
    logging.getLogger("httpx").setLevel(logging.WARNING)
