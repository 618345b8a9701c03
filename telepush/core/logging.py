from __future__ import annotations

import logging


def setup_logging(level: str | int = logging.INFO, fmt: str | None = None) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        level=level,
        format=fmt or "%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # httpx logs every request at INFO, which drowns the push loop.
    logging.getLogger("httpx").setLevel(logging.WARNING)
