"""Logging helpers for resilient_fetch.

`LOG_LEVEL` sets the root level; `verbose` turns on DEBUG for this package
only, so state transitions show without the HTTP client's request chatter.
"""
import logging
import os

PACKAGE_LOGGER = "resilient_fetch"


def setup_logging(verbose: bool = False) -> logging.Logger:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(logging.DEBUG if verbose else logging.NOTSET)
    return package


__all__ = ["PACKAGE_LOGGER", "setup_logging"]
