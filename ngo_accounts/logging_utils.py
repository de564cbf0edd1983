"""Logging helpers for the NGO account manager.

Modules call ``get_logger(__name__)``; the root handler is installed the first
time a logger is requested so reruns of the Streamlit script do not stack
duplicate handlers. A later ``configure_root_logger`` call only changes the
level.
"""

from __future__ import annotations

import logging

_LOGGER_INITIALISED = False


def configure_root_logger(level: int | str = logging.INFO) -> None:
    global _LOGGER_INITIALISED
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if _LOGGER_INITIALISED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.addHandler(handler)
    _LOGGER_INITIALISED = True


def get_logger(name: str | None = None) -> logging.Logger:
    if not _LOGGER_INITIALISED:
        configure_root_logger()
    return logging.getLogger(name)
