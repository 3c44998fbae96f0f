"""Logging setup for the ``pamviz`` namespace."""
from __future__ import annotations

import logging
from typing import Optional

from rich.logging import RichHandler


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the ``pamviz`` logger.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to also write logs to.
    """
    logger = logging.getLogger("pamviz")
    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once (e.g. from tests).
    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = RichHandler(level=level, show_path=False, rich_tracebacks=False)
    console_handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")
        )
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
