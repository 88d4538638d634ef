"""Logging configuration for baton."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

# Log directory; file logging stays off unless BATON_LOG_DIR or log_file is set
LOG_DIR = os.getenv("BATON_LOG_DIR", "")

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

# Marks handlers installed here so repeated setup replaces instead of stacking them
_HANDLER_FLAG = "_baton_handler"


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the ``baton`` logger with console and optional file handlers.

    Args:
        verbose: DEBUG level when true, INFO otherwise
        log_file: Explicit log file path (defaults to ``$BATON_LOG_DIR/baton.log``)

    Returns:
        The configured ``baton`` logger
    """
    logger = logging.getLogger("baton")
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False  # Prevent duplicate logs

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    setattr(sh, _HANDLER_FLAG, True)
    logger.addHandler(sh)

    filename = log_file or (str(Path(LOG_DIR) / "baton.log") if LOG_DIR else None)
    if filename:
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(filename, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        setattr(fh, _HANDLER_FLAG, True)
        logger.addHandler(fh)

    return logger
