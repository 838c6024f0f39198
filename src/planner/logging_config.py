"""
Logging configuration for the planner services.

``setup_logging`` attaches a console handler, and optionally a file
handler, to the root logger.  It is safe to call repeatedly: once the
root logger has handlers, later calls are ignored, which matters when
``create_app`` runs several times inside one test session.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# PUBLIC_INTERFACE
def setup_logging(level: str = "INFO", logfile: Optional[str] = None) -> None:
    """Configure the root logger with the given level and optional log file."""
    logger = logging.getLogger()
    if logger.handlers:
        return

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if logfile:
        log_path = Path(logfile).resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
