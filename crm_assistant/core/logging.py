"""
Structured logging for the assistant service.

All loggers hang off the ``crm_assistant`` root so a single stdout handler
serves the whole package; names outside the package (``__main__`` in a
script) get a handler of their own.
"""
from __future__ import annotations

import logging
import sys

from crm_assistant.core.config import get_settings

_ROOT = "crm_assistant"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _attach_handler(logger: logging.Logger) -> None:
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)

    if name == _ROOT or name.startswith(_ROOT + "."):
        root = logging.getLogger(_ROOT)
        _attach_handler(root)
        root.setLevel(level)
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    _attach_handler(logger)
    logger.setLevel(level)
    return logger
