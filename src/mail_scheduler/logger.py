# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the mail scheduler.

Modules obtain their logger with ``get_logger`` or
``logging.getLogger(__name__)``. Handlers and format are configured once by
the entry points (``server``, ``cli``) through ``configure_logging``.

Example:
    Typical usage in a module::

        from mail_scheduler.logger import get_logger

        logger = get_logger("worker")
        logger.info("Dispatch loop started")
"""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


def get_logger(name: str = "MailScheduler") -> logging.Logger:
    """Return the standard library logger with the given name.

    Args:
        name: The logger name. Defaults to "MailScheduler".
    """
    return logging.getLogger(name)


def configure_logging(level: str | int | None = None) -> None:
    """Configure the root logger for an entry point.

    Args:
        level: Level name or number; defaults to ``MSD_LOG_LEVEL`` or INFO.
            Unknown names fall back to INFO.
    """
    if level is None:
        level = os.environ.get("MSD_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
