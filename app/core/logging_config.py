# -*- coding: utf-8 -*-
"""
Process logging configuration.

Routes logs by severity for correct container/platform classification:
- DEBUG, INFO, WARNING → STDOUT
- ERROR, CRITICAL → STDERR

Uses QueueHandler + QueueListener so the event loop never blocks on
stdout/stderr: only the listener thread can block on a slow stream.
"""

import atexit
import logging
import os
import queue
import sys
from logging.handlers import QueueHandler, QueueListener

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class MaxLevelFilter(logging.Filter):
    """
    Allows only records up to a specified level (inclusive).
    Keeps ERROR/CRITICAL out of stdout.
    """

    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


_log_listener: QueueListener | None = None


def _resolve_level() -> int:
    name = os.getenv("LOG_LEVEL", "INFO").upper().strip()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging():
    """
    Install the queue-based root handler. Must be called before any logger is used.

    Safe to call more than once: a running listener is stopped and replaced.
    """
    global _log_listener

    if _log_listener is not None:
        _stop_log_listener()

    level = _resolve_level()
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(MaxLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    log_queue = queue.Queue()
    root_logger.addHandler(QueueHandler(log_queue))

    # aiogram logs every handled update at INFO
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)

    _log_listener = QueueListener(
        log_queue,
        stdout_handler,
        stderr_handler,
        respect_handler_level=True,
    )
    _log_listener.start()
    atexit.register(_stop_log_listener)


def _stop_log_listener():
    """Stop the queue listener (called at exit)."""
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None
