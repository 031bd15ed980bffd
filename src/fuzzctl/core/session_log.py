"""Per-session log files: lifecycle events of one session in its own directory.

All sessions share the ``fuzzctl.session`` logger. Records carry the
session id, and each session's file handler only accepts its own records.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

LOGGER_NAME = "fuzzctl.session"

log = logging.getLogger(__name__)


class SessionFilter(logging.Filter):
    """Pass only records logged for one session."""

    def __init__(self, session_id: str) -> None:
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "session_id", None) == self.session_id


def get_session_logger(session_id: str) -> logging.LoggerAdapter:
    """Return an adapter on the shared session logger that tags records with ``session_id``."""
    return logging.LoggerAdapter(logging.getLogger(LOGGER_NAME), {"session_id": session_id})


@contextmanager
def session_log_context(
    log_file: Path | None,
    session_id: str,
    verbose: bool = False,
) -> Generator[logging.LoggerAdapter, None, None]:
    """
    Attach a file handler for one session to the shared session logger for the
    duration of the context. Log file is UTF-8; format: timestamp [LEVEL] message.
    With ``log_file=None``, or a log file that cannot be opened, the adapter is
    yielded without a file handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    adapter = get_session_logger(session_id)
    handler: logging.Handler | None = None
    if log_file is not None:
        try:
            handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            log.warning("Cannot open session log %s: %s", log_file, e)
    if handler is None:
        yield adapter
        return

    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.addFilter(SessionFilter(session_id))
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    try:
        yield adapter
    finally:
        logger.removeHandler(handler)
        handler.close()
