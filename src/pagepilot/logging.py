"""Logging for PagePilot.

Everything logs under the ``pagepilot`` logger tree. Records are tagged
with the session and page they concern: the orchestrator binds the
session id around each turn and the page endpoint binds the context id for
its connection, so a line reads

    14:02:11 info [pagepilot.session] session=s1: click_element failed (timeout): ...

without every call site repeating the ids. Bindings live in contextvars and
follow asyncio tasks (a task inherits the bindings of the code that created
it).

Verbosity (``-v`` / ``logging.verbose``) maps 0-4 to error, warning, info,
debug and trace. TRACE is used for raw page frames.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pagepilot.config.schema import LoggingConfig

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("pagepilot")

_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "pagepilot_session", default=None
)
_page_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "pagepilot_page", default=None
)

_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG, TRACE)

FORMAT = "%(asctime)s %(levelname)s [%(name)s]%(scope)s: %(message)s"


@contextlib.contextmanager
def log_scope(*, session: str | None = None, page: str | None = None) -> Iterator[None]:
    """Tag records logged inside the block with a session and/or page id."""
    tokens = []
    if session is not None:
        tokens.append((_session_id, _session_id.set(session)))
    if page is not None:
        tokens.append((_page_id, _page_id.set(page)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def current_scope() -> str:
    """The bound ids as `` session=.. page=..``, or an empty string."""
    parts = []
    session = _session_id.get()
    if session is not None:
        parts.append(f"session={session}")
    page = _page_id.get()
    if page is not None:
        parts.append(f"page={page}")
    return " " + " ".join(parts) if parts else ""


class ScopeFilter(logging.Filter):
    """Copy the bound session/page ids onto each record as ``scope``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.scope = current_scope()
        return True


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        if not hasattr(record, "scope"):
            record.scope = ""
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level: ``verbose`` wins over ``level``; INFO by default."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        level = logging.getLevelName(config.level.upper())
        if isinstance(level, int):
            return level
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the PagePilot handlers.

    Logs go to ``config.file`` (or ``PAGEPILOT_LOG``), else to stderr when it
    is a terminal; under a pipe with no file configured nothing is written.
    Calling again replaces the handlers installed by the previous call.
    """
    for old in [h for h in logger.handlers if getattr(h, "_pagepilot", False)]:
        logger.removeHandler(old)
        old.close()

    level = resolve_level(config)
    logger.setLevel(level)

    log_path = config.file if config and config.file else os.environ.get("PAGEPILOT_LOG")
    handler: logging.Handler | None = None
    if log_path:
        try:
            handler = logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[pagepilot] Failed to open log file: {e}", file=sys.stderr)
                handler = logging.StreamHandler(sys.stderr)
    elif sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)

    if handler is None:
        return
    handler._pagepilot = True  # type: ignore[attr-defined]
    handler.setLevel(level)
    handler.addFilter(ScopeFilter())
    handler.setFormatter(_LowercaseLevelFormatter(FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``pagepilot`` logger, or its child ``pagepilot.<name>``."""
    if name:
        return logger.getChild(name)
    return logger
