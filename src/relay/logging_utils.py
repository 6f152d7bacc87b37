"""Runtime logging helpers."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Literal

import loguru
from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

LogSink = Literal["plain", "rich"]

PLAIN_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | req={extra[request]} | {name}:{line} | {message}"
RICH_FORMAT = "req={extra[request]} {message}"

_active_sink: tuple[LogSink, str] | None = None
_request_id: ContextVar[str] = ContextVar("relay_request", default="-")


def current_request() -> str:
    return _request_id.get()


@contextmanager
def request_scope(request_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``request_id``."""
    token = _request_id.set(request_id)
    try:
        yield
    finally:
        _request_id.reset(token)


def _tag_request(record: loguru.Record) -> None:
    record["extra"]["request"] = current_request()


def configure_logging(*, sink: LogSink = "plain", level: str = "INFO") -> None:
    """Route loguru to stderr, once per sink and level."""
    global _active_sink
    wanted = (sink, level.upper())
    if wanted == _active_sink:
        return

    logger.remove()
    if sink == "rich":
        handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False, markup=False)
        logger.add(handler, level=wanted[1], format=RICH_FORMAT, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=wanted[1], format=PLAIN_FORMAT, backtrace=False, diagnose=False)
    logger.configure(patcher=_tag_request)
    _active_sink = wanted
