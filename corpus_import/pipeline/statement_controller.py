"""Cooperative cancellation of running imports.

The controller holds a cancellation flag and the interrupt callbacks of the
operations currently in flight.  The importer calls ``check`` before each
step and registers the running step with ``track``.  ``cancel`` may be called
from any thread: it sets the flag and asks the engine to abort the statements
of the tracked operations.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Callable, Iterator

from sqlalchemy.engine import Connection

from corpus_import.core.errors import CancelledError

logger = logging.getLogger(__name__)

Interrupt = Callable[[], None]


def engine_interrupt(connection: Connection) -> Interrupt:
    """Return a callable that aborts the statement running on ``connection``.

    psycopg connections are cancelled through the server's cancel channel,
    sqlite3 connections through ``interrupt()``.
    """
    driver_connection = connection.connection.driver_connection
    for attribute in ("cancel_safe", "cancel", "interrupt"):
        method = getattr(driver_connection, attribute, None)
        if callable(method):
            return method
    logger.warning("Driver %s cannot cancel running statements", connection.dialect.driver)
    return lambda: None


class StatementController:
    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._in_flight: dict[str, Interrupt] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)

    def cancel(self) -> None:
        logger.warning("Cancellation requested")
        self._cancelled.set()
        with self._lock:
            interrupts = list(self._in_flight.items())
        for name, interrupt in interrupts:
            logger.info("Interrupting %s", name)
            interrupt()

    def check(self, step: str) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self._cancelled.is_set():
            raise CancelledError(step)

    def reset(self) -> None:
        self._cancelled.clear()

    @contextmanager
    def track(self, name: str, interrupt: Interrupt) -> Iterator[None]:
        """Register ``name`` as in flight for the duration of the block."""
        self.check(name)
        with self._lock:
            self._in_flight[name] = interrupt
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.pop(name, None)


@lru_cache(maxsize=1)
def get_statement_controller() -> StatementController:
    return StatementController()
