"""Periodic flusher that drives flush cycles on a fixed interval."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .errors import FlusherError


class PeriodicFlusher:
    """Invokes a callback every *interval* seconds on a dedicated thread.

    Ticks are scheduled at ``start + k * interval`` regardless of how long the
    callback takes. Callbacks never overlap: ticks that elapse while one is
    still running are skipped. :meth:`stop` waits for an in-flight callback,
    and no callback runs once it has returned.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], object],
        logger: logging.Logger,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not interval or interval <= 0:
            raise FlusherError(f"flush interval must be positive, got {interval!r}")
        if not callable(callback):
            raise FlusherError("flush callback must be callable")
        self._interval = interval
        self._callback = callback
        self._logger = logger
        self._clock = clock
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.ticks = 0
        self.skipped = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        """Background thread loop."""
        started = self._clock()
        tick = 0
        while not self._stop_event.is_set():
            tick += 1
            due = started + tick * self._interval
            delay = due - self._clock()
            if delay > 0 and self._stop_event.wait(delay):
                break
            if self._stop_event.is_set():
                break

            late = self._clock() - due
            if late >= self._interval:
                missed = int(late // self._interval)
                tick += missed
                self.skipped += missed
                self._logger.warning(
                    "Flush took longer than the push interval, skipped %d tick(s)", missed
                )

            self.ticks += 1
            try:
                self._callback()
            except Exception:
                self._logger.exception("Flush callback failed")

    def start(self) -> None:
        """Start ticking in the background."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="clickhouse-flusher", daemon=True
        )
        self._thread.start()
        self._logger.debug("Periodic flusher started (interval=%.3fs)", self._interval)

    def stop(self) -> None:
        """Stop ticking and wait for an in-flight callback to finish."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
            self._logger.debug("Periodic flusher stopped after %d tick(s)", self.ticks)
