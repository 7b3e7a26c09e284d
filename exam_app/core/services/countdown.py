"""Cancellable one-second countdown driver."""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock, Timer
from typing import Protocol


class Ticker(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TickerFactory = Callable[[float, Callable[[], None]], Ticker]


class CountdownTimer:
    """Calls ``on_tick`` every ``interval_seconds`` until cancelled.

    Each tick is a single-fire ``threading.Timer`` that is rescheduled only
    after the callback returns, so ticks never overlap. ``cancel`` may be
    called from inside the callback.
    """

    def __init__(self, interval_seconds: float, on_tick: Callable[[], None]) -> None:
        self._interval = interval_seconds
        self._on_tick = on_tick
        self._lock = Lock()
        self._timer: Timer | None = None
        self._cancelled = False

    def start(self) -> None:
        with self._lock:
            if self._cancelled or self._timer is not None:
                return
            self._schedule()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _schedule(self) -> None:
        timer = Timer(self._interval, self._fire)
        timer.daemon = True
        timer.name = "ExamCountdown"
        self._timer = timer
        timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = None
        self._on_tick()
        with self._lock:
            if not self._cancelled:
                self._schedule()

