"""Adaptive polling cadence, working-hours window and the repeating timer task."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from sitewatch.tracking.config import DEFAULT_CONFIG, TrackingConfig
from sitewatch.tracking.timeutils import ms_until
from sitewatch.watchers.logger import logger


def next_delay_ms(consecutive_stationary_checks: int, config: TrackingConfig = DEFAULT_CONFIG) -> int:
    """Poll faster once the operator has looked stationary for a couple of checks."""
    if consecutive_stationary_checks >= config.frequent_after_checks:
        return config.poll_frequent_ms
    return config.poll_default_ms


def is_working_hours(now: datetime, config: TrackingConfig = DEFAULT_CONFIG) -> bool:
    """True if the local wall-clock time of ``now`` is within [work_start, work_end)."""
    t = now.time().replace(tzinfo=None)
    return config.work_start <= t < config.work_end


def ms_until_working_hours(now: datetime, config: TrackingConfig = DEFAULT_CONFIG) -> int:
    """Delay until the working-hours window next opens, 0 when already inside."""
    if is_working_hours(now, config):
        return 0
    opening = datetime.combine(now.date(), config.work_start, tzinfo=now.tzinfo)
    if now >= opening:
        opening = datetime.combine(now.date() + timedelta(days=1), config.work_start, tzinfo=now.tzinfo)
    return ms_until(now, opening)


class Timer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[..., Timer]


class RepeatingTask:
    """Cancellable repeating task driven by one-shot timers.

    The callback never overlaps with itself: the next timer is armed only
    after the current callback returns, with a delay taken from ``delay_fn``
    at that moment. ``cancel()`` stops the pending timer right away; a
    callback that is already running finishes but does not re-arm. If
    ``delay_fn`` fails, the next run is armed after ``fallback_delay_ms``.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        delay_fn: Callable[[], int],
        *,
        timer_factory: TimerFactory = threading.Timer,
        name: str = "sitewatch-task",
        fallback_delay_ms: int = DEFAULT_CONFIG.poll_default_ms,
    ) -> None:
        self._callback = callback
        self._delay_fn = delay_fn
        self._fallback_delay_ms = fallback_delay_ms
        self._timer_factory = timer_factory
        self.name = name
        self._lock = threading.Lock()
        self._timer: Timer | None = None
        self._generation = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, initial_delay_ms: int = 0) -> None:
        """Arm the first run. No-op if already running."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
            self._arm(initial_delay_ms, self._generation)

    def cancel(self) -> None:
        with self._lock:
            self._running = False
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self, delay_ms: int, generation: int) -> None:
        # caller holds self._lock
        timer = self._timer_factory(max(0, delay_ms) / 1000.0, self._fire, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()
        logger.debug("%s armed in %d ms", self.name, delay_ms)

    def _fire(self, generation: int) -> None:
        with self._lock:
            if not self._running or generation != self._generation:
                return
            self._timer = None

        try:
            self._callback()
        except Exception:
            logger.exception("%s callback failed", self.name)

        try:
            delay = self._delay_fn()
        except Exception:
            logger.exception(
                "%s delay computation failed, retrying in %d ms", self.name, self._fallback_delay_ms
            )
            delay = self._fallback_delay_ms
        with self._lock:
            if not self._running or generation != self._generation:
                return
            self._arm(delay, generation)
