"""Quiet-period detection between recorded user events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from stepwright.recorder.scheduling import Scheduler, TimerHandle

logger = logging.getLogger("stepwright.recorder.idle")

DEFAULT_IDLE_THRESHOLD_MS = 2000
DEFAULT_MIN_IDLE_DURATION_MS = 800


@dataclass(frozen=True)
class IdleContext:
    started_at: float
    duration: float
    last_event_type: str


class IdleDetector:
    """Report once per quiet period after event traffic stops.

    Nothing fires after `start()` until `record_event()` has been called at
    least once. Each recorded event re-arms the detector and restarts the
    timer; the timer callback invokes `on_idle` only when the measured gap is
    at least `min_idle_duration_ms`.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_idle: Callable[[IdleContext], None],
        *,
        idle_threshold_ms: float = DEFAULT_IDLE_THRESHOLD_MS,
        min_idle_duration_ms: float = DEFAULT_MIN_IDLE_DURATION_MS,
    ):
        self._scheduler = scheduler
        self._on_idle = on_idle
        self.idle_threshold_ms = idle_threshold_ms
        self.min_idle_duration_ms = min_idle_duration_ms
        self._timer: TimerHandle | None = None
        self._running = False
        self._has_received_event = False
        self._idle_fired = False
        self._last_event_at = 0.0
        self._last_event_type = ""

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._has_received_event = False
        self._idle_fired = False
        self._last_event_at = 0.0
        self._last_event_type = ""

    def record_event(self, event_type: str) -> None:
        if not self._running:
            return
        self._has_received_event = True
        self._idle_fired = False
        self._last_event_at = self._scheduler.now_ms()
        self._last_event_type = event_type
        self._reset_timer()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._clear_timer()

    def dispose(self) -> None:
        self._running = False
        self._clear_timer()
        self._has_received_event = False
        self._idle_fired = False
        self._last_event_at = 0.0
        self._last_event_type = ""

    def _reset_timer(self) -> None:
        self._clear_timer()
        self._timer = self._scheduler.call_later(self.idle_threshold_ms, self._handle_timeout)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _handle_timeout(self) -> None:
        self._timer = None
        if not self._running or not self._has_received_event or self._idle_fired:
            return
        duration = self._scheduler.now_ms() - self._last_event_at
        if duration < self.min_idle_duration_ms:
            logger.debug("Suppressed idle window of %sms (minimum %sms)", duration, self.min_idle_duration_ms)
            return
        self._idle_fired = True
        self._on_idle(
            IdleContext(
                started_at=self._last_event_at,
                duration=duration,
                last_event_type=self._last_event_type,
            )
        )
