"""Time measurement for a heat.

ClockSource is one handle with two interchangeable strategies, picked by
configuration rather than subclassing:

- internal: a software stopwatch. start() records a monotonic instant and a
  daemon thread refreshes the display value every 10 ms; stop() computes the
  final elapsed time directly, so precision does not depend on the refresh.
- external: a subscription to an ExternalClockFeed mailbox. Every value the
  device produced since start() overwrites `last observed`; stop() returns
  the last one seen.

Both refresh paths only publish strings through a LatestValue cell; the
contest runner reads them on its own thread.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from . import timecodec
from .config import TICK_INTERVAL_S, ClockMode, ContestSettings
from .errors import CoreError, device_error, validation_error
from .external_clock import ExternalClockFeed, LatestValue

logger = logging.getLogger(__name__)


@dataclass
class ClockReading:
    """Outcome of stopping a clock."""

    text: str = ""
    ticks: int = 0
    measured: bool = False
    error: Optional[CoreError] = None


class InternalTicker:
    def __init__(self, interval: float = TICK_INTERVAL_S, now: Callable[[], float] = time.monotonic):
        self._interval = interval
        self._now = now
        # (start instant or None while paused, accumulated seconds); replaced as a whole
        self._span: Tuple[Optional[float], float] = (None, 0.0)
        self._frozen = 0.0
        self._running = False
        self._latest = LatestValue()
        self._shown = timecodec.ZERO_TIME
        self._stop_evt: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    def _elapsed(self) -> float:
        start, accumulated = self._span
        if start is None:
            return accumulated
        return self._now() - start + accumulated

    def _refresh_loop(self, stop_evt: threading.Event) -> None:
        while not stop_evt.wait(self._interval):
            ticks = timecodec.ticks_from_seconds(self._elapsed())
            self._latest.put(timecodec.format_ticks(ticks))

    def _stop_thread(self) -> None:
        stop_evt, thread = self._stop_evt, self._thread
        self._stop_evt = None
        self._thread = None
        if stop_evt is not None:
            stop_evt.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self._interval * 10, 0.1))

    def start(self) -> Optional[CoreError]:
        self._stop_thread()
        self._span = (self._now(), 0.0)
        self._frozen = 0.0
        self._running = True
        self._latest.clear()
        self._shown = timecodec.ZERO_TIME

        stop_evt = threading.Event()
        self._stop_evt = stop_evt
        self._thread = threading.Thread(
            target=self._refresh_loop, args=(stop_evt,), name="internal-clock", daemon=True
        )
        self._thread.start()
        return None

    def pause(self) -> Optional[CoreError]:
        start, accumulated = self._span
        if not self._running:
            return validation_error("timer is not running")
        if start is None:
            return validation_error("timer is already paused")
        self._span = (None, accumulated + self._now() - start)
        return None

    def resume(self) -> Optional[CoreError]:
        start, accumulated = self._span
        if not self._running or start is not None:
            return validation_error("timer is not paused")
        self._span = (self._now(), accumulated)
        return None

    def stop(self) -> ClockReading:
        self._frozen = self._elapsed()
        self._running = False
        self._span = (None, self._frozen)
        self._stop_thread()
        ticks = timecodec.ticks_from_seconds(self._frozen)
        text = timecodec.format_ticks(ticks)
        self._shown = text
        return ClockReading(text=text, ticks=ticks, measured=ticks > 0)

    def display(self) -> str:
        if self._running:
            value = self._latest.take()
            if value is not None:
                self._shown = value
        return self._shown

    def reset(self) -> None:
        self._stop_thread()
        self._span = (None, 0.0)
        self._frozen = 0.0
        self._running = False
        self._latest.clear()
        self._shown = timecodec.ZERO_TIME


class ExternalSubscription:
    def __init__(self, feed: Optional[ExternalClockFeed]):
        self._feed = feed
        self._subscribed = False
        self._last_observed: Optional[str] = None

    @property
    def last_observed(self) -> Optional[str]:
        return self._last_observed

    def _poll(self) -> None:
        if self._feed is None:
            return
        value = self._feed.mailbox.take()
        if value is not None:
            self._last_observed = value

    def start(self) -> Optional[CoreError]:
        if self._feed is None or not self._feed.is_connected():
            return device_error("external clock is not connected - connect it in configuration first")
        # Only readings produced after start count for this heat.
        self._feed.mailbox.clear()
        self._last_observed = None
        self._subscribed = True
        return None

    def stop(self) -> ClockReading:
        if self._subscribed:
            self._poll()
        self._subscribed = False
        if self._last_observed is None:
            return ClockReading(error=device_error("no time received from external clock"))
        parsed = timecodec.parse(self._last_observed)
        if isinstance(parsed, str):
            return ClockReading(
                error=device_error(f"external clock sent an unreadable time: {self._last_observed}")
            )
        # The device reported a finish, so the attempt counts even at zero.
        return ClockReading(text=timecodec.format_ticks(parsed), ticks=parsed, measured=True)

    def display(self) -> str:
        if self._subscribed:
            self._poll()
        return self._last_observed or timecodec.ZERO_TIME

    def reset(self) -> None:
        self._subscribed = False
        self._last_observed = None


class ClockSource:
    """Clock handle shared by the contest runner and configuration surface."""

    def __init__(
        self,
        mode: ClockMode = "internal",
        feed: Optional[ExternalClockFeed] = None,
        tick_interval: float = TICK_INTERVAL_S,
        now: Callable[[], float] = time.monotonic,
    ):
        self._mode: ClockMode = mode
        self._feed = feed
        self._internal = InternalTicker(interval=tick_interval, now=now)
        self._external = ExternalSubscription(feed)
        self._running = False
        self._stopped = False

    @classmethod
    def from_settings(cls, settings: ContestSettings, feed: Optional[ExternalClockFeed] = None) -> "ClockSource":
        return cls(mode=settings.clock_mode, feed=feed)

    @property
    def mode(self) -> ClockMode:
        return self._mode

    @property
    def feed(self) -> Optional[ExternalClockFeed]:
        return self._feed

    @property
    def is_running(self) -> bool:
        return self._running

    def _active(self):
        return self._external if self._mode == "external" else self._internal

    def set_mode(self, mode: ClockMode) -> Optional[CoreError]:
        if mode not in ("internal", "external"):
            return validation_error(f"unknown clock mode: {mode}")
        if self._running:
            return validation_error("cannot switch clock while the timer is running")
        if mode != self._mode:
            logger.info(f"Clock mode switched to {mode}")
        self._mode = mode
        return None

    def use_external(self, flag: bool) -> Optional[CoreError]:
        return self.set_mode("external" if flag else "internal")

    def start(self) -> Optional[CoreError]:
        if self._running:
            return validation_error("timer is already running")
        err = self._active().start()
        if err is not None:
            return err
        self._running = True
        self._stopped = False
        return None

    def stop(self) -> ClockReading:
        if self._stopped:
            # Second stop after a successful one does nothing.
            return ClockReading()
        if not self._running:
            return ClockReading(error=validation_error("timer is not running"))
        reading = self._active().stop()
        self._running = False
        self._stopped = True
        return reading

    def pause(self) -> Optional[CoreError]:
        if self._mode != "internal":
            return validation_error("the external clock cannot be paused")
        return self._internal.pause()

    def resume(self) -> Optional[CoreError]:
        if self._mode != "internal":
            return validation_error("the external clock cannot be paused")
        return self._internal.resume()

    def display(self) -> str:
        return self._active().display()

    def reset(self) -> None:
        self._internal.reset()
        self._external.reset()
        self._running = False
        self._stopped = False
