"""External timing device feed (serial / USB).

The device writes text lines at a fixed baud rate; somewhere in each line
there may be a timestamp token like ``0:00:07.123``. A background reader
thread pulls lines, keeps the last 2,000 of them as a diagnostic log and
drops the newest token into a single-slot mailbox that the contest side
reads whenever it wants the current value.

Threading:
- one reader thread per connection, started by connect()
- the reader is a pure producer: it never touches stores or the runner
- connection state and the log buffer are shared with the caller's thread
  and are guarded by a lock; the mailbox has its own lock
- partial lines returned at a read timeout are held until the newline arrives
- a threading.Event is the only cancellation signal; the reader wakes at
  least once per read timeout (100 ms) to check it
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, List, Optional

import serial

from . import timecodec
from .config import DEFAULT_BAUD, LOG_CAPACITY, MAX_LINE_BYTES, READ_TIMEOUT_S
from .errors import CoreError, device_error, io_error, validation_error

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[str, int, float], Any]


class LatestValue:
    """Single-slot mailbox with latest-value-wins semantics.

    put() never blocks and silently replaces any value nobody took yet, so a
    slow reader always sees the most recent value and never a backlog.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[str] = None

    def put(self, value: str) -> None:
        with self._lock:
            self._value = value

    def take(self) -> Optional[str]:
        with self._lock:
            value, self._value = self._value, None
        return value

    def peek(self) -> Optional[str]:
        with self._lock:
            return self._value

    def clear(self) -> None:
        with self._lock:
            self._value = None


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def open_serial_device(port: str, baud: int, timeout: float) -> serial.Serial:
    # readline() returns b'' (or a partial line) when the timeout expires
    return serial.Serial(port=port, baudrate=baud, timeout=timeout)


class ExternalClockFeed:
    """Connection to the timing device plus its reader thread."""

    def __init__(
        self,
        device_factory: Optional[DeviceFactory] = None,
        baud: int = DEFAULT_BAUD,
        read_timeout: float = READ_TIMEOUT_S,
        log_capacity: int = LOG_CAPACITY,
        max_line_bytes: int = MAX_LINE_BYTES,
    ):
        self._lock = threading.Lock()
        self._device_factory = device_factory or open_serial_device
        self._read_timeout = read_timeout
        self._max_line_bytes = max_line_bytes

        self._state = FeedState.DISCONNECTED
        self._port_name = ""
        self._baud = baud if baud > 0 else DEFAULT_BAUD
        self._device: Any = None
        self._stop_evt: Optional[threading.Event] = None
        self._reader: Optional[threading.Thread] = None

        self._log_lines: deque[str] = deque(maxlen=log_capacity)
        self.mailbox = LatestValue()

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> FeedState:
        with self._lock:
            return self._state

    @property
    def port_name(self) -> str:
        with self._lock:
            return self._port_name

    @property
    def baud(self) -> int:
        with self._lock:
            return self._baud

    def is_connected(self) -> bool:
        with self._lock:
            return self._state is FeedState.CONNECTED

    def set_baud(self, baud: int) -> None:
        """Preferred baud rate; takes effect on the next connect()."""
        with self._lock:
            if baud > 0:
                self._baud = baud

    def status_text(self) -> str:
        with self._lock:
            if self._state is FeedState.CONNECTED:
                return f"Connected - {self._port_name}"
            return "Not connected"

    # ------------------------------------------------------------- lifecycle

    def connect(self, port: str, baud: Optional[int] = None) -> Optional[CoreError]:
        """Open the device and start the reader thread."""
        with self._lock:
            if self._state is not FeedState.DISCONNECTED:
                return device_error("already connected - disconnect first")
            if not port or not port.strip():
                return validation_error("port name is required (e.g. COM3)")
            port = port.strip()
            if baud is None:
                baud = self._baud
            if baud <= 0:
                baud = DEFAULT_BAUD

            self._state = FeedState.CONNECTING
            try:
                device = self._device_factory(port, baud, self._read_timeout)
            except Exception as e:
                self._state = FeedState.DISCONNECTED
                logger.warning(f"Cannot open external clock on {port}: {e}")
                return io_error(f"cannot open {port}: {e}")

            stop_evt = threading.Event()
            reader = threading.Thread(
                target=self._read_loop,
                args=(device, stop_evt),
                name=f"external-clock-{port}",
                daemon=True,
            )
            self._port_name = port
            self._baud = baud
            self._device = device
            self._stop_evt = stop_evt
            self._reader = reader
            self._state = FeedState.CONNECTED
            reader.start()

        logger.info(f"External clock connected on {port} @ {baud} baud")
        return None

    def disconnect(self) -> None:
        """Stop the reader and close the device. No-op when disconnected."""
        with self._lock:
            if self._state is FeedState.DISCONNECTED:
                return
            stop_evt, reader, device = self._stop_evt, self._reader, self._device
            port = self._port_name
            self._stop_evt = None
            self._reader = None
            self._device = None
            self._state = FeedState.DISCONNECTED

        # Join outside the lock: the reader takes it to append log lines.
        if stop_evt is not None:
            stop_evt.set()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._read_timeout * 10)
        if device is not None:
            try:
                device.close()
            except Exception as e:
                logger.warning(f"Error closing external clock on {port}: {e}")
        logger.info(f"External clock disconnected from {port}")

    # ------------------------------------------------------------------- log

    def log_lines(self) -> List[str]:
        with self._lock:
            return list(self._log_lines)

    def clear_log(self) -> None:
        with self._lock:
            self._log_lines.clear()

    def _append_log(self, line: str) -> None:
        with self._lock:
            self._log_lines.append(line)

    # ---------------------------------------------------------------- reader

    def _handle_line(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n ")
        if not line:
            return
        self._append_log(line)
        token = timecodec.find_time_token(line)
        if token is not None:
            self.mailbox.put(token)

    def _read_loop(self, device: Any, stop_evt: threading.Event) -> None:
        """Read lines until stop_evt is set; read errors never end the loop.

        readline() gives up at the read timeout and may hand back the first
        part of a line. Parts are collected in `pending` and only a line that
        ends in a newline is logged and scanned for a time token.
        """
        pending = bytearray()
        while not stop_evt.is_set():
            try:
                raw = device.readline()
            except Exception as e:
                if stop_evt.is_set():
                    break
                pending.clear()
                self._append_log(f"read error: {e}")
                logger.warning(f"External clock read error: {e}")
                stop_evt.wait(self._read_timeout)
                continue

            if not raw:
                continue
            if isinstance(raw, str):
                raw = raw.encode("utf-8")
            pending += raw

            if pending.endswith(b"\n"):
                line = bytes(pending)
                pending.clear()
                self._handle_line(line)
            elif len(pending) > self._max_line_bytes:
                self._append_log(f"discarded {len(pending)} bytes without line end")
                logger.warning(f"External clock sent {len(pending)} bytes without a line end")
                pending.clear()

        logger.debug("External clock reader stopped")
