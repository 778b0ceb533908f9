"""Fixed-point time values for chug results.

Times are held as integer ticks of 100 microseconds (10,000 ticks per second)
and rendered as ``HH:MM:SS.ffff``. Two sentinels travel alongside real times:

- ``NaN``: unmeasurable / disqualifying time, distinct from zero
- ``No``: text that could not be parsed at all

None of the functions here raise on bad input; unparseable text collapses to
one of the sentinels and callers check for it explicitly.

Accepted input forms (in priority order):
- ``H:MM:SS`` / ``HH:MM:SS`` with an optional fraction of any length
- ``A:B`` two-field form, normalized by prefixing ``00:``
- ``S.f`` / ``SS.f`` bare seconds with fraction
- ``S...`` bare integer seconds
"""
from __future__ import annotations

import re
from typing import Optional, Union

from .config import NO_KEY

TICKS_PER_SECOND = 10_000
TICKS_PER_MINUTE = 60 * TICKS_PER_SECOND
TICKS_PER_HOUR = 60 * TICKS_PER_MINUTE
FRACTION_DIGITS = 4

NAN = "NaN"
INVALID = NO_KEY
ZERO_TIME = "00:00:00.0000"

_FULL_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})(?:\.(\d+))?$", re.ASCII)
_TWO_FIELD_RE = re.compile(r"^\d{1,2}:\d{2}$", re.ASCII)
_SECONDS_FRACTION_RE = re.compile(r"^(\d{1,2})\.(\d+)$", re.ASCII)
_SECONDS_RE = re.compile(r"^\d+$", re.ASCII)

# Timestamp token embedded anywhere in a line from the timing device.
TIME_TOKEN_RE = re.compile(r"\b(\d{1,2}:\d{2}:\d{2}(?:\.\d+)?)\b", re.ASCII)

ParsedTime = Union[int, str]


def _fraction_ticks(fraction: Optional[str]) -> int:
    # Right-pad or truncate to exactly 4 digits.
    if not fraction:
        return 0
    return int(fraction[:FRACTION_DIGITS].ljust(FRACTION_DIGITS, "0"))


def _full_match_ticks(text: str) -> Optional[int]:
    m = _FULL_RE.match(text)
    if not m:
        return None
    hours, minutes, seconds = int(m.group(1)), int(m.group(2)), int(m.group(3))
    return (
        hours * TICKS_PER_HOUR
        + minutes * TICKS_PER_MINUTE
        + seconds * TICKS_PER_SECOND
        + _fraction_ticks(m.group(4))
    )


def is_nan(text: object) -> bool:
    return isinstance(text, str) and text.strip().lower() == "nan"


def parse(text: object) -> ParsedTime:
    """Parse time text into ticks, or return the NAN / INVALID sentinel.

    Examples:
        - "00:00:05.0000" → 50000
        - "0:00:03.5" → 35000
        - "00:05" → 50000 (prefixed to "00:00:05")
        - "3.5" → 35000
        - "12" → 120000
        - "nan" → "NaN"
        - "not-a-time" → "No"
    """
    if not isinstance(text, str):
        return INVALID
    s = text.strip()
    if is_nan(s):
        return NAN

    ticks = _full_match_ticks(s)
    if ticks is not None:
        return ticks

    if _TWO_FIELD_RE.match(s):
        ticks = _full_match_ticks(f"00:{s}")
        return ticks if ticks is not None else INVALID

    m = _SECONDS_FRACTION_RE.match(s)
    if m:
        return int(m.group(1)) * TICKS_PER_SECOND + _fraction_ticks(m.group(2))

    if _SECONDS_RE.match(s):
        return int(s) * TICKS_PER_SECOND

    return INVALID


def format_ticks(ticks: int) -> str:
    """Render ticks as HH:MM:SS.ffff; negative ticks render as NaN."""
    if ticks < 0:
        return NAN
    hours = ticks // TICKS_PER_HOUR
    minutes = (ticks // TICKS_PER_MINUTE) % 60
    seconds = (ticks // TICKS_PER_SECOND) % 60
    fraction = ticks % TICKS_PER_SECOND
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{fraction:04d}"


def normalize(text: object) -> str:
    """Canonical text for any accepted input, passing sentinels through."""
    parsed = parse(text)
    if isinstance(parsed, str):
        return parsed
    return format_ticks(parsed)


def to_comparable(text: object) -> int:
    """Map time text to an orderable integer.

    NaN → -1, ``H:MM:SS[.f]`` → ticks, anything else → 0. Garbage and an
    exact zero time are indistinguishable here.
    """
    if not isinstance(text, str):
        return 0
    s = text.strip()
    if is_nan(s):
        return -1
    ticks = _full_match_ticks(s)
    return ticks if ticks is not None else 0


def _operand(text: object) -> str:
    if text is None or (isinstance(text, str) and text.strip() in ("", "0")):
        return ZERO_TIME
    return normalize(text)


def add(a: object, b: object) -> str:
    """Sum two times; NaN if either operand is NaN.

    Both operands are normalized first, so plain seconds work:
    add("3", "0") → "00:00:03.0000". An empty operand counts as zero.
    """
    ta = to_comparable(_operand(a))
    tb = to_comparable(_operand(b))
    if ta < 0 or tb < 0:
        return NAN
    return format_ticks(ta + tb)


def ticks_from_seconds(seconds: float) -> int:
    """Truncate a duration in seconds to whole ticks.

    The float is first rounded to whole microseconds, so a span such as
    100.3 - 100.0 (0.29999999...) still counts as 3000 ticks.
    """
    if seconds <= 0:
        return 0
    micros = int(round(seconds * 1_000_000))
    return micros // (1_000_000 // TICKS_PER_SECOND)


def find_time_token(line: str) -> Optional[str]:
    """First ``H:MM:SS[.f]`` token anywhere in a line, or None."""
    m = TIME_TOKEN_RE.search(line)
    return m.group(1) if m else None
