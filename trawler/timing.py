"""
Duration parsing and cancellable sleeps.
"""
import re
import threading
from datetime import timedelta
from typing import Optional

from trawler.models import RunCancelled

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_UNIT_SECONDS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a compound duration string.

    Accepts forms such as "90s", "1m", "168h", "1h30m", "250ms" and bare
    numbers (seconds).

    Args:
        value: Duration string

    Returns:
        Parsed timedelta

    Raises:
        ValueError: If the string is empty, negative or malformed
    """
    text = (value or "").strip().lower()
    if not text:
        raise ValueError("empty duration")

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"negative duration: {value!r}")
        return timedelta(seconds=seconds)

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")

    return timedelta(seconds=total)


def parse_duration_or_default(value: Optional[str], default: timedelta) -> timedelta:
    """Parse a duration, returning default for empty input."""
    if value is None or not str(value).strip():
        return default
    return parse_duration(value)


def sleep_or_cancel(cancel_event: threading.Event, seconds: float) -> None:
    """
    Block for up to `seconds`, waking early on cancellation.

    Raises:
        RunCancelled: If the cancellation event is set before or during the wait
    """
    if cancel_event.is_set():
        raise RunCancelled("run cancelled")
    if seconds > 0 and cancel_event.wait(seconds):
        raise RunCancelled("run cancelled during sleep")
