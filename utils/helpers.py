# utils/helpers.py
import math
import re
from datetime import datetime, timezone
from typing import Any, Optional


# --- Status Constants ---
STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"

# Plain decimal number as sent by the inverter, e.g. "051.20", "-3", "0.5E2"
DECIMAL_TOKEN_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
INTEGER_TOKEN_RE = re.compile(r"[+-]?\d+", re.ASCII)


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """
    Formats a moment as an ISO-8601 UTC timestamp with millisecond precision.

    Args:
        now: The moment to format; defaults to the current time.

    Returns:
        A string like "2024-05-01T12:00:00.123Z".
    """
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def describe_error(error: BaseException) -> str:
    """Returns "<ExceptionType>: <message>" for publishing and logging."""
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


def to_float(token: Any) -> Optional[float]:
    """
    Parses a token as a finite float, or returns None.

    Only plain decimal notation is accepted; "nan", "inf" and Python's
    underscore separators ("1_0") are rejected.
    """
    if token is None or not DECIMAL_TOKEN_RE.fullmatch(str(token).strip()):
        return None
    value = float(str(token).strip())
    return value if math.isfinite(value) else None


def to_int(token: Any) -> Optional[int]:
    """
    Parses a token as an integer, or returns None.

    Decimal tokens ("51.7") are accepted and truncated toward zero.
    """
    text = str(token).strip() if token is not None else ""
    if INTEGER_TOKEN_RE.fullmatch(text):
        return int(text)
    value = to_float(text)
    return int(value) if value is not None else None
