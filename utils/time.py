# utils/time.py
import math
from datetime import datetime, timezone
from typing import Any, Optional


def utc_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def parse_ts_ms(value: Any) -> Optional[int]:
    """
    Parse an absolute timestamp into epoch milliseconds.

    Accepts ISO-8601 strings (with "Z" or an offset; naive values are UTC),
    epoch seconds or epoch milliseconds. Returns None when unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        v = float(value)
        if not math.isfinite(v):
            return None
        # anything below 1e11 is taken as seconds (year ~5138 in ms)
        return int(v * 1000) if abs(v) < 1e11 else int(v)
    s = str(value).strip()
    if not s:
        return None
    try:
        return parse_ts_ms(float(s))
    except ValueError:
        pass
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def ms_to_iso(ts_ms: Optional[int]) -> Optional[str]:
    if ts_ms is None:
        return None
    t = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return t.isoformat(timespec="seconds").replace("+00:00", "Z")


def humanize_delta_ms(delta_ms: int) -> str:
    """Relative duration as "1d 2h", "3h 5m" or "12m"; empty when not positive."""
    if delta_ms <= 0:
        return ""
    minutes = delta_ms // 60_000
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        rest = hours % 24
        return f"{days}d {rest}h" if rest else f"{days}d"
    if hours > 0:
        rest = minutes % 60
        return f"{hours}h {rest}m" if rest else f"{hours}h"
    return f"{minutes}m"
