from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


_TRUTHY = frozenset({"1", "true", "yes", "on"})


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_flag(raw: Optional[Any]) -> bool:
    """Boolean-ish query flag: "1", "true", "yes", "on" (any case) are true."""
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in _TRUTHY


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))
