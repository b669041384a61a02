"""
Helper Functions

This module contains utility functions used throughout the engine.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, MutableSequence, Optional
from urllib.parse import urlsplit

from dateutil import parser as dtparser


def now_ms() -> int:
    """Wall-clock epoch milliseconds"""
    return int(time.time() * 1000)


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats"""
    if not x:
        return None
    try:
        dt = dtparser.isoparse(str(x))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except Exception:
        return None


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def simplify_url(url: str) -> str:
    """
    Reduce a URL to its route path (scheme, host, query and fragment dropped).
    Relative paths keep their path part. Anything else is returned without
    its query and fragment.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return _strip_query(url)
    if parts.netloc:
        return parts.path or "/"
    if not parts.scheme and parts.path:
        return parts.path
    return _strip_query(url)


def _strip_query(url: str) -> str:
    return url.split("#")[0].split("?")[0]


def append_capped(items: MutableSequence, item: Any, cap: int) -> None:
    """Append keeping at most `cap` items; oldest are evicted first"""
    while len(items) >= cap:
        del items[0]
    items.append(item)


def append_sample(buckets: Dict[str, List[float]], key: str, value: float, cap: int) -> None:
    append_capped(buckets.setdefault(key, []), value, cap)


def mean(values: Iterable[float]) -> Optional[float]:
    total = 0.0
    count = 0
    for v in values:
        total += v
        count += 1
    return total / count if count else None


def quantile(sorted_vals: List[float], q: float) -> float:
    """Calculate percentile from sorted values"""
    n = len(sorted_vals)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_vals[0])
    pos = (n - 1) * q
    lo = int(pos)
    hi = min(lo + 1, n - 1)
    frac = pos - lo
    return float(sorted_vals[lo] * (1 - frac) + sorted_vals[hi] * frac)
