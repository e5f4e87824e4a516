# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
import time

__version__ = "1.0.0"

def now_ts() -> float:
    return float(time.time())

def fmt_ts(ts: float) -> str:
    try:
        return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))
    except (OverflowError, OSError, ValueError):
        return str(ts)

def tail(items, limit=None):
    """Last ``limit`` items; ``None`` keeps everything, zero or less keeps nothing."""
    items = list(items)
    if limit is None:
        return items
    n = max(0, int(limit))
    return items[max(0, len(items) - n):] if n else []
