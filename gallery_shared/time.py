"""
Time utilities for timestamps and elapsed-time formatting.
"""
from __future__ import annotations

import time


def ms() -> int:
    """Get current timestamp in milliseconds (int)."""
    return int(time.time() * 1000)


def format_elapsed(start_ms: int) -> str:
    """Human readable time spent since `start_ms` (e.g. "1.24s", "3m 12s")."""
    elapsed = max(0, ms() - int(start_ms)) / 1000.0
    if elapsed < 60:
        return f"{elapsed:.2f}s"
    minutes, seconds = divmod(int(elapsed), 60)
    return f"{minutes}m {seconds}s"
