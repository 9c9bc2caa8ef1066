"""Importance decay and access boost. Unused memories fade, recalled ones grow."""

from __future__ import annotations

import time

DECAY_FACTOR = 0.99
DECAY_FLOOR = 0.1           # at or below this, importance no longer decays
STALE_AFTER = 24 * 3600     # only memories untouched for a day decay
DECAY_INTERVAL = 24 * 3600  # scheduler cadence
BOOST_FACTOR = 1.05


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


def boost(importance: float) -> float:
    """Reward for being recalled: importance * 1.05, capped at 1.0."""
    return min(1.0, clamp(importance) * BOOST_FACTOR)


def is_stale(last_accessed: float, now: float | None = None) -> bool:
    if now is None:
        now = time.time()
    return last_accessed < now - STALE_AFTER


def compute_decay(importance: float, last_accessed: float,
                  now: float | None = None) -> float:
    """One decay step for a single memory.

    Same rule the store applies in bulk: multiply by DECAY_FACTOR when
    importance is above DECAY_FLOOR and the memory is stale, otherwise
    leave it alone.
    """
    if importance > DECAY_FLOOR and is_stale(last_accessed, now):
        return clamp(importance * DECAY_FACTOR)
    return importance
