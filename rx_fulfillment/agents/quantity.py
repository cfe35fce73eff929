"""
Quantity Deriver — how many units to dispense for a prescribed medication.
Pure function of the frequency and duration strings; no I/O.
"""

from __future__ import annotations

import math
import re

# Common phrasings, including the Bangladeshi morning+noon+night notation.
FREQUENCY_DOSES_PER_DAY: dict[str, int] = {
    "once daily": 1,
    "1+0+0": 1,
    "twice daily": 2,
    "1+0+1": 2,
    "three times daily": 3,
    "1+1+1": 3,
    "four times daily": 4,
    "1+1+1+1": 4,
}

DEFAULT_DOSES_PER_DAY = 2
DEFAULT_DURATION_DAYS = 7

_DAYS_PATTERN = re.compile(r"(\d+)\s*days?", re.IGNORECASE)


def doses_per_day(frequency: str | None) -> int:
    key = (frequency or "").strip().lower()
    return FREQUENCY_DOSES_PER_DAY.get(key, DEFAULT_DOSES_PER_DAY)


def duration_days(duration: str | None) -> int:
    match = _DAYS_PATTERN.search(duration or "")
    return int(match.group(1)) if match else DEFAULT_DURATION_DAYS


def derive_quantity(frequency: str | None, duration: str | None) -> int:
    """
    Units to dispense: ceil(doses/day × days), never below 1.

    >>> derive_quantity("twice daily", "10 days")
    20
    >>> derive_quantity("unknown phrase", "no duration given")
    14
    """
    return max(1, math.ceil(doses_per_day(frequency) * duration_days(duration)))
