"""Small numeric helpers shared by the time-series store and rollups."""

from __future__ import annotations

import math
from typing import Sequence


def percentile_cont(values: Sequence[float], percentile: float) -> float | None:
    """Continuous percentile with linear interpolation (PERCENTILE_CONT).

    Args:
        values: Observations in any order.
        percentile: Percentile in the 0-100 range.

    Returns:
        Interpolated value, or None when ``values`` is empty.

    Raises:
        ValueError: If ``percentile`` is outside 0-100.
    """

    if not 0 <= percentile <= 100:
        raise ValueError("percentile must be between 0 and 100")
    if not values:
        return None

    ordered = sorted(values)
    position = (len(ordered) - 1) * (percentile / 100)
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    fraction = position - lower
    return float(ordered[lower] + (ordered[upper] - ordered[lower]) * fraction)


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return math.fsum(values) / len(values)


def round_stat(value: float | None, digits: int = 4) -> float | None:
    return None if value is None else round(value, digits)
