"""Percentile rank by piecewise-linear interpolation over benchmark anchors."""

from __future__ import annotations

import numpy as np

# Percentile positions of the (min, p25, p50, p75, p90, max) anchors.
ANCHOR_PERCENTILES: tuple[float, ...] = (0.0, 25.0, 50.0, 75.0, 90.0, 100.0)


def percentile_rank(
    value: float,
    *,
    min_value: float,
    p25: float,
    p50: float,
    p75: float,
    p90: float,
    max_value: float,
) -> float:
    """Place ``value`` on the 0..100 scale described by the anchors.

    At or below ``min_value`` the rank is 0, at or above ``max_value`` it is
    100. Otherwise the rank is interpolated linearly inside the first
    anchor bracket whose upper bound is >= value.
    """
    if value <= min_value:
        return 0.0
    if value >= max_value:
        return 100.0

    anchors = (min_value, p25, p50, p75, p90, max_value)
    for i in range(1, len(anchors)):
        lower, upper = anchors[i - 1], anchors[i]
        if value <= upper:
            lo_pct, hi_pct = ANCHOR_PERCENTILES[i - 1], ANCHOR_PERCENTILES[i]
            return float(
                np.interp(value, [lower, upper], [lo_pct, hi_pct]),
            )
    return 100.0


def peer_percentile(value: float, peer_values: list[float]) -> float:
    """Share of peers at or below ``value``, in percent rounded to 1 decimal."""
    if not peer_values:
        return 0.0
    ordered = np.sort(np.asarray(peer_values, dtype=float))
    position = int(np.searchsorted(ordered, value, side="right"))
    return round(position / len(ordered) * 100, 1)
