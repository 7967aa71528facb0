"""Tests for percentile math.

Covers: anchor interpolation (clamping, exact anchors, monotonicity,
degenerate brackets) and peer percentile ranking.
"""

import pytest

from src.analytics.percentile import peer_percentile, percentile_rank

ANCHORS = {
    "min_value": 0.0,
    "p25": 10.0,
    "p50": 20.0,
    "p75": 30.0,
    "p90": 35.0,
    "max_value": 40.0,
}


class TestPercentileRank:
    """Piecewise-linear interpolation over (min, p25, p50, p75, p90, max)."""

    def test_min_is_zero(self) -> None:
        assert percentile_rank(0.0, **ANCHORS) == 0.0

    def test_below_min_clamps_to_zero(self) -> None:
        assert percentile_rank(-5.0, **ANCHORS) == 0.0

    def test_max_is_hundred(self) -> None:
        assert percentile_rank(40.0, **ANCHORS) == 100.0

    def test_above_max_clamps_to_hundred(self) -> None:
        assert percentile_rank(1000.0, **ANCHORS) == 100.0

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(10.0, 25.0), (20.0, 50.0), (30.0, 75.0), (35.0, 90.0)],
    )
    def test_exact_anchor_values(self, value: float, expected: float) -> None:
        assert percentile_rank(value, **ANCHORS) == pytest.approx(expected)

    def test_between_p50_and_p75(self) -> None:
        # 25 is halfway from 20 to 30, so halfway from 50 to 75.
        assert percentile_rank(25.0, **ANCHORS) == pytest.approx(62.5)

    def test_between_p75_and_p90(self) -> None:
        assert percentile_rank(32.5, **ANCHORS) == pytest.approx(82.5)

    def test_monotonic_non_decreasing(self) -> None:
        values = [x / 4 for x in range(-4, 170)]
        ranks = [percentile_rank(v, **ANCHORS) for v in values]
        assert all(a <= b for a, b in zip(ranks, ranks[1:]))

    def test_collapsed_anchors(self) -> None:
        rank = percentile_rank(
            5.0, min_value=0.0, p25=5.0, p50=5.0, p75=5.0, p90=8.0, max_value=10.0,
        )
        assert 0.0 <= rank <= 100.0


class TestPeerPercentile:
    """Share of peers at or below the value."""

    def test_top_of_group(self) -> None:
        assert peer_percentile(50.0, [10.0, 20.0, 30.0, 50.0]) == 100.0

    def test_counts_ties_as_at_or_below(self) -> None:
        assert peer_percentile(20.0, [10.0, 20.0, 20.0, 40.0]) == 75.0

    def test_rounds_to_one_decimal(self) -> None:
        assert peer_percentile(1.0, [1.0, 2.0, 3.0]) == 33.3

    def test_unsorted_input(self) -> None:
        assert peer_percentile(30.0, [50.0, 10.0, 30.0, 20.0, 40.0]) == 60.0

    def test_empty_group(self) -> None:
        assert peer_percentile(1.0, []) == 0.0
