"""Benchmark comparator: rank a project's metrics against percentile baselines.

Per metric: performance level against p25/p50/p75, difference vs the
median, interpolated percentile rank and (for below-median-quartile
metrics) a gap analysis with a canned recommendation. The overall score is
the mean percentile rank. Deterministic, no shared state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Protocol
from uuid import UUID

from src.analytics.percentile import peer_percentile, percentile_rank
from src.models.benchmark import BenchmarkDataset, BenchmarkMetric

logger = logging.getLogger(__name__)


class BenchmarkNotFoundError(LookupError):
    """No benchmark dataset matches the requested key."""


class PeerGroupError(LookupError):
    """The project or the metric is absent from the peer group."""


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PeerProject:
    project_id: UUID
    metrics: dict[str, float]
    methodology: str = ""
    region: str = ""


class MetricsProvider(Protocol):
    async def get_project_metrics(self, project_id: UUID) -> dict[str, float]: ...

    async def get_projects_in_peer_group(
        self, methodology: str, region: str,
    ) -> list[PeerProject]: ...


class BenchmarkLookup(Protocol):
    async def get_by_key(
        self, *, category: str, methodology: str, region: str, year: int | None,
    ) -> BenchmarkDataset | None: ...


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricComparison:
    metric: str
    project_value: float
    benchmark_median: float
    benchmark_p25: float
    benchmark_p75: float
    difference: float
    difference_percent: float
    performance_level: str  # excellent, above, at, below


@dataclass(frozen=True)
class GapAnalysisItem:
    metric: str
    current_value: float
    target_value: float
    gap: float
    gap_percent: float
    priority: str  # high, medium, low
    impact: str  # high, medium
    recommendation: str


@dataclass(frozen=True)
class ComparisonResult:
    project_metrics: dict[str, float]
    comparisons: list[MetricComparison]
    percentile_ranks: dict[str, float]
    gap_analysis: list[GapAnalysisItem]
    overall_score: float
    performance_rank: str
    summary: str
    project_id: UUID | None = None
    benchmark_id: UUID | None = None


# ---------------------------------------------------------------------------
# Fixed tables
# ---------------------------------------------------------------------------

HIGH_IMPACT_METRICS = frozenset({
    "carbon_sequestration_rate",
    "total_credits_issued",
    "revenue_per_hectare",
    "verification_success_rate",
})

RECOMMENDATIONS: dict[str, str] = {
    "carbon_sequestration_rate": (
        "Consider implementing enhanced forest management practices, "
        "optimizing species composition, or improving soil management techniques."
    ),
    "total_credits_issued": (
        "Focus on increasing monitoring coverage and documentation quality "
        "to maximize credit issuance potential."
    ),
    "revenue_per_hectare": (
        "Explore premium certification programs, direct buyer relationships, "
        "or bundled credit offerings to improve revenue."
    ),
    "verification_success_rate": (
        "Review documentation processes, ensure alignment with methodology "
        "requirements, and consider third-party pre-verification."
    ),
    "monitoring_coverage": (
        "Deploy additional IoT sensors, increase satellite imagery frequency, "
        "or implement drone-based monitoring."
    ),
    "biomass_growth_rate": (
        "Evaluate current species selection, soil amendments, and "
        "silvicultural practices for optimization opportunities."
    ),
}

_RANK_LABELS: tuple[tuple[float, str], ...] = (
    (90.0, "Top Performer"),
    (75.0, "Above Average"),
    (50.0, "Average"),
    (25.0, "Below Average"),
)


# ---------------------------------------------------------------------------
# Comparator
# ---------------------------------------------------------------------------


class BenchmarkComparator:
    """Compare project metrics with a benchmark dataset."""

    def compare(
        self,
        project_metrics: Mapping[str, float],
        benchmark_metrics: list[BenchmarkMetric],
    ) -> ComparisonResult:
        """Compare every benchmark metric the project reports.

        Benchmark metrics the project has no value for are skipped.
        Output order follows ``benchmark_metrics``.
        """
        comparisons: list[MetricComparison] = []
        ranks: dict[str, float] = {}
        gaps: list[GapAnalysisItem] = []

        for bm in benchmark_metrics:
            if bm.metric not in project_metrics:
                continue
            value = float(project_metrics[bm.metric])

            comparison = self.compare_metric(value, bm)
            comparisons.append(comparison)
            ranks[bm.metric] = self.percentile_rank(value, bm)

            if comparison.performance_level == "below":
                gaps.append(self.analyze_gap(bm.metric, value, bm))

        score = self.overall_score(ranks)
        return ComparisonResult(
            project_metrics=dict(project_metrics),
            comparisons=comparisons,
            percentile_ranks=ranks,
            gap_analysis=gaps,
            overall_score=score,
            performance_rank=self.determine_rank(score),
            summary=self.summarize(comparisons, gaps, score),
        )

    @staticmethod
    def compare_metric(value: float, bm: BenchmarkMetric) -> MetricComparison:
        diff = value - bm.p50
        diff_pct = diff / bm.p50 * 100 if bm.p50 != 0 else 0.0

        if value >= bm.p75:
            level = "excellent"
        elif value >= bm.p50:
            level = "above"
        elif value >= bm.p25:
            level = "at"
        else:
            level = "below"

        return MetricComparison(
            metric=bm.metric,
            project_value=value,
            benchmark_median=bm.p50,
            benchmark_p25=bm.p25,
            benchmark_p75=bm.p75,
            difference=diff,
            difference_percent=diff_pct,
            performance_level=level,
        )

    @staticmethod
    def percentile_rank(value: float, bm: BenchmarkMetric) -> float:
        return percentile_rank(
            value,
            min_value=bm.min,
            p25=bm.p25,
            p50=bm.p50,
            p75=bm.p75,
            p90=bm.p90,
            max_value=bm.max,
        )

    @staticmethod
    def analyze_gap(metric: str, value: float, bm: BenchmarkMetric) -> GapAnalysisItem:
        """Gap to the median, which is the minimum acceptable level."""
        target = bm.p50
        gap = target - value
        gap_pct = gap / target * 100 if target != 0 else 0.0

        if gap_pct > 30:
            priority = "high"
        elif gap_pct > 15:
            priority = "medium"
        else:
            priority = "low"

        return GapAnalysisItem(
            metric=metric,
            current_value=value,
            target_value=target,
            gap=gap,
            gap_percent=gap_pct,
            priority=priority,
            impact="high" if metric in HIGH_IMPACT_METRICS else "medium",
            recommendation=recommend(metric, gap_pct),
        )

    @staticmethod
    def overall_score(ranks: Mapping[str, float]) -> float:
        if not ranks:
            return 0.0
        return sum(ranks.values()) / len(ranks)

    @staticmethod
    def determine_rank(score: float) -> str:
        for threshold, label in _RANK_LABELS:
            if score >= threshold:
                return label
        return "Needs Improvement"

    @staticmethod
    def summarize(
        comparisons: list[MetricComparison],
        gaps: list[GapAnalysisItem],
        score: float,
    ) -> str:
        levels = [c.performance_level for c in comparisons]
        excellent = levels.count("excellent")
        above = levels.count("above")
        below = levels.count("below")
        high_gaps = sum(1 for g in gaps if g.priority == "high")

        summary = f"Overall performance score: {score:.1f}%. "
        if excellent:
            summary += f"{excellent} metrics in top quartile. "
        if above:
            summary += f"{above} metrics above median. "
        if below:
            summary += f"{below} metrics require attention. "
        if high_gaps:
            summary += f"{high_gaps} high-priority improvement areas identified."
        return summary


def recommend(metric: str, gap_percent: float) -> str:
    """Canned advice for known metrics, generic text with the gap otherwise."""
    if metric in RECOMMENDATIONS:
        return RECOMMENDATIONS[metric]
    return (
        f"Review current practices for {metric} and consult with technical "
        f"advisors for improvement strategies. Gap: {gap_percent:.1f}%"
    )


# ---------------------------------------------------------------------------
# Data-source backed operations
# ---------------------------------------------------------------------------


class BenchmarkService:
    """Fetches project and benchmark data, then delegates to the comparator.

    Fetch failures propagate: a comparison is never computed from partial
    data.
    """

    def __init__(
        self,
        *,
        metrics: MetricsProvider,
        benchmarks: BenchmarkLookup,
        comparator: BenchmarkComparator | None = None,
    ) -> None:
        self._metrics = metrics
        self._benchmarks = benchmarks
        self._comparator = comparator or BenchmarkComparator()

    async def compare_project(
        self,
        project_id: UUID,
        *,
        category: str,
        methodology: str = "",
        region: str = "",
        year: int | None = None,
    ) -> ComparisonResult:
        project_metrics = await self._metrics.get_project_metrics(project_id)

        dataset = await self._benchmarks.get_by_key(
            category=category, methodology=methodology, region=region, year=year,
        )
        if dataset is None:
            msg = (
                f"benchmark not found: category={category!r} "
                f"methodology={methodology!r} region={region!r} year={year}"
            )
            raise BenchmarkNotFoundError(msg)

        logger.info(
            "Comparing project %s against benchmark %s (%d metrics)",
            project_id, dataset.id, len(dataset.metrics),
        )
        result = self._comparator.compare(project_metrics, dataset.metrics)
        return replace(result, project_id=project_id, benchmark_id=dataset.id)

    async def peer_percentile(
        self,
        project_id: UUID,
        metric: str,
        *,
        methodology: str = "",
        region: str = "",
    ) -> float:
        """Percentile of the project's ``metric`` among its peer group."""
        peers = await self._metrics.get_projects_in_peer_group(methodology, region)

        values: list[float] = []
        project_value: float | None = None
        for peer in peers:
            if metric not in peer.metrics:
                continue
            values.append(float(peer.metrics[metric]))
            if peer.project_id == project_id:
                project_value = float(peer.metrics[metric])

        if project_value is None:
            msg = f"project {project_id} or metric {metric!r} not found in peer group"
            raise PeerGroupError(msg)
        return peer_percentile(project_value, values)
