"""Benchmark models: industry percentile baselines keyed by
category + methodology + region + year."""

from pydantic import Field, model_validator

from src.models.common import ReportingBase, UTCTimestamp, UUIDv7, new_uuid7, utc_now


class BenchmarkMetric(ReportingBase):
    """Percentile distribution of one metric across the reference population."""

    metric: str = Field(..., min_length=1)
    value: float = Field(..., description="Reference (typically mean) value.")
    unit: str = ""
    p25: float
    p50: float
    p75: float
    p90: float
    min: float
    max: float
    sample_size: int = Field(default=0, ge=0)
    description: str = ""

    @model_validator(mode="after")
    def _anchors_ordered(self) -> "BenchmarkMetric":
        anchors = [self.min, self.p25, self.p50, self.p75, self.p90, self.max]
        if any(a > b for a, b in zip(anchors, anchors[1:])):
            msg = (
                f"percentile anchors for {self.metric!r} must satisfy "
                "min <= p25 <= p50 <= p75 <= p90 <= max"
            )
            raise ValueError(msg)
        return self


class BenchmarkDataset(ReportingBase):
    """A read-only set of benchmark metrics for one peer population."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=100)
    methodology: str = ""
    region: str = ""
    year: int = Field(..., ge=1900, le=2100)
    source: str = ""
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_active: bool = True
    metrics: list[BenchmarkMetric] = Field(default_factory=list)
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)

    def metric_map(self) -> dict[str, BenchmarkMetric]:
        return {m.metric: m for m in self.metrics}
