"""FastAPI benchmark endpoints.

POST  /v1/benchmarks/datasets                          - create benchmark dataset
GET   /v1/benchmarks/datasets                          - list datasets
GET   /v1/benchmarks/datasets/{dataset_id}             - get dataset
PATCH /v1/benchmarks/datasets/{dataset_id}/active      - activate / deactivate
POST  /v1/benchmarks/compare                           - compare given metrics
POST  /v1/benchmarks/projects/{project_id}/compare     - compare a stored project
GET   /v1/benchmarks/projects/{project_id}/percentile  - rank within peer group
POST  /v1/benchmarks/trend                             - trend of a metric series
"""

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from src.api.dependencies import get_benchmark_repo, get_benchmark_service
from src.benchmarks.comparator import (
    BenchmarkComparator,
    BenchmarkNotFoundError,
    BenchmarkService,
    PeerGroupError,
)
from src.benchmarks.trends import DataPoint, TrendAnalyzer
from src.models.benchmark import BenchmarkDataset, BenchmarkMetric
from src.models.common import new_uuid7
from src.repositories.benchmarks import BenchmarkRepository, to_dataset

router = APIRouter(prefix="/v1/benchmarks", tags=["benchmarks"])

_comparator = BenchmarkComparator()
_trends = TrendAnalyzer()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateDatasetRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=100)
    methodology: str = ""
    region: str = ""
    year: int = Field(..., ge=1900, le=2100)
    source: str = ""
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    metrics: list[BenchmarkMetric] = Field(default_factory=list)


class SetActiveRequest(BaseModel):
    is_active: bool


class DatasetListResponse(BaseModel):
    items: list[BenchmarkDataset]
    total: int
    page: int
    page_size: int
    total_pages: int


class CompareRequest(BaseModel):
    project_metrics: dict[str, float]
    dataset_id: UUID | None = None
    benchmark_metrics: list[BenchmarkMetric] = Field(default_factory=list)


class ProjectCompareRequest(BaseModel):
    category: str = Field(..., min_length=1)
    methodology: str = ""
    region: str = ""
    year: int | None = None


class TrendPoint(BaseModel):
    date: str
    value: float


class TrendRequest(BaseModel):
    metric: str = ""
    data_points: list[TrendPoint]


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------


@router.post("/datasets", status_code=201, response_model=BenchmarkDataset)
async def create_dataset(
    body: CreateDatasetRequest,
    repo: BenchmarkRepository = Depends(get_benchmark_repo),
) -> BenchmarkDataset:
    row = await repo.create(
        dataset_id=new_uuid7(),
        name=body.name,
        description=body.description,
        category=body.category,
        methodology=body.methodology,
        region=body.region,
        year=body.year,
        source=body.source,
        confidence_score=body.confidence_score,
        metrics=[m.model_dump(mode="json") for m in body.metrics],
    )
    return to_dataset(row)


@router.get("/datasets", response_model=DatasetListResponse)
async def list_datasets(
    category: str | None = None,
    methodology: str | None = None,
    region: str | None = None,
    year: int | None = None,
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1),
    repo: BenchmarkRepository = Depends(get_benchmark_repo),
) -> DatasetListResponse:
    result = await repo.list_filtered(
        category=category,
        methodology=methodology,
        region=region,
        year=year,
        is_active=is_active,
        page=page,
        page_size=page_size,
    )
    return DatasetListResponse(
        items=[to_dataset(r) for r in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/datasets/{dataset_id}", response_model=BenchmarkDataset)
async def get_dataset(
    dataset_id: UUID,
    repo: BenchmarkRepository = Depends(get_benchmark_repo),
) -> BenchmarkDataset:
    row = await repo.get(dataset_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Benchmark dataset {dataset_id} not found.")
    return to_dataset(row)


@router.patch("/datasets/{dataset_id}/active", response_model=BenchmarkDataset)
async def set_dataset_active(
    dataset_id: UUID,
    body: SetActiveRequest,
    repo: BenchmarkRepository = Depends(get_benchmark_repo),
) -> BenchmarkDataset:
    row = await repo.set_active(dataset_id, body.is_active)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Benchmark dataset {dataset_id} not found.")
    return to_dataset(row)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


@router.post("/compare")
async def compare_metrics(
    body: CompareRequest,
    repo: BenchmarkRepository = Depends(get_benchmark_repo),
) -> dict:
    """Compare caller-supplied metrics against a stored or inline benchmark."""
    benchmark_metrics = body.benchmark_metrics
    benchmark_id = None
    if body.dataset_id is not None:
        row = await repo.get(body.dataset_id)
        if row is None:
            raise HTTPException(
                status_code=404, detail=f"Benchmark dataset {body.dataset_id} not found.",
            )
        dataset = to_dataset(row)
        benchmark_metrics = dataset.metrics
        benchmark_id = dataset.id

    result = _comparator.compare(body.project_metrics, benchmark_metrics)
    payload = asdict(result)
    payload["benchmark_id"] = benchmark_id
    return payload


@router.post("/projects/{project_id}/compare")
async def compare_project(
    project_id: UUID,
    body: ProjectCompareRequest,
    service: BenchmarkService = Depends(get_benchmark_service),
) -> dict:
    try:
        result = await service.compare_project(
            project_id,
            category=body.category,
            methodology=body.methodology,
            region=body.region,
            year=body.year,
        )
    except BenchmarkNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(result)


@router.get("/projects/{project_id}/percentile")
async def project_peer_percentile(
    project_id: UUID,
    metric: str = Query(..., min_length=1),
    methodology: str = "",
    region: str = "",
    service: BenchmarkService = Depends(get_benchmark_service),
) -> dict:
    try:
        percentile = await service.peer_percentile(
            project_id, metric, methodology=methodology, region=region,
        )
    except PeerGroupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"project_id": str(project_id), "metric": metric, "percentile": percentile}


@router.post("/trend")
async def analyze_trend(body: TrendRequest) -> dict:
    result = _trends.analyze(
        [DataPoint(date=p.date, value=p.value) for p in body.data_points],
        metric=body.metric,
    )
    if result is None:
        raise HTTPException(
            status_code=422, detail="At least two data points are required.",
        )
    return asdict(result)
