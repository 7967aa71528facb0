"""Benchmark dataset repository.

``get_by_key`` satisfies the comparator's BenchmarkLookup contract and
returns the pydantic BenchmarkDataset rather than the row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import BenchmarkDatasetRow
from src.models.benchmark import BenchmarkDataset, BenchmarkMetric
from src.models.common import utc_now
from src.repositories.base import Page, paginate


def to_dataset(row: BenchmarkDatasetRow) -> BenchmarkDataset:
    return BenchmarkDataset(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        methodology=row.methodology,
        region=row.region,
        year=row.year,
        source=row.source,
        confidence_score=row.confidence_score,
        is_active=row.is_active,
        metrics=[BenchmarkMetric.model_validate(m) for m in row.data or []],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class BenchmarkRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        dataset_id: UUID,
        name: str,
        category: str,
        year: int,
        metrics: list[dict],
        description: str = "",
        methodology: str = "",
        region: str = "",
        source: str = "",
        confidence_score: float | None = None,
        is_active: bool = True,
    ) -> BenchmarkDatasetRow:
        now = utc_now()
        row = BenchmarkDatasetRow(
            id=dataset_id,
            name=name,
            description=description,
            category=category,
            methodology=methodology,
            region=region,
            data=metrics,
            year=year,
            source=source,
            confidence_score=confidence_score,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, dataset_id: UUID) -> BenchmarkDatasetRow | None:
        return await self._session.get(BenchmarkDatasetRow, dataset_id)

    async def set_active(self, dataset_id: UUID, is_active: bool) -> BenchmarkDatasetRow | None:
        row = await self.get(dataset_id)
        if row is None:
            return None
        row.is_active = is_active
        row.updated_at = utc_now()
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def list_filtered(
        self,
        *,
        category: str | None = None,
        methodology: str | None = None,
        region: str | None = None,
        year: int | None = None,
        is_active: bool | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page:
        """Newest year first, then by category."""
        stmt = select(BenchmarkDatasetRow)
        if category:
            stmt = stmt.where(BenchmarkDatasetRow.category == category)
        if methodology:
            stmt = stmt.where(BenchmarkDatasetRow.methodology == methodology)
        if region:
            stmt = stmt.where(BenchmarkDatasetRow.region == region)
        if year is not None:
            stmt = stmt.where(BenchmarkDatasetRow.year == year)
        if is_active is not None:
            stmt = stmt.where(BenchmarkDatasetRow.is_active.is_(is_active))
        stmt = stmt.order_by(BenchmarkDatasetRow.year.desc(), BenchmarkDatasetRow.category)
        return await paginate(self._session, stmt, page=page, page_size=page_size)

    async def get_by_key(
        self,
        *,
        category: str,
        methodology: str = "",
        region: str = "",
        year: int | None = None,
    ) -> BenchmarkDataset | None:
        """Active dataset for the key. Blank methodology/region match any;
        without a year the most recent dataset wins."""
        stmt = select(BenchmarkDatasetRow).where(
            BenchmarkDatasetRow.category == category,
            BenchmarkDatasetRow.is_active.is_(True),
        )
        if methodology:
            stmt = stmt.where(BenchmarkDatasetRow.methodology == methodology)
        if region:
            stmt = stmt.where(BenchmarkDatasetRow.region == region)
        if year is not None:
            stmt = stmt.where(BenchmarkDatasetRow.year == year)
        stmt = stmt.order_by(BenchmarkDatasetRow.year.desc()).limit(1)

        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return to_dataset(row) if row is not None else None
