"""Tests for BenchmarkRepository."""

import pytest
from uuid_extensions import uuid7

from src.repositories.benchmarks import BenchmarkRepository

_METRIC = {
    "metric": "carbon_sequestration_rate",
    "value": 42.0,
    "p25": 20.0,
    "p50": 40.0,
    "p75": 60.0,
    "p90": 80.0,
    "min": 0.0,
    "max": 100.0,
}


async def _seed(repo: BenchmarkRepository, *, year: int, methodology: str = "VM0007",
                region: str = "LATAM", category: str = "forestry", is_active: bool = True):
    return await repo.create(
        dataset_id=uuid7(),
        name=f"{category} {year}",
        category=category,
        year=year,
        methodology=methodology,
        region=region,
        metrics=[_METRIC],
        is_active=is_active,
    )


class TestGetByKey:

    @pytest.mark.anyio
    async def test_latest_year_wins_without_year(self, db_session) -> None:
        repo = BenchmarkRepository(db_session)
        await _seed(repo, year=2022)
        latest = await _seed(repo, year=2024)
        dataset = await repo.get_by_key(category="forestry")
        assert dataset.id == latest.id
        assert dataset.metrics[0].p50 == 40.0

    @pytest.mark.anyio
    async def test_exact_key(self, db_session) -> None:
        repo = BenchmarkRepository(db_session)
        older = await _seed(repo, year=2022)
        await _seed(repo, year=2024, region="AFRICA")
        dataset = await repo.get_by_key(
            category="forestry", methodology="VM0007", region="LATAM", year=2022,
        )
        assert dataset.id == older.id

    @pytest.mark.anyio
    async def test_inactive_and_unknown(self, db_session) -> None:
        repo = BenchmarkRepository(db_session)
        row = await _seed(repo, year=2024)
        await repo.set_active(row.id, False)
        assert await repo.get_by_key(category="forestry") is None
        assert await repo.get_by_key(category="energy") is None


class TestListFiltered:

    @pytest.mark.anyio
    async def test_order_and_filters(self, db_session) -> None:
        repo = BenchmarkRepository(db_session)
        await _seed(repo, year=2022, category="forestry")
        await _seed(repo, year=2024, category="soil")
        await _seed(repo, year=2024, category="blue_carbon", is_active=False)

        page = await repo.list_filtered()
        assert [(r.year, r.category) for r in page.items] == [
            (2024, "blue_carbon"), (2024, "soil"), (2022, "forestry"),
        ]
        assert (await repo.list_filtered(is_active=True)).total == 2
        assert (await repo.list_filtered(year=2022)).total == 1
