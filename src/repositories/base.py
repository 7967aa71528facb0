"""Shared helpers for the reporting repositories.

Repositories call add()/flush()/refresh() only, never commit().
The session dependency handles commit/rollback (Unit-of-Work).
"""

from math import ceil
from typing import Any, NamedTuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class Page(NamedTuple):
    """One page of rows plus the unpaginated total."""

    items: list[Any]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.page_size) if self.page_size else 0


def clamp_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    """Page defaults to 1; page size to 20, capped at 100."""
    page = page if page and page > 0 else 1
    if not page_size or page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


async def paginate(
    session: AsyncSession,
    stmt: Select,
    *,
    page: int | None = None,
    page_size: int | None = None,
) -> Page:
    """Run ``stmt`` (already filtered and ordered) for one page.

    The total is counted over the same statement with ordering stripped.
    """
    page, page_size = clamp_page(page, page_size)
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await session.execute(count_stmt)).scalar_one()

    result = await session.execute(
        stmt.limit(page_size).offset((page - 1) * page_size),
    )
    return Page(list(result.scalars().all()), total, page, page_size)
