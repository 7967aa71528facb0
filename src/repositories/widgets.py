"""Dashboard widget repository (plain CRUD, no derived state)."""

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import DashboardWidgetRow
from src.models.common import utc_now


class DashboardWidgetRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        widget_id: UUID,
        widget_type: str,
        title: str,
        user_id: UUID | None = None,
        dashboard_section: str = "",
        config: dict | None = None,
        size: str = "medium",
        position: int = 0,
        refresh_interval_seconds: int = 300,
        visibility: str = "private",
    ) -> DashboardWidgetRow:
        now = utc_now()
        row = DashboardWidgetRow(
            id=widget_id,
            user_id=user_id,
            dashboard_section=dashboard_section,
            widget_type=widget_type,
            title=title,
            config=config or {},
            size=size,
            position=position,
            refresh_interval_seconds=refresh_interval_seconds,
            visibility=visibility,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, widget_id: UUID) -> DashboardWidgetRow | None:
        return await self._session.get(DashboardWidgetRow, widget_id)

    async def update(self, widget_id: UUID, **changes) -> DashboardWidgetRow | None:
        """Set every given column; ``None`` values are ignored."""
        row = await self.get(widget_id)
        if row is None:
            return None
        for column, value in changes.items():
            if value is not None:
                setattr(row, column, value)
        row.updated_at = utc_now()
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def delete(self, widget_id: UUID) -> bool:
        row = await self.get(widget_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def list_for_user(self, user_id: UUID | None) -> list[DashboardWidgetRow]:
        """The user's own widgets plus shared defaults (no owner), by position."""
        stmt = select(DashboardWidgetRow)
        if user_id is None:
            stmt = stmt.where(DashboardWidgetRow.user_id.is_(None))
        else:
            stmt = stmt.where(or_(
                DashboardWidgetRow.user_id == user_id,
                DashboardWidgetRow.user_id.is_(None),
            ))
        result = await self._session.execute(stmt.order_by(DashboardWidgetRow.position))
        return list(result.scalars().all())

    async def list_by_section(self, section: str) -> list[DashboardWidgetRow]:
        result = await self._session.execute(
            select(DashboardWidgetRow)
            .where(DashboardWidgetRow.dashboard_section == section)
            .order_by(DashboardWidgetRow.position)
        )
        return list(result.scalars().all())

    async def update_positions(self, positions: dict[UUID, int]) -> int:
        """Reorder widgets; returns how many were found and moved."""
        moved = 0
        for widget_id, position in positions.items():
            row = await self.get(widget_id)
            if row is None:
                continue
            row.position = position
            row.updated_at = utc_now()
            moved += 1
        await self._session.flush()
        return moved
