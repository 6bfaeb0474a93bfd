"""Async repository pattern for database access.

Provides a generic base repository with lookups, salon isolation
and pagination. Verticals subclass this to add domain-specific queries.
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository with lookups, pagination and salon isolation.

    Subclass and set `model` to your SQLAlchemy model::

        class OrderRepository(BaseRepository[Order]):
            model = Order

            async def get_by_number(self, salon_id, number: str):
                stmt = select(self.model).where(
                    self.model.salon_id == salon_id,
                    self.model.order_number == number,
                )
                result = await self.session.execute(stmt)
                return result.scalar_one_or_none()

    ``get_instance`` returns the ORM object for services that mutate it;
    ``get`` and ``list`` return ``to_dict()`` payloads for routers.
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- List with pagination --

    async def list(
        self,
        salon_id: UUID,
        page: int = 1,
        limit: int = 50,
        filters: dict[str, Any] | None = None,
    ) -> tuple[list[dict], int]:
        """List items with pagination and optional equality filters.

        Returns (items, total_count).
        """
        stmt = select(self.model).where(self.model.salon_id == salon_id)
        count_stmt = select(func.count()).select_from(self.model).where(
            self.model.salon_id == salon_id
        )

        if filters:
            for col_name, value in filters.items():
                if hasattr(self.model, col_name) and value is not None:
                    stmt = stmt.where(getattr(self.model, col_name) == value)
                    count_stmt = count_stmt.where(getattr(self.model, col_name) == value)

        offset = (page - 1) * limit
        stmt = stmt.order_by(self.model.created_at.desc()).offset(offset).limit(limit)

        result = await self.session.execute(stmt)
        items = [row.to_dict() for row in result.scalars().all()]

        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        return items, total

    # -- Get by ID --

    async def get_instance(
        self,
        item_id: UUID,
        salon_id: UUID,
        *,
        for_update: bool = False,
    ) -> ModelT | None:
        stmt = select(self.model).where(
            self.model.id == item_id,
            self.model.salon_id == salon_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, item_id: UUID, salon_id: UUID) -> dict | None:
        """Get a single item by ID with salon isolation."""
        row = await self.get_instance(item_id, salon_id)
        return row.to_dict() if row else None
