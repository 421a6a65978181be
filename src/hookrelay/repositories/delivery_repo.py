"""Webhook delivery repository."""

from collections.abc import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.db.base import utc_now
from hookrelay.db.models.delivery import DeliveryRow
from hookrelay.repositories.base import BaseRepository


class DeliveryRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, DeliveryRow)

    async def get(self, delivery_id: str) -> DeliveryRow | None:
        return await self.get_by_id("id", delivery_id)

    async def list_filtered(
        self,
        provider: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryRow]:
        stmt = select(DeliveryRow)
        if provider:
            stmt = stmt.where(DeliveryRow.provider == provider)
        if status:
            stmt = stmt.where(DeliveryRow.status == status)
        stmt = (
            stmt.order_by(DeliveryRow.created_at.desc(), DeliveryRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_status_if(
        self,
        delivery_id: str,
        expected: Iterable[str],
        status: str,
        last_error: str | None = None,
    ) -> bool:
        """Move a delivery to ``status`` only if it is currently in ``expected``.

        Returns False when no row matched (unknown id or a concurrent change).
        """
        values: dict = {"status": status, "updated_at": utc_now()}
        if last_error is not None:
            values["last_error"] = last_error
        stmt = (
            update(DeliveryRow)
            .where(DeliveryRow.id == delivery_id, DeliveryRow.status.in_(list(expected)))
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def increment_retry(
        self,
        delivery_id: str,
        expected: Iterable[str],
        max_retries: int,
        status: str,
    ) -> bool:
        """Bump retry_count and set ``status`` in one statement, guarded by the cap."""
        stmt = (
            update(DeliveryRow)
            .where(
                DeliveryRow.id == delivery_id,
                DeliveryRow.status.in_(list(expected)),
                DeliveryRow.retry_count < max_retries,
            )
            .values(
                status=status,
                retry_count=DeliveryRow.retry_count + 1,
                updated_at=utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0
