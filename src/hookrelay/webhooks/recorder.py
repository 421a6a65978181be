"""Durable recording of webhook deliveries and their status transitions.

Every public method opens its own session and commits a single statement, so
each create or transition is atomic and addressed by delivery id.

State machine::

    pending  -> processed | failed
    failed   -> retrying
    retrying -> retrying          (another retry of the same record, under the cap)

``processed`` is terminal. A retry never resolves the retrying record itself;
the reprocessing is recorded as a new ``pending`` delivery with ``retry_of``
pointing back at it.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.errors.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RecordingError,
    RetryExhaustedError,
)
from hookrelay.models.delivery import DeliveryRecord
from hookrelay.models.enums import DeliveryStatus
from hookrelay.repositories.delivery_repo import DeliveryRepository
from hookrelay.services.id_generator import generate_id
from hookrelay.webhooks.config import MAX_RETRIES

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.PROCESSED, DeliveryStatus.FAILED}),
    DeliveryStatus.FAILED: frozenset({DeliveryStatus.RETRYING}),
    DeliveryStatus.RETRYING: frozenset({DeliveryStatus.RETRYING}),
    DeliveryStatus.PROCESSED: frozenset(),
}

MAX_LIST_LIMIT = 500


def allowed_sources(target: DeliveryStatus) -> frozenset[DeliveryStatus]:
    """Statuses from which ``target`` may be reached."""
    return frozenset(src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets)


class EventRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.session_factory = session_factory
        self.max_retries = max_retries

    async def record(
        self,
        provider: str,
        topic: str,
        payload: Any,
        headers: dict[str, str],
        signature: str | None = None,
        retry_of: str | None = None,
    ) -> DeliveryRecord:
        """Persist a new ``pending`` delivery.

        Raises:
            RecordingError: the datastore rejected or could not take the write.
        """
        try:
            async with self.session_factory() as session:
                repo = DeliveryRepository(session)
                row = await repo.create(
                    id=generate_id("dlv_"),
                    provider=provider,
                    topic=topic,
                    payload=payload,
                    headers=dict(headers),
                    signature=signature,
                    status=DeliveryStatus.PENDING.value,
                    retry_count=0,
                    last_error=None,
                    retry_of=retry_of,
                )
                await session.commit()
                record = DeliveryRecord.model_validate(row)
        except SQLAlchemyError as exc:
            logger.exception("Failed to record %s/%s delivery", provider, topic)
            raise RecordingError() from exc

        logger.info("Recorded delivery %s (%s/%s)", record.id, provider, topic)
        return record

    async def transition(
        self,
        delivery_id: str,
        new_status: DeliveryStatus,
        error: str | None = None,
    ) -> None:
        """Atomically move a delivery to ``new_status``.

        ``error`` is stored as ``last_error`` only when moving to ``failed``.
        Use ``mark_retrying`` for retries, which also bumps the retry count.
        """
        new_status = DeliveryStatus(new_status)
        if new_status is DeliveryStatus.RETRYING:
            raise ValueError("use mark_retrying() to move a delivery to retrying")

        sources = allowed_sources(new_status)
        last_error = error if new_status is DeliveryStatus.FAILED else None

        try:
            async with self.session_factory() as session:
                repo = DeliveryRepository(session)
                changed = await repo.set_status_if(
                    delivery_id,
                    [s.value for s in sources],
                    new_status.value,
                    last_error=last_error,
                )
                if changed:
                    await session.commit()
                    logger.info("Delivery %s -> %s", delivery_id, new_status.value)
                    return
                row = await repo.get(delivery_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to transition delivery %s to %s", delivery_id, new_status.value)
            raise RecordingError("Delivery status could not be updated") from exc

        if row is None:
            raise NotFoundError("Delivery", delivery_id)
        raise InvalidTransitionError(delivery_id, row.status, new_status.value)

    async def mark_retrying(self, delivery_id: str) -> DeliveryRecord:
        """Increment ``retry_count`` and set ``retrying`` in one guarded update.

        Raises:
            NotFoundError: unknown id.
            RetryExhaustedError: the record is already at the retry cap.
            InvalidTransitionError: the record is not in a retryable status.
            RecordingError: the datastore could not be reached.
        """
        sources = allowed_sources(DeliveryStatus.RETRYING)
        try:
            async with self.session_factory() as session:
                repo = DeliveryRepository(session)
                changed = await repo.increment_retry(
                    delivery_id,
                    [s.value for s in sources],
                    self.max_retries,
                    DeliveryStatus.RETRYING.value,
                )
                if changed:
                    await session.commit()
                row = await repo.get(delivery_id)
                record = DeliveryRecord.model_validate(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to mark delivery %s as retrying", delivery_id)
            raise RecordingError("Delivery status could not be updated") from exc

        if record is None:
            raise NotFoundError("Delivery", delivery_id)
        if changed:
            logger.info("Delivery %s -> retrying (attempt %d)", delivery_id, record.retry_count)
            return record
        if record.retry_count >= self.max_retries:
            raise RetryExhaustedError(delivery_id, record.retry_count, self.max_retries)
        raise InvalidTransitionError(delivery_id, record.status.value, DeliveryStatus.RETRYING.value)

    async def get(self, delivery_id: str) -> DeliveryRecord:
        try:
            async with self.session_factory() as session:
                row = await DeliveryRepository(session).get(delivery_id)
                record = DeliveryRecord.model_validate(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to load delivery %s", delivery_id)
            raise RecordingError("Delivery store unavailable") from exc

        if record is None:
            raise NotFoundError("Delivery", delivery_id)
        return record

    async def list(
        self,
        provider: str | None = None,
        status: DeliveryStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryRecord]:
        """Newest-first page of deliveries, filters combined with AND."""
        limit = max(0, min(limit, MAX_LIST_LIMIT))
        offset = max(0, offset)
        status_value = DeliveryStatus(status).value if status else None
        try:
            async with self.session_factory() as session:
                rows = await DeliveryRepository(session).list_filtered(
                    provider=provider,
                    status=status_value,
                    limit=limit,
                    offset=offset,
                )
                return [DeliveryRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list deliveries")
            raise RecordingError("Delivery store unavailable") from exc
