"""Event deduplication ledger.

Slack redelivers events (retries on slow acks, reconnects in Socket
Mode), so every event id is recorded in ``processed_slack_events``
before any side effect runs. The gate is check-then-insert: callers
first ask ``has_processed`` and then claim the event with
``mark_processed``. A ``False`` from the claim means another invocation
owns the event and the caller must stop quietly.

The unique index on ``event_id`` makes the insert itself the tie
breaker: when two deliveries pass the re-check at the same moment, the
loser's insert raises ``IntegrityError`` and is reported as ``False``.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fixbot.db.models import ProcessedEvent

logger = structlog.get_logger()


class EventDeduplicator:
    """Durable ledger of processed Slack event ids."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def has_processed(self, event_id: str) -> bool:
        async with self._session_factory() as db:
            return await self._exists(db, event_id)

    async def mark_processed(self, event_id: str, event_type: str) -> bool:
        """Claim an event. Returns False if it was already recorded."""
        async with self._session_factory() as db:
            if await self._exists(db, event_id):
                logger.debug("event_already_marked", event_id=event_id)
                return False

            db.add(ProcessedEvent(event_id=event_id, event_type=event_type))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.debug("event_mark_race_lost", event_id=event_id)
                return False
        return True

    @staticmethod
    async def _exists(db: AsyncSession, event_id: str) -> bool:
        result = await db.execute(
            select(ProcessedEvent.id).where(ProcessedEvent.event_id == event_id).limit(1)
        )
        return result.scalar_one_or_none() is not None
