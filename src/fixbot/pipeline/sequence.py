"""Per-workspace sequence numbers for human-readable task ids.

``next()`` reads the counter row for (workspace, counter_type), inserts
it at 1 when missing, otherwise writes back ``current_value + 1``.
On PostgreSQL the read takes a row lock so concurrent allocations for
the same workspace serialize instead of losing updates; the unique
constraint on (workspace_id, counter_type) rejects a duplicate first
insert. SQLite ignores ``FOR UPDATE``, which is fine for tests where
calls are sequential.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fixbot.db.models import TASK_NUMBER_COUNTER, WorkspaceCounter

logger = structlog.get_logger()


class SequenceAllocator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def next(
        self,
        workspace_id: UUID,
        counter_type: str = TASK_NUMBER_COUNTER,
        db: AsyncSession | None = None,
    ) -> int:
        """Allocate the next value.

        With ``db`` the allocation joins the caller's transaction and is
        committed (or rolled back) with it. Without it, the allocation
        commits on its own.
        """
        if db is not None:
            return await self._allocate(db, workspace_id, counter_type)

        async with self._session_factory() as own:
            value = await self._allocate(own, workspace_id, counter_type)
            await own.commit()
            return value

    @staticmethod
    async def _allocate(db: AsyncSession, workspace_id: UUID, counter_type: str) -> int:
        result = await db.execute(
            select(WorkspaceCounter)
            .where(
                WorkspaceCounter.workspace_id == workspace_id,
                WorkspaceCounter.counter_type == counter_type,
            )
            .with_for_update()
        )
        counter = result.scalars().first()

        if counter is None:
            db.add(
                WorkspaceCounter(
                    workspace_id=workspace_id,
                    counter_type=counter_type,
                    current_value=1,
                )
            )
            await db.flush()
            value = 1
        else:
            value = counter.current_value + 1
            counter.current_value = value
            await db.flush()

        logger.debug(
            "sequence_allocated",
            workspace_id=str(workspace_id),
            counter_type=counter_type,
            value=value,
        )
        return value
