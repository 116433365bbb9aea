"""Tests for per-workspace sequence allocation."""

from __future__ import annotations

from sqlalchemy import select

from fixbot.db.models import WorkspaceCounter
from fixbot.pipeline.sequence import SequenceAllocator
from fixbot.pipeline.tenant import TenantResolver


class TestSequenceAllocator:
    async def test_fresh_counter_counts_from_one(self, allocator, workspace):
        values = [await allocator.next(workspace.id) for _ in range(10)]
        assert values == list(range(1, 11))

    async def test_counter_row_tracks_last_value(self, session_factory, allocator, workspace):
        for _ in range(3):
            await allocator.next(workspace.id)
        async with session_factory() as db:
            counter = (await db.execute(select(WorkspaceCounter))).scalar_one()
        assert counter.counter_type == "task_number"
        assert counter.current_value == 3

    async def test_workspaces_are_independent(self, session_factory, allocator, workspace):
        other = await TenantResolver(session_factory).upsert_workspace(
            "T9999WXYZ", "Other Team", None
        )
        assert await allocator.next(workspace.id) == 1
        assert await allocator.next(workspace.id) == 2
        assert await allocator.next(other.id) == 1

    async def test_counter_types_are_independent(self, allocator, workspace):
        assert await allocator.next(workspace.id) == 1
        assert await allocator.next(workspace.id, "release_number") == 1
        assert await allocator.next(workspace.id) == 2

    async def test_rolled_back_caller_transaction_releases_value(
        self, session_factory, workspace
    ):
        allocator = SequenceAllocator(session_factory)
        assert await allocator.next(workspace.id) == 1

        async with session_factory() as db:
            assert await allocator.next(workspace.id, db=db) == 2
            await db.rollback()

        assert await allocator.next(workspace.id) == 2
