"""Tests for tenant resolution and workspace onboarding."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from fixbot.db.models import Workspace
from fixbot.pipeline.tenant import TenantResolver, slugify_team


class TestSlugifyTeam:
    @pytest.mark.parametrize(
        ("name", "team_id", "expected"),
        [
            ("Acme Corp!", "T0123ABCD", "acme-corp-ABCD"),
            ("  Fix   Crew ", "T0000WXYZ", "fix-crew-WXYZ"),
            ("Ünïcode Team", "TAAAA1234", "n-code-team-1234"),
            ("!!!", "T00009876", "workspace-9876"),
        ],
    )
    def test_slugify(self, name, team_id, expected):
        assert slugify_team(name, team_id) == expected


class TestTenantResolver:
    async def test_unknown_team_is_none(self, session_factory):
        resolver = TenantResolver(session_factory)
        assert await resolver.resolve_workspace("TNOPE") is None

    async def test_upsert_creates(self, session_factory):
        resolver = TenantResolver(session_factory)
        ws = await resolver.upsert_workspace("T0123ABCD", "Acme Corp", "UBOT")

        assert ws.slug == "acme-corp-ABCD"
        assert ws.slack_bot_user_id == "UBOT"
        assert ws.settings == {"aiExtractionEnabled": True}

        resolved = await resolver.resolve_workspace("T0123ABCD")
        assert resolved is not None
        assert resolved.id == ws.id

    async def test_upsert_patches_existing(self, session_factory):
        resolver = TenantResolver(session_factory)
        first = await resolver.upsert_workspace("T0123ABCD", "Acme Corp", "UBOT")
        second = await resolver.upsert_workspace("T0123ABCD", "Acme Inc", "UBOT2")

        assert second.id == first.id
        assert second.slack_team_name == "Acme Inc"
        assert second.slack_bot_user_id == "UBOT2"
        # slug stays stable across renames
        assert second.slug == "acme-corp-ABCD"

        async with session_factory() as db:
            count = (await db.execute(select(func.count(Workspace.id)))).scalar_one()
        assert count == 1

    async def test_channel_mapping_lookup(self, session_factory, channel_mapping):
        resolver = TenantResolver(session_factory)
        mapping = await resolver.resolve_channel(channel_mapping.slack_channel_id)
        assert mapping is not None
        assert mapping.slack_channel_name == "bugs"
        assert mapping.repository_id is not None

    async def test_unmapped_channel_is_none(self, session_factory, workspace):
        resolver = TenantResolver(session_factory)
        assert await resolver.resolve_channel("CUNMAPPED") is None

    async def test_resolve_user_scoped_to_workspace(self, session_factory, member):
        resolver = TenantResolver(session_factory)
        other = await resolver.upsert_workspace("T9999WXYZ", "Other", "UBOT9")

        found = await resolver.resolve_user(member.workspace_id, member.slack_user_id)
        assert found is not None and found.id == member.id
        assert await resolver.resolve_user(other.id, member.slack_user_id) is None

    async def test_workspace_fixture_prefix(self, workspace):
        assert workspace.slack_team_id == "T0000ABCD"
        assert workspace.task_prefix == "FIX"


class _LateLookupResolver(TenantResolver):
    """First lookup misses, as if another install committed right after it."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.lookups = 0

    async def _find_workspace(self, db, slack_team_id):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await TenantResolver._find_workspace(db, slack_team_id)


class TestConcurrentInstall:
    async def test_lost_create_returns_existing_workspace(self, session_factory):
        winner = await TenantResolver(session_factory).upsert_workspace(
            "T0123ABCD", "Acme Corp", "UBOT"
        )

        racer = _LateLookupResolver(session_factory)
        ws = await racer.upsert_workspace("T0123ABCD", "Acme Corp", "UBOT")

        assert racer.lookups == 2
        assert ws.id == winner.id
        assert ws.slug == "acme-corp-ABCD"
        async with session_factory() as db:
            count = (await db.execute(select(func.count(Workspace.id)))).scalar_one()
        assert count == 1
