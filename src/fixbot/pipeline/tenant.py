"""Tenant context resolution.

Maps Slack team ids to workspaces and Slack channel ids to their
(optional) repository binding. Workspaces are created on install and
patched on re-install; this module never deletes them.
"""

from __future__ import annotations

import re
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fixbot.db.models import (
    DEFAULT_WORKSPACE_SETTINGS,
    ChannelMapping,
    User,
    Workspace,
    utcnow,
)

logger = structlog.get_logger()

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify_team(team_name: str, team_id: str) -> str:
    """Slugified team name plus the last 4 characters of the team id.

    >>> slugify_team("Acme Corp!", "T0123ABCD")
    'acme-corp-ABCD'
    """
    base = _NON_SLUG_RE.sub("-", team_name.lower()).strip("-") or "workspace"
    return f"{base}-{team_id[-4:]}"


class TenantResolver:
    """Lookups for workspace, channel mapping and member records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve_workspace(self, slack_team_id: str) -> Workspace | None:
        """Return the workspace for a Slack team, or None if not installed."""
        async with self._session_factory() as db:
            return await self._find_workspace(db, slack_team_id)

    async def resolve_channel(self, slack_channel_id: str) -> ChannelMapping | None:
        """Channel-to-repository binding. Absence is normal."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChannelMapping).where(
                    ChannelMapping.slack_channel_id == slack_channel_id
                )
            )
            return result.scalars().first()

    async def resolve_user(
        self, workspace_id: UUID, slack_user_id: str
    ) -> User | None:
        async with self._session_factory() as db:
            return await find_user(db, workspace_id, slack_user_id)

    async def upsert_workspace(
        self, slack_team_id: str, slack_team_name: str, bot_user_id: str | None
    ) -> Workspace:
        """Create the workspace on first install, or refresh its name/bot id."""
        async with self._session_factory() as db:
            workspace = await self._find_workspace(db, slack_team_id)

            if workspace is not None:
                workspace.slack_team_name = slack_team_name
                workspace.slack_bot_user_id = bot_user_id
                workspace.updated_at = utcnow()
                await db.commit()
                logger.info(
                    "workspace_updated",
                    team_id=slack_team_id,
                    workspace_id=str(workspace.id),
                )
                return workspace

            try:
                workspace = Workspace(
                    name=slack_team_name,
                    slug=slugify_team(slack_team_name, slack_team_id),
                    slack_team_id=slack_team_id,
                    slack_team_name=slack_team_name,
                    slack_bot_user_id=bot_user_id,
                    settings=dict(DEFAULT_WORKSPACE_SETTINGS),
                )
                db.add(workspace)
                await db.commit()
                logger.info(
                    "workspace_created",
                    team_id=slack_team_id,
                    slug=workspace.slug,
                )
            except IntegrityError:
                await db.rollback()
                # Race condition: another install created it, fetch it
                workspace = await self._find_workspace(db, slack_team_id)
                if workspace is None:
                    raise
                logger.info("workspace_create_race_lost", team_id=slack_team_id)
            return workspace

    @staticmethod
    async def _find_workspace(db: AsyncSession, slack_team_id: str) -> Workspace | None:
        result = await db.execute(
            select(Workspace).where(Workspace.slack_team_id == slack_team_id)
        )
        return result.scalars().first()


async def find_user(
    db: AsyncSession, workspace_id: UUID | None, slack_user_id: str
) -> User | None:
    """Best-effort member lookup. No match is not an error."""
    query = select(User).where(User.slack_user_id == slack_user_id)
    if workspace_id is not None:
        query = query.where(User.workspace_id == workspace_id)
    result = await db.execute(query)
    return result.scalars().first()
