"""Per-event control flow.

    Received → Deduped → TenantResolved → (Extracted | Replied) → Done

Every gate can end the event early. Within one event the steps run
strictly in order (dedup check, dedup claim, then any side effect).
Thread replies are matched to a task before they are claimed, so a
reply outside a task thread leaves no trace. Different events are
handled concurrently with no shared state besides
the dedup ledger and the sequence counters.
"""

from __future__ import annotations

import re
from enum import Enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog.typing import FilteringBoundLogger

from fixbot.config import settings
from fixbot.core.agent import HELP_TEXT, FixbotAgent
from fixbot.core.llm import get_llm_client
from fixbot.core.types import AgentContext, EventType, InboundEvent
from fixbot.extraction import AIExtractor, FallbackExtractor, TaskExtractor
from fixbot.infra.circuit_breaker import get_extraction_breaker
from fixbot.pipeline.dedup import EventDeduplicator
from fixbot.pipeline.output import process_output
from fixbot.pipeline.sequence import SequenceAllocator
from fixbot.pipeline.tenant import TenantResolver
from fixbot.slack.sender import ChatSender, SlackSender
from fixbot.tasks.repository import TaskRepository

logger = structlog.get_logger()

APOLOGY_TEXT = "Sorry, I encountered an error processing your request. Please try again."


class EventOutcome(str, Enum):
    DUPLICATE = "duplicate"
    UNKNOWN_TENANT = "unknown_tenant"
    HELP = "help"
    REPLIED = "replied"
    FAILED = "failed"
    LINKED = "linked"
    DROPPED = "dropped"


def strip_bot_mention(text: str, bot_user_id: str | None) -> str:
    """Remove every ``<@BOT>`` token (case-insensitive) and trim."""
    if bot_user_id:
        text = re.sub(rf"<@{re.escape(bot_user_id)}>", "", text, flags=re.IGNORECASE)
    return text.strip()


class BotOrchestrator:
    def __init__(
        self,
        dedup: EventDeduplicator,
        tenants: TenantResolver,
        agent: FixbotAgent,
        repository: TaskRepository,
        sender: ChatSender,
    ) -> None:
        self._dedup = dedup
        self._tenants = tenants
        self._agent = agent
        self._repository = repository
        self._sender = sender

    async def handle_event(self, event: InboundEvent) -> EventOutcome:
        log = logger.bind(event_id=event.event_id, event_type=event.event_type.value)

        if event.event_type is EventType.THREAD_REPLY:
            try:
                return await self._handle_thread_reply(event, log)
            except Exception:
                log.exception("thread_reply_failed")
                return EventOutcome.FAILED

        try:
            if not await self._claim(event, log):
                return EventOutcome.DUPLICATE
            return await self._handle_mention(event, log)
        except Exception:
            log.exception("event_handling_failed")
            await self._reply(event, APOLOGY_TEXT)
            return EventOutcome.FAILED

    async def _claim(self, event: InboundEvent, log: FilteringBoundLogger) -> bool:
        if await self._dedup.has_processed(event.event_id):
            log.debug("event_already_processed")
            return False
        if not await self._dedup.mark_processed(event.event_id, event.event_type.value):
            log.debug("event_claimed_elsewhere")
            return False
        return True

    async def _handle_mention(
        self, event: InboundEvent, log: FilteringBoundLogger
    ) -> EventOutcome:
        workspace = await self._tenants.resolve_workspace(event.team_id)
        if workspace is None:
            log.warning("workspace_not_found", team_id=event.team_id)
            return EventOutcome.UNKNOWN_TENANT

        mapping = await self._tenants.resolve_channel(event.channel_id)
        clean_text = strip_bot_mention(event.text, workspace.slack_bot_user_id)

        if not clean_text:
            await self._reply(event, HELP_TEXT)
            return EventOutcome.HELP

        ctx = AgentContext(
            workspace_id=workspace.id,
            channel_id=event.channel_id,
            user_id=event.user_id,
            message_ts=event.message_ts,
            thread_ts=event.thread_ts,
            channel_name=mapping.slack_channel_name if mapping else None,
            repository_id=mapping.repository_id if mapping else None,
            ai_extraction_enabled=workspace.ai_extraction_enabled,
        )
        log.info(
            "app_mention",
            text=clean_text[:300],
            channel=event.channel_id,
            workspace_id=str(workspace.id),
        )

        response = await self._agent.run(clean_text, ctx)
        await self._reply(event, response)
        return EventOutcome.REPLIED

    async def _handle_thread_reply(
        self, event: InboundEvent, log: FilteringBoundLogger
    ) -> EventOutcome:
        workspace = await self._tenants.resolve_workspace(event.team_id)
        if workspace is None:
            log.warning("workspace_not_found", team_id=event.team_id)
            return EventOutcome.UNKNOWN_TENANT

        task = await self._repository.find_by_thread(
            workspace.id, event.channel_id, event.thread_ts
        )
        if task is None:
            log.debug("thread_reply_not_task_thread", thread_ts=event.thread_ts)
            return EventOutcome.DROPPED

        # Claimed only once a task owns the thread.
        if not await self._claim(event, log):
            return EventOutcome.DUPLICATE

        await self._repository.add_message(
            task.id, event.text, event.user_id, event.message_ts
        )
        log.info("thread_reply_linked", display_id=task.display_id)
        return EventOutcome.LINKED

    async def _reply(self, event: InboundEvent, text: str) -> None:
        await self._sender.send_message(
            channel_id=event.channel_id,
            text=process_output(text),
            thread_ts=event.thread_ts,
        )


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    extractor: TaskExtractor | None = None,
    sender: ChatSender | None = None,
) -> BotOrchestrator:
    """Wire the pipeline from settings.

    Without an extraction API key the agent runs on the heuristic
    extractor alone.
    """
    if extractor is None:
        if settings.openrouter_api_key:
            extractor = AIExtractor(
                get_llm_client(),
                timeout_s=settings.extraction_timeout_s,
                breaker=get_extraction_breaker(),
            )
        else:
            logger.warning("extraction_service_not_configured")
            extractor = FallbackExtractor()

    repository = TaskRepository(session_factory, SequenceAllocator(session_factory))
    return BotOrchestrator(
        dedup=EventDeduplicator(session_factory),
        tenants=TenantResolver(session_factory),
        agent=FixbotAgent(extractor, repository),
        repository=repository,
        sender=sender or SlackSender(),
    )
