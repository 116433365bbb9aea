"""Slack event handlers for fixbot.

Handles:
- App mentions (@fixbot) → task commands / task creation
- Thread replies in channels → messages on the task that owns the thread

Bolt payloads are reduced to ``InboundEvent`` here; everything after
that lives in the orchestrator.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
from slack_bolt.async_app import AsyncApp, AsyncBoltContext

from fixbot.core.orchestrator import BotOrchestrator
from fixbot.core.types import EventType, InboundEvent

logger = structlog.get_logger()

_IGNORED_SUBTYPES = frozenset({
    "message_changed", "message_deleted",
    "channel_join", "channel_leave",
    "bot_message",
})


def _event_id(body: dict[str, Any], event: dict[str, Any]) -> str:
    return body.get("event_id") or event.get("client_msg_id") or event.get("ts", "")


def event_from_mention(body: dict[str, Any], event: dict[str, Any]) -> InboundEvent:
    ts = event.get("ts", "")
    return InboundEvent(
        team_id=body.get("team_id") or event.get("team", ""),
        channel_id=event.get("channel", ""),
        user_id=event.get("user", ""),
        text=event.get("text", ""),
        message_ts=ts,
        thread_ts=event.get("thread_ts") or ts,
        event_id=_event_id(body, event),
        event_type=EventType.MENTION,
    )


def event_from_message(
    body: dict[str, Any], event: dict[str, Any], bot_user_id: str | None
) -> InboundEvent | None:
    """Thread replies become events; everything else is ignored.

    Messages that mention the bot arrive again as ``app_mention`` and are
    left to that handler.
    """
    if event.get("subtype") in _IGNORED_SUBTYPES or event.get("bot_id"):
        return None
    if bot_user_id and event.get("user") == bot_user_id:
        return None

    thread_ts = event.get("thread_ts")
    ts = event.get("ts", "")
    if not thread_ts or thread_ts == ts:
        return None

    text = event.get("text", "")
    if not text.strip():
        return None
    if bot_user_id and re.search(rf"<@{re.escape(bot_user_id)}>", text, re.IGNORECASE):
        return None

    return InboundEvent(
        team_id=body.get("team_id") or event.get("team", ""),
        channel_id=event.get("channel", ""),
        user_id=event.get("user", ""),
        text=text,
        message_ts=ts,
        thread_ts=thread_ts,
        event_id=_event_id(body, event),
        event_type=EventType.THREAD_REPLY,
    )


def register_handlers(app: AsyncApp, orchestrator: BotOrchestrator) -> None:
    """Register all Slack event handlers with the Bolt app."""

    # ═══ APP MENTION (@fixbot) ══════════════════════════════════════════

    @app.event("app_mention")
    async def handle_app_mention(body: dict[str, Any], event: dict[str, Any]) -> None:
        inbound = event_from_mention(body, event)
        outcome = await orchestrator.handle_event(inbound)
        logger.debug("app_mention_done", event_id=inbound.event_id, outcome=outcome.value)

    # ═══ THREAD REPLIES ═════════════════════════════════════════════════

    @app.event("message")
    async def handle_message(
        body: dict[str, Any],
        event: dict[str, Any],
        context: AsyncBoltContext,
    ) -> None:
        inbound = event_from_message(body, event, context.get("bot_user_id"))
        if inbound is None:
            return
        outcome = await orchestrator.handle_event(inbound)
        logger.debug("thread_reply_done", event_id=inbound.event_id, outcome=outcome.value)
