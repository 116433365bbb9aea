"""Outbound Slack messages.

Sending is fire-and-report: failures are logged and returned as a
``SendResult``, never raised and never retried. Slack only expects the
inbound event to be acknowledged; a lost reply is recoverable from the
board.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from fixbot.config import settings
from fixbot.core.types import SendResult

logger = structlog.get_logger()


class ChatSender(Protocol):
    async def send_message(
        self,
        channel_id: str,
        text: str,
        thread_ts: str | None = None,
        blocks: list[dict[str, Any]] | None = None,
    ) -> SendResult: ...


class SlackSender:
    """``chat.postMessage`` with the bot token from settings."""

    def __init__(
        self,
        token: str | None = None,
        client: AsyncWebClient | None = None,
    ) -> None:
        self._token = token if token is not None else settings.slack_bot_token
        self._client = client
        if self._client is None and self._token:
            self._client = AsyncWebClient(token=self._token)

    async def send_message(
        self,
        channel_id: str,
        text: str,
        thread_ts: str | None = None,
        blocks: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        if not self._token or self._client is None:
            logger.error("slack_bot_token_not_configured", channel=channel_id)
            return SendResult(ok=False, error="not_configured")

        try:
            response = await self._client.chat_postMessage(
                channel=channel_id,
                thread_ts=thread_ts,
                text=text,
                blocks=blocks,
            )
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            logger.error("slack_send_failed", channel=channel_id, error=error)
            return SendResult(ok=False, error=error or "slack_api_error")
        except Exception as e:
            logger.error(
                "slack_send_error",
                channel=channel_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SendResult(ok=False, error=str(e))

        if not response.get("ok", False):
            error = response.get("error", "unknown_error")
            logger.error("slack_send_not_ok", channel=channel_id, error=error)
            return SendResult(ok=False, error=error)

        logger.debug("slack_message_sent", channel=channel_id, thread_ts=thread_ts)
        return SendResult(ok=True)
