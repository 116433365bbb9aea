"""fixbot application entry point: Slack Bolt + FastAPI.

Architecture:
- FastAPI for health checks, the Slack events endpoint and OAuth installs
- Slack Bolt for Slack events via Socket Mode or HTTP
- Async SQLAlchemy for database operations

Nothing talks to Slack or the database at import time; ``create_api`` and
``create_bolt_app`` build the wiring from settings.
"""

from __future__ import annotations

import logging
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import certifi
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slack_bolt.adapter.fastapi.async_handler import AsyncSlackRequestHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from fixbot import __version__
from fixbot.config import settings
from fixbot.core.llm import close_llm_client
from fixbot.core.orchestrator import BotOrchestrator, build_orchestrator
from fixbot.db.session import close_db, get_session_factory
from fixbot.infra.circuit_breaker import get_extraction_breaker
from fixbot.pipeline.tenant import TenantResolver
from fixbot.slack.handlers import register_handlers
from fixbot.slack.sender import SlackSender

logger = structlog.get_logger()


def configure_logging() -> None:
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if settings.env == "production"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


configure_logging()

# aiohttp ignores SSL_CERT_FILE, so Slack clients get certifi's bundle explicitly
_ssl_ctx = ssl.create_default_context(cafile=certifi.where())


# ═══════════════════════════════════════════════════════════════════════════════
# SLACK BOLT APP
# ═══════════════════════════════════════════════════════════════════════════════

def create_bolt_app(
    orchestrator: BotOrchestrator | None = None,
    process_before_response: bool = True,
) -> AsyncApp:
    """Bolt app with fixbot's handlers registered.

    HTTP mode needs ``process_before_response`` so the handler finishes
    before Slack's request is answered; Socket Mode acks first.
    """
    web_client = AsyncWebClient(token=settings.slack_bot_token or None, ssl=_ssl_ctx)
    bolt = AsyncApp(
        client=web_client,
        signing_secret=settings.slack_signing_secret,
        process_before_response=process_before_response,
    )
    if orchestrator is None:
        orchestrator = build_orchestrator(
            get_session_factory(), sender=SlackSender(client=web_client)
        )
    register_handlers(bolt, orchestrator)
    logger.info("bolt_app_created", process_before_response=process_before_response)
    return bolt


# ═══════════════════════════════════════════════════════════════════════════════
# FASTAPI APP
# ═══════════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info("app_starting", env=settings.env, version=__version__)
    yield
    logger.info("app_shutting_down")
    await close_llm_client()
    await close_db()


def create_api(bolt: AsyncApp | None = None) -> FastAPI:
    """FastAPI app for HTTP mode (``uvicorn --factory fixbot.app:create_api``)."""
    api = FastAPI(
        title="fixbot",
        version=__version__,
        description="Slack bot that turns chat into tracked tasks",
        lifespan=lifespan,
    )
    handler = AsyncSlackRequestHandler(bolt or create_bolt_app())

    @api.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "fixbot",
            "extraction_breaker": get_extraction_breaker().snapshot(),
        }

    @api.post("/slack/events")
    async def slack_events(req: Request) -> Response:
        """Slack events endpoint for HTTP mode.

        In Socket Mode, this is not used. Bolt handles events via WebSocket.
        """
        return await handler.handle(req)

    @api.get("/slack/oauth/callback")
    async def slack_oauth_callback(
        code: str | None = None, error: str | None = None
    ) -> JSONResponse:
        """Finish an app install and onboard the workspace."""
        if error or not code:
            logger.warning("slack_oauth_denied", error=error)
            return JSONResponse({"ok": False, "error": error or "missing_code"}, status_code=400)

        client = AsyncWebClient(ssl=_ssl_ctx)
        try:
            response = await client.oauth_v2_access(
                client_id=settings.slack_client_id,
                client_secret=settings.slack_client_secret,
                code=code,
            )
        except SlackApiError as e:
            slack_error = e.response.get("error") if e.response is not None else str(e)
            logger.error("slack_oauth_failed", error=slack_error)
            return JSONResponse({"ok": False, "error": slack_error}, status_code=400)

        team = response.get("team") or {}
        if not team.get("id"):
            logger.error("slack_oauth_missing_team")
            return JSONResponse({"ok": False, "error": "missing_team"}, status_code=400)

        workspace = await TenantResolver(get_session_factory()).upsert_workspace(
            team["id"], team.get("name") or team["id"], response.get("bot_user_id")
        )
        logger.info("slack_app_installed", team_id=team["id"], slug=workspace.slug)
        return JSONResponse({"ok": True, "workspace": workspace.slug})

    return api
