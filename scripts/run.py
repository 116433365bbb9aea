#!/usr/bin/env python3
"""Run fixbot with Socket Mode (development) or HTTP mode (production).

Usage:
    python scripts/run.py              # Run with Socket Mode (default)
    python scripts/run.py --http       # Run HTTP mode with uvicorn
    python scripts/run.py --port 3000  # Custom port for HTTP mode
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from fixbot.config import settings

logger = structlog.get_logger()


def run_socket_mode() -> None:
    """Run fixbot with Socket Mode (WebSocket to Slack)."""
    import asyncio

    from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

    from fixbot.app import create_bolt_app
    from fixbot.core.llm import close_llm_client
    from fixbot.db.session import close_db

    logger.info("starting_fixbot", mode="socket_mode")

    async def _run() -> None:
        bolt = create_bolt_app(process_before_response=False)
        handler = AsyncSocketModeHandler(bolt, settings.slack_app_token)
        try:
            await handler.start_async()
        finally:
            await close_llm_client()
            await close_db()

    asyncio.run(_run())


def run_http_mode(port: int = 3000) -> None:
    """Run fixbot with HTTP mode (for production)."""
    import uvicorn

    logger.info("starting_fixbot", mode="http", port=port)

    uvicorn.run(
        "fixbot.app:create_api",
        factory=True,
        host="0.0.0.0",
        port=port,
        reload=(settings.env == "development"),
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Run fixbot Slack bot")
    parser.add_argument("--http", action="store_true", help="Use HTTP mode instead of Socket Mode")
    parser.add_argument("--port", type=int, default=3000, help="Port for HTTP mode")
    args = parser.parse_args()

    if not settings.slack_bot_token:
        logger.warning("slack_bot_token_missing", hint="set FIXBOT_SLACK_BOT_TOKEN")

    try:
        if args.http:
            run_http_mode(args.port)
        else:
            run_socket_mode()
        return 0
    except KeyboardInterrupt:
        logger.info("shutting_down", reason="keyboard_interrupt")
        return 0
    except Exception as e:
        logger.error("fatal_error", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
