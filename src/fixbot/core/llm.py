"""LLM client backing task extraction.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (OpenRouter
by default). The pipeline only needs one capability from it:
``generate(prompt) -> GenerateResult``. Transport errors, non-2xx
responses and malformed bodies all surface as ``ExtractionServiceError``
so the extractor has a single failure type to catch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol

import certifi
import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from fixbot.config import LLMPresets, settings

logger = structlog.get_logger()

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class GenerateResult:
    text: str
    model: str = ""
    usage: dict[str, int] | None = None


class ExtractionServiceError(Exception):
    """Extraction service call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionService(Protocol):
    model: str

    async def generate(self, prompt: str) -> GenerateResult: ...


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ExtractionServiceError) and exc.status_code in _RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, httpx.ReadTimeout | httpx.ConnectTimeout | httpx.PoolTimeout):
        return True
    return False


class LLMClient:
    """HTTP client for single-turn completions."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        api_key = api_key if api_key is not None else settings.openrouter_api_key
        if not api_key and client is None:
            raise RuntimeError(
                "FIXBOT_OPENROUTER_API_KEY not set. "
                "Add api_key to keys.json under openrouter."
            )
        self.model = model or settings.extraction_model

        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.openrouter_base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "X-Title": "fixbot",
            },
            verify=certifi.where(),
            timeout=httpx.Timeout(
                connect=5.0,
                read=settings.llm_read_timeout,
                write=5.0,
                pool=15.0,
            ),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("llm_client_closed")

    async def generate(self, prompt: str) -> GenerateResult:
        """Send ``prompt`` as the sole user turn and return the reply text."""
        preset = LLMPresets.EXTRACTION
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": preset.temperature,
            "max_tokens": preset.max_tokens,
        }

        @retry(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            reraise=True,
        )
        async def _do_request() -> GenerateResult:
            try:
                t0 = time.monotonic()
                response = await self._client.post("/chat/completions", json=payload)
                llm_ms = round((time.monotonic() - t0) * 1000)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error(
                    "llm_generate_failed",
                    status_code=status,
                    response=e.response.text[:500],
                )
                raise ExtractionServiceError(
                    f"Completion failed: {status}", status_code=status
                )
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                logger.warning("llm_generate_timeout", error=str(e))
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.error("llm_generate_error", error=str(e))
                raise ExtractionServiceError(f"Completion error: {e}")

            choices = data.get("choices") if isinstance(data, dict) else None
            if not choices:
                raise ExtractionServiceError("Completion response has no choices")
            message = choices[0].get("message") or {}
            content = message.get("content")
            if not isinstance(content, str):
                raise ExtractionServiceError("Completion response has no text content")

            logger.info(
                "llm_generate_success",
                model=self.model,
                llm_ms=llm_ms,
                content_length=len(content),
            )
            return GenerateResult(text=content, model=self.model, usage=data.get("usage"))

        try:
            return await _do_request()
        except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise ExtractionServiceError(f"Completion timed out: {e}") from e


_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


async def close_llm_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
