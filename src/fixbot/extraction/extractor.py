"""Model-backed task extraction.

The model is asked for one JSON object. Whatever comes back is treated
as untrusted: the first balanced ``{...}`` region is parsed and every
field is coerced by ``draft_from_payload``. If the call fails, times
out, or yields nothing parseable, extraction degrades to the heuristic
rules in ``fallback.py`` applied to the user's original text.
"""

from __future__ import annotations

import asyncio
import json
import math
from typing import Any, Protocol

import structlog

from fixbot.core.llm import ExtractionService, ExtractionServiceError
from fixbot.core.types import TaskDraft
from fixbot.db.models import TaskPriority, TaskType
from fixbot.extraction.fallback import fallback_extraction
from fixbot.extraction.prompt import MAX_TITLE_CHARS, build_extraction_prompt
from fixbot.infra.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger()

DEFAULT_CONFIDENCE = 0.7

_VALID_PRIORITIES = frozenset(p.value for p in TaskPriority)
_VALID_TASK_TYPES = frozenset(t.value for t in TaskType)


class TaskExtractor(Protocol):
    async def extract(self, text: str, channel_context: str | None = None) -> TaskDraft: ...


def find_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` region of ``text``.

    Braces inside JSON string literals are ignored. Returns None when no
    opening brace is ever closed.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def _coerce_choice(value: Any, valid: frozenset[str], default: str) -> str:
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in valid:
            return normalized
    return default


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return DEFAULT_CONFIDENCE
    else:
        return DEFAULT_CONFIDENCE
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return min(max(number, 0.0), 1.0)


def draft_from_payload(
    payload: dict[str, Any], original_text: str, model: str = ""
) -> TaskDraft:
    """Coerce an untrusted model payload into a TaskDraft. Never raises."""
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        title = original_text
    description = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        description = original_text

    # codeContext is stored as-is; the task schema owns its shape.
    return TaskDraft(
        title=title[:MAX_TITLE_CHARS],
        description=description,
        priority=_coerce_choice(
            payload.get("priority"), _VALID_PRIORITIES, TaskPriority.MEDIUM.value
        ),
        task_type=_coerce_choice(
            payload.get("taskType"), _VALID_TASK_TYPES, TaskType.TASK.value
        ),
        confidence=_coerce_confidence(payload.get("confidence")),
        code_context=payload.get("codeContext") or None,
        extracted_by=model,
    )


def parse_extraction_response(
    response_text: str, original_text: str, model: str = ""
) -> TaskDraft | None:
    """Parse a raw model reply. None means "no usable output"."""
    candidate = find_json_object(response_text)
    if candidate is None:
        return None
    try:
        payload = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    return draft_from_payload(payload, original_text, model)


class AIExtractor:
    """TaskExtractor backed by the extraction service.

    ``extract`` never raises: every failure path returns the fallback
    draft for the original input.
    """

    def __init__(
        self,
        service: ExtractionService,
        timeout_s: float,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._service = service
        self._timeout_s = timeout_s
        self._breaker = breaker

    @property
    def model(self) -> str:
        return getattr(self._service, "model", "") or "unknown"

    async def extract(self, text: str, channel_context: str | None = None) -> TaskDraft:
        prompt = build_extraction_prompt(text, channel_context)
        try:
            response_text = await self._call(prompt)
        except CircuitOpenError:
            logger.info("extraction_skipped_breaker_open", model=self.model)
            return fallback_extraction(text)
        except (ExtractionServiceError, asyncio.TimeoutError) as e:
            logger.warning(
                "extraction_failed_using_fallback",
                model=self.model,
                error=str(e) or type(e).__name__,
            )
            return fallback_extraction(text)
        except Exception as e:
            logger.warning(
                "extraction_unexpected_error",
                model=self.model,
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_extraction(text)

        draft = parse_extraction_response(response_text, text, self.model)
        if draft is None:
            logger.warning(
                "extraction_unparseable_using_fallback",
                model=self.model,
                response=response_text[:300],
            )
            return fallback_extraction(text)

        logger.info(
            "extraction_complete",
            model=self.model,
            priority=draft.priority,
            task_type=draft.task_type,
            confidence=draft.confidence,
        )
        return draft

    async def _call(self, prompt: str) -> str:
        if self._breaker is None:
            return await self._generate(prompt)
        async with self._breaker:
            return await self._generate(prompt)

    async def _generate(self, prompt: str) -> str:
        result = await asyncio.wait_for(
            self._service.generate(prompt), timeout=self._timeout_s
        )
        return result.text
