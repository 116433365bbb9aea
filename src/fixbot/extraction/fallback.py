"""Deterministic task extraction.

Used whenever the model path is unavailable, times out, or returns
something that cannot be parsed. Keyword rules are evaluated in order
and the first match wins, so "urgent, minor glitch" is critical.
"""

from __future__ import annotations

import re

from fixbot.core.types import TaskDraft
from fixbot.db.models import TaskPriority, TaskType
from fixbot.extraction.prompt import MAX_TITLE_CHARS

FALLBACK_CONFIDENCE = 0.5
FALLBACK_MODEL = "fallback"

_PRIORITY_RULES: list[tuple[tuple[str, ...], TaskPriority]] = [
    (("urgent", "asap", "critical", "production down"), TaskPriority.CRITICAL),
    (("important", "blocking"), TaskPriority.HIGH),
    (("minor", "nice to have"), TaskPriority.LOW),
]

_TYPE_RULES: list[tuple[tuple[str, ...], TaskType]] = [
    (("bug", "broken", "not working", "error", "crash", "fails"), TaskType.BUG),
    (("feature", "add ", "new "), TaskType.FEATURE),
    (("improve", "enhance", "update"), TaskType.IMPROVEMENT),
    (("?", "how", "why"), TaskType.QUESTION),
]

# A path-ish token with a short alphabetic extension, bounded by
# whitespace, "(" / ")" / ":" or the string edges.
_FILE_PATH_RE = re.compile(
    r"(?:^|[\s(])([.\w/-]+\.[a-z]{1,4})(?:[\s):]|$)",
    re.IGNORECASE | re.ASCII,
)
_CODE_EXTENSIONS = (".ts", ".tsx", ".js")
_SENTENCE_END_RE = re.compile(r"[.!?\n]")


def detect_priority(text: str) -> TaskPriority:
    lower = text.lower()
    for keywords, priority in _PRIORITY_RULES:
        if any(k in lower for k in keywords):
            return priority
    return TaskPriority.MEDIUM


def detect_task_type(text: str) -> TaskType:
    lower = text.lower()
    for keywords, task_type in _TYPE_RULES:
        if any(k in lower for k in keywords):
            return task_type
    return TaskType.TASK


def extract_file_paths(text: str) -> list[str]:
    """File references in order of appearance, duplicates kept."""
    paths: list[str] = []
    for match in _FILE_PATH_RE.finditer(text):
        candidate = match.group(1)
        if "/" in candidate or candidate.endswith(_CODE_EXTENSIONS):
            paths.append(candidate)
    return paths


def make_title(text: str) -> str:
    title = _SENTENCE_END_RE.split(text, maxsplit=1)[0].strip()
    if len(title) > MAX_TITLE_CHARS:
        title = title[: MAX_TITLE_CHARS - 3] + "..."
    return title


def fallback_extraction(text: str) -> TaskDraft:
    file_paths = extract_file_paths(text)
    return TaskDraft(
        title=make_title(text),
        description=text,
        priority=detect_priority(text).value,
        task_type=detect_task_type(text).value,
        confidence=FALLBACK_CONFIDENCE,
        code_context={"filePaths": file_paths} if file_paths else None,
        extracted_by=FALLBACK_MODEL,
    )


class FallbackExtractor:
    """TaskExtractor that never calls out."""

    model = FALLBACK_MODEL

    async def extract(self, text: str, channel_context: str | None = None) -> TaskDraft:
        return fallback_extraction(text)
