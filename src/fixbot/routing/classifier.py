"""Intent classifier for cleaned mentions.

Decides what a mention is asking for: board summary, status change,
assignment, help, or (the default) a new task. Pure regex, zero network
calls, so routing never depends on the extraction service being up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import structlog

from fixbot.db.models import TaskStatus

logger = structlog.get_logger()


class IntentKind(str, Enum):
    HELP = "help"
    SUMMARIZE = "summarize"
    UPDATE_STATUS = "update_status"
    ASSIGN = "assign"
    CREATE_TASK = "create_task"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    display_id: str | None = None
    status: TaskStatus | None = None
    assignee: str | None = None


_DISPLAY_ID = r"(?<![\w-])([A-Za-z0-9][A-Za-z0-9-]{0,2}-\d+)\b"

_HELP_RE = re.compile(r"^(?:help|hi|hello|hey)\b[\s!.?]*$", re.IGNORECASE)
_SUMMARY_RE = re.compile(
    r"^(?:please\s+)?(?:summari[sz]e|summary|overview|status report|board)\b",
    re.IGNORECASE,
)
_ASSIGN_RE = re.compile(
    rf"^assign\s+{_DISPLAY_ID}\s+to\s+<@(\w+)(?:\|[^>]*)?>",
    re.IGNORECASE,
)
_STATUS_VERB_RE = re.compile(
    rf"^(?:mark|move|set|put)\s+{_DISPLAY_ID}\s+(?:as\s+|to\s+|in\s+|into\s+)?(.+)$",
    re.IGNORECASE,
)

# Phrase → status, checked in order against the tail of a status command.
_STATUS_PHRASES: list[tuple[re.Pattern[str], TaskStatus]] = [
    (re.compile(r"^(?:done|complete[d]?|finished|closed|resolved|fixed)\b"), TaskStatus.DONE),
    (re.compile(r"^(?:(?:in[\s_-]?)?review|reviewing)\b"), TaskStatus.IN_REVIEW),
    (re.compile(r"^(?:(?:in[\s_-]?)?progress|started|doing|wip)\b"), TaskStatus.IN_PROGRESS),
    (re.compile(r"^(?:to[\s_-]?do|todo|ready)\b"), TaskStatus.TODO),
    (re.compile(r"^(?:backlog)\b"), TaskStatus.BACKLOG),
]


def parse_status(phrase: str) -> TaskStatus | None:
    """Map a free-text status phrase ("in progress", "done") to a TaskStatus."""
    cleaned = phrase.strip().strip(".!").lower()
    for pattern, status in _STATUS_PHRASES:
        if pattern.match(cleaned):
            return status
    return None


class IntentClassifier:
    """Regex-based routing for bot commands."""

    def classify(self, text: str) -> Intent:
        stripped = text.strip()

        if not stripped or _HELP_RE.match(stripped):
            return Intent(IntentKind.HELP)

        if _SUMMARY_RE.match(stripped):
            return Intent(IntentKind.SUMMARIZE)

        match = _ASSIGN_RE.match(stripped)
        if match:
            return Intent(
                IntentKind.ASSIGN,
                display_id=match.group(1).upper(),
                assignee=match.group(2),
            )

        match = _STATUS_VERB_RE.match(stripped)
        if match:
            status = parse_status(match.group(2))
            if status is not None:
                return Intent(
                    IntentKind.UPDATE_STATUS,
                    display_id=match.group(1).upper(),
                    status=status,
                )

        return Intent(IntentKind.CREATE_TASK)


_classifier: IntentClassifier | None = None


def get_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier
