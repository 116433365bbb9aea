"""Shared types for the ingestion pipeline.

Kept in a separate file to avoid circular imports between the agent,
the orchestrator and the task repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from fixbot.db.models import Task, TaskPriority, TaskStatus, TaskType


class EventType(str, Enum):
    MENTION = "mention"
    THREAD_REPLY = "thread_reply"


@dataclass(frozen=True)
class InboundEvent:
    """A verified Slack event, reduced to what the pipeline needs."""

    team_id: str
    channel_id: str
    user_id: str
    text: str
    message_ts: str
    thread_ts: str
    event_id: str
    event_type: EventType


@dataclass
class TaskDraft:
    """Extracted-but-unpersisted task candidate."""

    title: str
    description: str
    priority: str = TaskPriority.MEDIUM.value
    task_type: str = TaskType.TASK.value
    confidence: float = 0.5
    code_context: dict[str, Any] | None = None
    extracted_by: str = "fallback"


@dataclass(frozen=True)
class CreatedTask:
    task_id: UUID
    display_id: str


@dataclass(frozen=True)
class StatusChange:
    task_id: UUID
    display_id: str
    old_status: TaskStatus
    new_status: TaskStatus


@dataclass
class BoardSummary:
    """Tasks grouped by board column, plus priority counts."""

    columns: dict[TaskStatus, list[Task]] = field(
        default_factory=lambda: {status: [] for status in TaskStatus}
    )
    by_priority: dict[TaskPriority, int] = field(
        default_factory=lambda: {priority: 0 for priority in TaskPriority}
    )

    @property
    def total(self) -> int:
        return sum(len(tasks) for tasks in self.columns.values())


@dataclass(frozen=True)
class AgentContext:
    """Everything the agent needs to act on one cleaned mention."""

    workspace_id: UUID
    channel_id: str
    user_id: str
    message_ts: str
    thread_ts: str
    channel_name: str | None = None
    repository_id: UUID | None = None
    ai_extraction_enabled: bool = True


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: str | None = None
