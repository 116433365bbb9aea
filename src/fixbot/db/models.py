"""fixbot database models: multi-tenant task tracking schema.

Design principles:
- Every task-side table is scoped by workspace_id for tenant isolation
- JSON columns (JSONB on PostgreSQL) for code context and audit payloads
- Append-only audit tables (task_activity, messages, processed_slack_events)
- Unique constraints back the two contended check-then-write paths:
  the event ledger and the per-workspace counters
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB as _JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JSONB(TypeDecorator):
    """JSON column stored as JSONB on PostgreSQL, plain JSON elsewhere.

    Handles UUID, datetime and Enum serialization on the way in.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        """Convert Python objects to JSON-serializable format before storing."""
        if value is None:
            return None
        return json.loads(json.dumps(value, default=self._json_default))

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        return value

    @staticmethod
    def _json_default(obj: Any) -> Any:
        """JSON serializer for objects not serializable by default."""
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class Base(DeclarativeBase):
    """Declarative base with the shared column type mappings."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: JSONB,
        datetime: DateTime(timezone=True),
    }


def _enum_column(enum_cls: type[Enum]) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        values_callable=lambda x: [e.value for e in x],
        native_enum=False,
        length=32,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class TaskStatus(str, Enum):
    """Board columns, in display order."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskType(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"
    TASK = "task"
    QUESTION = "question"


class ActivityType(str, Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"


class TaskSource(str, Enum):
    SLACK = "slack"


DEFAULT_WORKSPACE_SETTINGS: dict[str, Any] = {"aiExtractionEnabled": True}
TASK_NUMBER_COUNTER = "task_number"


# ═══════════════════════════════════════════════════════════════════════════════
# CORE TENANT TABLES
# ═══════════════════════════════════════════════════════════════════════════════

class Workspace(Base):
    """One connected Slack team, the tenant isolation boundary."""

    __tablename__ = "workspaces"
    __table_args__ = (
        Index("ix_workspaces_slack_team_id", "slack_team_id", unique=True),
        Index("ix_workspaces_slug", "slug", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(
        String(120), nullable=False,
        comment="Slugified team name + last 4 chars of the team id"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slack_team_id: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Slack team ID (T1234567890)"
    )
    slack_team_name: Mapped[str] = mapped_column(String(255), nullable=False)
    slack_bot_user_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    settings: Mapped[dict[str, Any]] = mapped_column(
        JSONB, default=lambda: dict(DEFAULT_WORKSPACE_SETTINGS),
        comment="aiExtractionEnabled, defaultTaskPriority"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    users: Mapped[list["User"]] = relationship(back_populates="workspace")
    tasks: Mapped[list["Task"]] = relationship(back_populates="workspace")

    @property
    def task_prefix(self) -> str:
        """Display-id prefix: first three characters of the slug, upper-cased."""
        return self.slug[:3].upper() or "TSK"

    @property
    def ai_extraction_enabled(self) -> bool:
        return bool((self.settings or {}).get("aiExtractionEnabled", True))


class User(Base):
    """Workspace member known by their Slack user id."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("workspace_id", "slack_user_id", name="uix_user_workspace_slack"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    slack_user_id: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Slack user ID (U1234567890)"
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    workspace: Mapped[Workspace | None] = relationship(back_populates="users")


class Repository(Base):
    """Code repository a channel can be bound to."""

    __tablename__ = "repositories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="owner/name"
    )
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class ChannelMapping(Base):
    """Binds a Slack channel to a repository context. Managed by admins."""

    __tablename__ = "channel_mappings"
    __table_args__ = (
        Index("ix_channel_mappings_slack_channel", "slack_channel_id", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    slack_channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    slack_channel_name: Mapped[str] = mapped_column(String(255), nullable=False)
    repository_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ═══════════════════════════════════════════════════════════════════════════════
# INGESTION LEDGERS
# ═══════════════════════════════════════════════════════════════════════════════

class ProcessedEvent(Base):
    """One row per Slack event id ever handled. Never updated or deleted."""

    __tablename__ = "processed_slack_events"
    __table_args__ = (
        Index("ix_processed_slack_events_event_id", "event_id", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class WorkspaceCounter(Base):
    """Per-workspace monotonic counter (task numbers)."""

    __tablename__ = "workspace_counters"
    __table_args__ = (
        UniqueConstraint("workspace_id", "counter_type", name="uix_counter_workspace_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    counter_type: Mapped[str] = mapped_column(String(32), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════════════════════
# TASK TABLES
# ═══════════════════════════════════════════════════════════════════════════════

class Task(Base):
    """Trackable work item created from chat."""

    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("workspace_id", "display_id", name="uix_task_workspace_display"),
        Index("ix_tasks_workspace_status", "workspace_id", "status"),
        Index("ix_tasks_slack_thread", "workspace_id", "slack_channel_id", "slack_thread_ts"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    repository_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True
    )

    task_number: Mapped[int] = mapped_column(Integer, nullable=False)
    display_id: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="PREFIX-N, e.g. FIX-123"
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[TaskStatus] = mapped_column(
        _enum_column(TaskStatus), default=TaskStatus.BACKLOG, nullable=False
    )
    priority: Mapped[TaskPriority] = mapped_column(
        _enum_column(TaskPriority), default=TaskPriority.MEDIUM, nullable=False
    )
    task_type: Mapped[TaskType] = mapped_column(
        _enum_column(TaskType), default=TaskType.TASK, nullable=False
    )

    # Source (Slack message the task was created from)
    source_type: Mapped[TaskSource] = mapped_column(
        _enum_column(TaskSource), default=TaskSource.SLACK, nullable=False
    )
    slack_channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    slack_channel_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slack_message_ts: Mapped[str | None] = mapped_column(String(50), nullable=True)
    slack_thread_ts: Mapped[str | None] = mapped_column(String(50), nullable=True)

    code_context: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True,
        comment="filePaths, errorMessage, stackTrace, codeSnippet"
    )
    extraction_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True,
        comment="extractedAt, model, confidence, originalText"
    )
    labels: Mapped[list[str]] = mapped_column(JSONB, default=list)

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    workspace: Mapped[Workspace] = relationship(back_populates="tasks")
    activity: Mapped[list["TaskActivity"]] = relationship(back_populates="task")
    messages: Mapped[list["Message"]] = relationship(back_populates="task")


class TaskActivity(Base):
    """Append-only audit trail entry."""

    __tablename__ = "task_activity"
    __table_args__ = (
        Index("ix_task_activity_task_created", "task_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    activity_type: Mapped[ActivityType] = mapped_column(
        _enum_column(ActivityType), nullable=False
    )
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    # "metadata" is reserved on declarative classes
    extra: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    task: Mapped[Task] = relationship(back_populates="activity")


class Message(Base):
    """Conversation message attached to a task (Slack thread replies)."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_task_created", "task_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), default="text", nullable=False)
    slack_message_ts: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    task: Mapped[Task] = relationship(back_populates="messages")
