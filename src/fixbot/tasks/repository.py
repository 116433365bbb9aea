"""Task persistence for the Slack pipeline.

Each public method is one transaction: task creation allocates the
sequence number, inserts the task and appends its ``created`` activity
entry together, so a failure leaves no half-written task behind.
Submitters are matched to workspace members on a best-effort basis; an
unknown Slack user just leaves the user columns empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fixbot.core.types import BoardSummary, CreatedTask, StatusChange, TaskDraft
from fixbot.db.models import (
    TASK_NUMBER_COUNTER,
    ActivityType,
    Message,
    Task,
    TaskActivity,
    TaskPriority,
    TaskSource,
    TaskStatus,
    TaskType,
    Workspace,
    utcnow,
)
from fixbot.pipeline.sequence import SequenceAllocator
from fixbot.pipeline.tenant import find_user

logger = structlog.get_logger()

DEFAULT_PREFIX = "TSK"


@dataclass(frozen=True)
class SlackSource:
    """Where in Slack a task came from."""

    channel_id: str
    message_ts: str
    thread_ts: str
    channel_name: str | None = None


class TaskRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        allocator: SequenceAllocator,
    ) -> None:
        self._session_factory = session_factory
        self._allocator = allocator

    # ═══ WRITES ═════════════════════════════════════════════════════════

    async def create_task(
        self,
        workspace_id: UUID,
        repository_id: UUID | None,
        draft: TaskDraft,
        source: SlackSource,
        submitter_slack_id: str,
    ) -> CreatedTask:
        async with self._session_factory() as db:
            task_number = await self._allocator.next(
                workspace_id, TASK_NUMBER_COUNTER, db=db
            )
            workspace = await db.get(Workspace, workspace_id)
            prefix = workspace.task_prefix if workspace else DEFAULT_PREFIX
            display_id = f"{prefix}-{task_number}"

            user = await find_user(db, workspace_id, submitter_slack_id)
            now = utcnow()

            task = Task(
                workspace_id=workspace_id,
                repository_id=repository_id,
                task_number=task_number,
                display_id=display_id,
                title=draft.title,
                description=draft.description,
                status=TaskStatus.BACKLOG,
                priority=TaskPriority(draft.priority),
                task_type=TaskType(draft.task_type),
                source_type=TaskSource.SLACK,
                slack_channel_id=source.channel_id,
                slack_channel_name=source.channel_name,
                slack_message_ts=source.message_ts,
                slack_thread_ts=source.thread_ts,
                code_context=draft.code_context,
                extraction_metadata={
                    "extractedAt": now.isoformat(),
                    "model": draft.extracted_by,
                    "confidence": draft.confidence,
                    "originalText": draft.description,
                },
                labels=[],
                created_by_id=user.id if user else None,
                created_at=now,
                updated_at=now,
            )
            db.add(task)
            await db.flush()

            db.add(
                TaskActivity(
                    task_id=task.id,
                    user_id=user.id if user else None,
                    activity_type=ActivityType.CREATED,
                    extra={"source": TaskSource.SLACK.value},
                    created_at=now,
                )
            )
            await db.commit()

        logger.info(
            "task_created",
            workspace_id=str(workspace_id),
            display_id=display_id,
            priority=draft.priority,
            task_type=draft.task_type,
        )
        return CreatedTask(task_id=task.id, display_id=display_id)

    async def add_message(
        self,
        task_id: UUID,
        content: str,
        submitter_slack_id: str,
        slack_message_ts: str,
    ) -> UUID:
        async with self._session_factory() as db:
            task = await db.get(Task, task_id)
            user = await find_user(
                db, task.workspace_id if task else None, submitter_slack_id
            )
            message = Message(
                task_id=task_id,
                author_id=user.id if user else None,
                content=content,
                content_type="text",
                slack_message_ts=slack_message_ts,
                is_edited=False,
            )
            db.add(message)
            await db.commit()

        logger.info("task_message_added", task_id=str(task_id))
        return message.id

    async def update_status(
        self,
        display_id: str,
        new_status: TaskStatus,
        submitter_slack_id: str,
        workspace_id: UUID | None = None,
    ) -> StatusChange | None:
        """Move a task to ``new_status``. Returns None if no such task."""
        async with self._session_factory() as db:
            task = await self._get_by_display_id(db, display_id, workspace_id)
            if task is None:
                logger.info("status_update_task_not_found", display_id=display_id)
                return None

            user = await find_user(db, task.workspace_id, submitter_slack_id)
            now = utcnow()
            old_status = TaskStatus(task.status)

            task.status = new_status
            task.updated_at = now
            if new_status is TaskStatus.DONE:
                task.completed_at = now

            db.add(
                TaskActivity(
                    task_id=task.id,
                    user_id=user.id if user else None,
                    activity_type=ActivityType.STATUS_CHANGED,
                    changes={
                        "field": "status",
                        "oldValue": old_status.value,
                        "newValue": new_status.value,
                    },
                    created_at=now,
                )
            )
            await db.commit()

        logger.info(
            "task_status_changed",
            display_id=task.display_id,
            old_status=old_status.value,
            new_status=new_status.value,
        )
        return StatusChange(
            task_id=task.id,
            display_id=task.display_id,
            old_status=old_status,
            new_status=new_status,
        )

    async def assign_task(
        self,
        display_id: str,
        assignee_slack_id: str,
        submitter_slack_id: str,
        workspace_id: UUID | None = None,
    ) -> Task | None:
        """Assign a task to a workspace member.

        Returns None when the task or the assignee is unknown.
        """
        async with self._session_factory() as db:
            task = await self._get_by_display_id(db, display_id, workspace_id)
            if task is None:
                return None
            assignee = await find_user(db, task.workspace_id, assignee_slack_id)
            if assignee is None:
                logger.info(
                    "assign_unknown_user",
                    display_id=display_id,
                    slack_user_id=assignee_slack_id,
                )
                return None
            submitter = await find_user(db, task.workspace_id, submitter_slack_id)
            now = utcnow()

            previous = task.assignee_id
            task.assignee_id = assignee.id
            task.updated_at = now
            db.add(
                TaskActivity(
                    task_id=task.id,
                    user_id=submitter.id if submitter else None,
                    activity_type=ActivityType.ASSIGNED,
                    changes={
                        "field": "assignee",
                        "oldValue": str(previous) if previous else None,
                        "newValue": str(assignee.id),
                    },
                    created_at=now,
                )
            )
            await db.commit()

        logger.info("task_assigned", display_id=display_id, assignee=assignee_slack_id)
        return task

    # ═══ READS ══════════════════════════════════════════════════════════

    async def find_by_thread(
        self, workspace_id: UUID, slack_channel_id: str, slack_thread_ts: str
    ) -> Task | None:
        """Task whose source message started this Slack thread."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Task).where(
                    Task.workspace_id == workspace_id,
                    Task.slack_channel_id == slack_channel_id,
                    Task.slack_thread_ts == slack_thread_ts,
                )
            )
            return result.scalars().first()

    async def board_summary(
        self, workspace_id: UUID, repository_id: UUID | None = None
    ) -> BoardSummary:
        """Tasks grouped by board column with counts by priority."""
        query = select(Task).where(Task.workspace_id == workspace_id)
        if repository_id is not None:
            query = query.where(Task.repository_id == repository_id)
        query = query.order_by(Task.task_number)

        async with self._session_factory() as db:
            result = await db.execute(query)
            tasks = list(result.scalars().all())

        summary = BoardSummary()
        for task in tasks:
            summary.columns[TaskStatus(task.status)].append(task)
            summary.by_priority[TaskPriority(task.priority)] += 1
        return summary

    @staticmethod
    async def _get_by_display_id(
        db: AsyncSession, display_id: str, workspace_id: UUID | None
    ) -> Task | None:
        query = select(Task).where(Task.display_id == display_id.upper())
        if workspace_id is not None:
            query = query.where(Task.workspace_id == workspace_id)
        result = await db.execute(query)
        return result.scalars().first()

