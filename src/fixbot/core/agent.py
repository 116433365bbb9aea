"""fixbot agent: turns one cleaned mention into repository actions.

The orchestrator hands over the mention text with its Slack and tenant
context; the agent classifies the request, runs the matching task
operation and returns Markdown reply text. Formatting for Slack happens
later in the output pipeline.
"""

from __future__ import annotations

import structlog

from fixbot.core.types import AgentContext, BoardSummary, TaskDraft
from fixbot.db.models import TaskPriority, TaskStatus
from fixbot.extraction.extractor import TaskExtractor
from fixbot.extraction.fallback import FallbackExtractor
from fixbot.routing.classifier import Intent, IntentClassifier, IntentKind, get_classifier
from fixbot.tasks.repository import SlackSource, TaskRepository

logger = structlog.get_logger()

HELP_TEXT = (
    "How can I help? Try:\n"
    "- `@fixbot summarize` - See task summary\n"
    "- `@fixbot mark FIX-123 as done` - Update status\n"
    "- `@fixbot assign FIX-123 to @user` - Assign task\n"
    "- Or describe a bug/task to create one"
)

_COLUMN_TITLES: dict[TaskStatus, str] = {
    TaskStatus.BACKLOG: "Backlog",
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.IN_REVIEW: "In Review",
    TaskStatus.DONE: "Done",
}
_SUMMARY_TASKS_PER_COLUMN = 5


class FixbotAgent:
    """Routes a mention to summarize / update status / assign / create."""

    def __init__(
        self,
        extractor: TaskExtractor,
        repository: TaskRepository,
        classifier: IntentClassifier | None = None,
        fallback: TaskExtractor | None = None,
    ) -> None:
        self._extractor = extractor
        self._fallback = fallback or FallbackExtractor()
        self._repository = repository
        self._classifier = classifier or get_classifier()

    async def run(self, text: str, ctx: AgentContext) -> str:
        intent = self._classifier.classify(text)
        logger.info(
            "agent_intent",
            intent=intent.kind.value,
            workspace_id=str(ctx.workspace_id),
            display_id=intent.display_id,
        )

        if intent.kind is IntentKind.HELP:
            return HELP_TEXT
        if intent.kind is IntentKind.SUMMARIZE:
            return await self._summarize(ctx)
        if intent.kind is IntentKind.UPDATE_STATUS:
            return await self._update_status(intent, ctx)
        if intent.kind is IntentKind.ASSIGN:
            return await self._assign(intent, ctx)
        return await self._create_task(text, ctx)

    async def extract(self, text: str, ctx: AgentContext) -> TaskDraft:
        extractor = self._extractor if ctx.ai_extraction_enabled else self._fallback
        return await extractor.extract(text, ctx.channel_name)

    # ─────────────────────────────────────────────────────────────────────

    async def _create_task(self, text: str, ctx: AgentContext) -> str:
        draft = await self.extract(text, ctx)
        created = await self._repository.create_task(
            workspace_id=ctx.workspace_id,
            repository_id=ctx.repository_id,
            draft=draft,
            source=SlackSource(
                channel_id=ctx.channel_id,
                channel_name=ctx.channel_name,
                message_ts=ctx.message_ts,
                thread_ts=ctx.thread_ts,
            ),
            submitter_slack_id=ctx.user_id,
        )

        lines = [
            f"Created **{created.display_id}**: {draft.title}",
            f"- Priority: {draft.priority}",
            f"- Type: {draft.task_type}",
        ]
        code_context = draft.code_context if isinstance(draft.code_context, dict) else {}
        file_paths = code_context.get("filePaths")
        if file_paths and isinstance(file_paths, list):
            lines.append(f"- Files: {', '.join(f'`{p}`' for p in file_paths)}")
        lines.append("Reply in this thread to add details.")
        return "\n".join(lines)

    async def _update_status(self, intent: Intent, ctx: AgentContext) -> str:
        if intent.display_id is None or intent.status is None:
            return HELP_TEXT
        change = await self._repository.update_status(
            intent.display_id, intent.status, ctx.user_id, workspace_id=ctx.workspace_id
        )
        if change is None:
            return f"I couldn't find **{intent.display_id}** in this workspace."
        return (
            f"Moved **{change.display_id}** from "
            f"{_COLUMN_TITLES[change.old_status]} to {_COLUMN_TITLES[change.new_status]}."
        )

    async def _assign(self, intent: Intent, ctx: AgentContext) -> str:
        if intent.display_id is None or intent.assignee is None:
            return HELP_TEXT
        task = await self._repository.assign_task(
            intent.display_id, intent.assignee, ctx.user_id, workspace_id=ctx.workspace_id
        )
        if task is None:
            return (
                f"I couldn't assign **{intent.display_id}**: the task or "
                f"<@{intent.assignee}> isn't known in this workspace yet."
            )
        return f"Assigned **{task.display_id}** to <@{intent.assignee}>."

    async def _summarize(self, ctx: AgentContext) -> str:
        summary = await self._repository.board_summary(
            ctx.workspace_id, ctx.repository_id
        )
        return format_summary(summary)


def format_summary(summary: BoardSummary) -> str:
    if summary.total == 0:
        return "No tasks yet. Describe a bug or task and I'll track it."

    lines = [f"**Task summary** ({summary.total} total)"]
    for status, title in _COLUMN_TITLES.items():
        tasks = summary.columns[status]
        lines.append(f"- {title}: {len(tasks)}")
        if status is TaskStatus.DONE:
            continue
        for task in tasks[:_SUMMARY_TASKS_PER_COLUMN]:
            lines.append(f"    {task.display_id} {task.title}")

    counts = ", ".join(
        f"{priority.value} {summary.by_priority[priority]}" for priority in TaskPriority
    )
    lines.append(f"By priority: {counts}")
    return "\n".join(lines)
