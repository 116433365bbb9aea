"""Tests for the fixbot agent (intent dispatch and reply text)."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from fixbot.core.agent import HELP_TEXT, FixbotAgent, format_summary
from fixbot.core.types import AgentContext, BoardSummary
from fixbot.db.models import Task, TaskPriority, TaskStatus
from fixbot.extraction import AIExtractor, FallbackExtractor
from fixbot.routing.classifier import Intent, IntentKind, get_classifier


def _ctx(workspace, **overrides) -> AgentContext:
    fields = dict(
        workspace_id=workspace.id,
        channel_id="C0BUGS",
        user_id="UALICE",
        message_ts="1700000000.000100",
        thread_ts="1700000000.000100",
        channel_name="bugs",
    )
    fields.update(overrides)
    return AgentContext(**fields)


@pytest.fixture
def agent(repository) -> FixbotAgent:
    return FixbotAgent(FallbackExtractor(), repository)


class TestCreate:
    async def test_creates_task_reply(self, agent, session_factory, workspace):
        reply = await agent.run("URGENT: login is broken on auth.ts", _ctx(workspace))

        assert reply.startswith("Created **FIX-1**: URGENT: login is broken on auth")
        assert "- Priority: critical" in reply
        assert "- Type: bug" in reply
        assert "- Files: `auth.ts`" in reply
        async with session_factory() as db:
            task = (await db.execute(select(Task))).scalar_one()
        assert task.display_id == "FIX-1"
        assert task.workspace_id == workspace.id

    async def test_uses_model_when_enabled(self, repository, workspace, fake_service):
        service = fake_service('{"title": "Fix login redirect", "priority": "high", "taskType": "bug"}')
        agent = FixbotAgent(AIExtractor(service, timeout_s=1.0), repository)

        reply = await agent.run("login redirects loop", _ctx(workspace))

        assert "Created **FIX-1**: Fix login redirect" in reply
        assert len(service.prompts) == 1
        assert "Channel: #bugs" in service.prompts[0]

    async def test_disabled_workspace_setting_skips_model(self, repository, workspace, fake_service):
        service = fake_service('{"title": "model title"}')
        agent = FixbotAgent(AIExtractor(service, timeout_s=1.0), repository)

        reply = await agent.run(
            "add csv export", _ctx(workspace, ai_extraction_enabled=False)
        )

        assert service.prompts == []
        assert "Created **FIX-1**: add csv export" in reply
        assert "- Type: feature" in reply
        assert "Files" not in reply


class TestCommands:
    def test_default_classifier_is_shared(self, agent):
        assert agent._classifier is get_classifier()

    async def test_help(self, agent, workspace):
        assert await agent.run("help", _ctx(workspace)) == HELP_TEXT

    @pytest.mark.parametrize(
        "intent",
        [
            Intent(kind=IntentKind.UPDATE_STATUS, display_id="FIX-1"),
            Intent(kind=IntentKind.ASSIGN, display_id="FIX-1"),
            Intent(kind=IntentKind.ASSIGN, assignee="UALICE"),
        ],
    )
    async def test_incomplete_command_gets_help(self, repository, workspace, intent):
        class _FixedClassifier:
            def classify(self, text):
                return intent

        agent = FixbotAgent(FallbackExtractor(), repository, classifier=_FixedClassifier())
        assert await agent.run("mark it", _ctx(workspace)) == HELP_TEXT

    async def test_update_status(self, agent, workspace):
        await agent.run("checkout crash", _ctx(workspace))
        reply = await agent.run("mark FIX-1 as done", _ctx(workspace))
        assert reply == "Moved **FIX-1** from Backlog to Done."

    async def test_update_status_unknown_task(self, agent, workspace):
        reply = await agent.run("mark FIX-42 as done", _ctx(workspace))
        assert reply == "I couldn't find **FIX-42** in this workspace."

    async def test_assign(self, agent, workspace, member):
        await agent.run("checkout crash", _ctx(workspace))
        reply = await agent.run("assign FIX-1 to <@UALICE>", _ctx(workspace))
        assert reply == "Assigned **FIX-1** to <@UALICE>."

    async def test_assign_unknown_member(self, agent, workspace):
        await agent.run("checkout crash", _ctx(workspace))
        reply = await agent.run("assign FIX-1 to <@UNOBODY>", _ctx(workspace))
        assert reply.startswith("I couldn't assign **FIX-1**")

    async def test_summarize(self, agent, workspace):
        await agent.run("checkout crash", _ctx(workspace))
        await agent.run("minor typo in footer", _ctx(workspace))
        await agent.run("move FIX-1 to in progress", _ctx(workspace))

        reply = await agent.run("summarize", _ctx(workspace))

        assert reply.startswith("**Task summary** (2 total)")
        assert "- Backlog: 1" in reply
        assert "- In Progress: 1" in reply
        assert "FIX-1 checkout crash" in reply
        assert "By priority: critical 0, high 0, medium 1, low 1" in reply


class TestFormatSummary:
    def test_empty_board(self):
        assert format_summary(BoardSummary()).startswith("No tasks yet")

    def test_done_tasks_only_counted(self):
        summary = BoardSummary()
        task = Task(display_id="FIX-1", title="shipped", priority=TaskPriority.LOW)
        summary.columns[TaskStatus.DONE].append(task)
        summary.by_priority[TaskPriority.LOW] += 1

        text = format_summary(summary)
        assert "- Done: 1" in text
        assert "shipped" not in text
