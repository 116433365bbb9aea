"""End-to-end tests for per-event orchestration over a real (SQLite) store."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from fixbot.core.agent import FixbotAgent
from fixbot.core.orchestrator import (
    APOLOGY_TEXT,
    BotOrchestrator,
    EventOutcome,
    build_orchestrator,
    strip_bot_mention,
)
from fixbot.core.types import EventType, InboundEvent, SendResult
from fixbot.db.models import Message, ProcessedEvent, Task, TaskActivity
from fixbot.extraction import AIExtractor, FallbackExtractor
from fixbot.pipeline.output import process_output


def _mention(text: str, event_id: str = "Ev001", **overrides) -> InboundEvent:
    fields = dict(
        team_id="T0000ABCD",
        channel_id="C0BUGS",
        user_id="UALICE",
        text=text,
        message_ts="1700000000.000100",
        thread_ts="1700000000.000100",
        event_id=event_id,
        event_type=EventType.MENTION,
    )
    fields.update(overrides)
    return InboundEvent(**fields)


def _reply(text: str, event_id: str, thread_ts: str = "1700000000.000100", **overrides) -> InboundEvent:
    return _mention(
        text,
        event_id=event_id,
        message_ts="1700000000.000999",
        thread_ts=thread_ts,
        event_type=EventType.THREAD_REPLY,
        **overrides,
    )


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count(model.id)))).scalar_one()


@pytest.fixture
def orchestrator(session_factory, sender) -> BotOrchestrator:
    return build_orchestrator(session_factory, extractor=FallbackExtractor(), sender=sender)


class _ExplodingAgent(FixbotAgent):
    def __init__(self) -> None:
        pass

    async def run(self, text, ctx):
        raise RuntimeError("db went away")


class TestStripBotMention:
    def test_strips_and_trims(self):
        assert strip_bot_mention("<@U123> fix this now", "U123") == "fix this now"

    def test_all_occurrences_case_insensitive(self):
        assert strip_bot_mention("<@u123> hi <@U123>", "U123") == "hi"

    def test_other_mentions_kept(self):
        assert strip_bot_mention("<@U123> assign to <@U999>", "U123") == "assign to <@U999>"

    def test_no_bot_id(self):
        assert strip_bot_mention("  <@U123> x ", None) == "<@U123> x"


class TestMention:
    async def test_creates_task_and_replies_in_thread(
        self, orchestrator, session_factory, sender, workspace
    ):
        outcome = await orchestrator.handle_event(
            _mention("<@UBOT> URGENT: login is broken on auth.ts")
        )

        assert outcome is EventOutcome.REPLIED
        assert await _count(session_factory, Task) == 1
        assert len(sender.sent) == 1
        sent = sender.sent[0]
        assert sent["channel_id"] == "C0BUGS"
        assert sent["thread_ts"] == "1700000000.000100"
        assert sent["text"].startswith("Created *FIX-1*: URGENT")
        assert "• Priority: critical" in sent["text"]

    async def test_channel_mapping_flows_into_task(
        self, orchestrator, session_factory, workspace, channel_mapping
    ):
        await orchestrator.handle_event(_mention("<@UBOT> checkout crash"))
        async with session_factory() as db:
            task = (await db.execute(select(Task))).scalar_one()
        assert task.slack_channel_name == "bugs"
        assert task.repository_id == channel_mapping.repository_id

    async def test_duplicate_event_is_noop(self, orchestrator, session_factory, sender, workspace):
        event = _mention("<@UBOT> checkout crash")
        assert await orchestrator.handle_event(event) is EventOutcome.REPLIED

        counts = [
            await _count(session_factory, model)
            for model in (Task, TaskActivity, ProcessedEvent)
        ]
        assert await orchestrator.handle_event(event) is EventOutcome.DUPLICATE
        assert [
            await _count(session_factory, model)
            for model in (Task, TaskActivity, ProcessedEvent)
        ] == counts
        assert len(sender.sent) == 1

    async def test_empty_mention_gets_help_without_extraction(
        self, session_factory, sender, workspace, fake_service
    ):
        service = fake_service('{"title": "never"}')
        orchestrator = build_orchestrator(
            session_factory, extractor=AIExtractor(service, timeout_s=1.0), sender=sender
        )

        outcome = await orchestrator.handle_event(_mention("<@UBOT>   "))

        assert outcome is EventOutcome.HELP
        assert service.prompts == []
        assert sender.sent[0]["text"].startswith("How can I help? Try:\n• ")
        assert await _count(session_factory, Task) == 0

    async def test_unknown_team_is_dropped(self, orchestrator, session_factory, sender):
        outcome = await orchestrator.handle_event(_mention("<@UBOT> hi", team_id="TUNKNOWN"))
        assert outcome is EventOutcome.UNKNOWN_TENANT
        assert sender.sent == []
        # the event is still claimed so redelivery stays quiet
        assert await _count(session_factory, ProcessedEvent) == 1

    async def test_failure_sends_apology(self, session_factory, sender, workspace):
        base = build_orchestrator(session_factory, extractor=FallbackExtractor(), sender=sender)
        orchestrator = BotOrchestrator(
            dedup=base._dedup,
            tenants=base._tenants,
            agent=_ExplodingAgent(),
            repository=base._repository,
            sender=sender,
        )

        outcome = await orchestrator.handle_event(_mention("<@UBOT> checkout crash"))

        assert outcome is EventOutcome.FAILED
        assert sender.sent[0]["text"] == process_output(APOLOGY_TEXT)

    async def test_ledger_failure_sends_apology(self, session_factory, sender, workspace):
        class _BrokenLedger:
            async def has_processed(self, event_id):
                raise ConnectionError("ledger unavailable")

            async def mark_processed(self, event_id, event_type):
                raise AssertionError("not reached")

        base = build_orchestrator(session_factory, extractor=FallbackExtractor(), sender=sender)
        orchestrator = BotOrchestrator(
            dedup=_BrokenLedger(),
            tenants=base._tenants,
            agent=base._agent,
            repository=base._repository,
            sender=sender,
        )

        outcome = await orchestrator.handle_event(_mention("<@UBOT> checkout crash"))

        assert outcome is EventOutcome.FAILED
        assert sender.sent[0]["text"] == process_output(APOLOGY_TEXT)
        assert await _count(session_factory, Task) == 0

    async def test_send_failure_is_swallowed(self, session_factory, workspace):
        class _DownSender:
            async def send_message(self, channel_id, text, thread_ts=None, blocks=None):
                return SendResult(ok=False, error="channel_not_found")

        orchestrator = build_orchestrator(
            session_factory, extractor=FallbackExtractor(), sender=_DownSender()
        )
        outcome = await orchestrator.handle_event(_mention("<@UBOT> checkout crash"))
        assert outcome is EventOutcome.REPLIED
        assert await _count(session_factory, Task) == 1

    async def test_status_command_round_trip(self, orchestrator, sender, workspace):
        await orchestrator.handle_event(_mention("<@UBOT> checkout crash", "Ev001"))
        await orchestrator.handle_event(_mention("<@UBOT> mark fix-1 as done", "Ev002"))
        assert sender.sent[-1]["text"] == "Moved *FIX-1* from Backlog to Done."


class TestThreadReply:
    async def test_reply_in_task_thread_is_linked(
        self, orchestrator, session_factory, sender, workspace
    ):
        await orchestrator.handle_event(_mention("<@UBOT> checkout crash", "Ev001"))

        outcome = await orchestrator.handle_event(_reply("happens on Safari too", "Ev002"))

        assert outcome is EventOutcome.LINKED
        async with session_factory() as db:
            message = (await db.execute(select(Message))).scalar_one()
        assert message.content == "happens on Safari too"
        assert message.slack_message_ts == "1700000000.000999"
        # thread replies are not acknowledged in Slack
        assert len(sender.sent) == 1

    async def test_reply_in_other_thread_is_dropped(
        self, orchestrator, session_factory, workspace
    ):
        await orchestrator.handle_event(_mention("<@UBOT> checkout crash", "Ev001"))

        outcome = await orchestrator.handle_event(
            _reply("unrelated chatter", "Ev002", thread_ts="1699999999.000001")
        )

        assert outcome is EventOutcome.DROPPED
        assert await _count(session_factory, Message) == 0
        # only the mention that created the task is in the ledger
        assert await _count(session_factory, ProcessedEvent) == 1

    async def test_duplicate_reply_linked_once(self, orchestrator, session_factory, workspace):
        await orchestrator.handle_event(_mention("<@UBOT> checkout crash", "Ev001"))
        event = _reply("more detail", "Ev002")

        assert await orchestrator.handle_event(event) is EventOutcome.LINKED
        assert await orchestrator.handle_event(event) is EventOutcome.DUPLICATE
        assert await _count(session_factory, Message) == 1

    async def test_unknown_team(self, orchestrator, session_factory):
        outcome = await orchestrator.handle_event(_reply("x", "Ev009", team_id="TUNKNOWN"))
        assert outcome is EventOutcome.UNKNOWN_TENANT
        assert await _count(session_factory, ProcessedEvent) == 0
