"""Ingestion pipeline: dedup ledger, tenant context, sequence numbers, output."""

from fixbot.pipeline.dedup import EventDeduplicator
from fixbot.pipeline.output import process_output, to_slack_mrkdwn
from fixbot.pipeline.sequence import SequenceAllocator
from fixbot.pipeline.tenant import TenantResolver, slugify_team

__all__ = [
    "EventDeduplicator",
    "SequenceAllocator",
    "TenantResolver",
    "process_output",
    "slugify_team",
    "to_slack_mrkdwn",
]
