"""Output pipeline for fixbot's Slack messages.

Layer 1: Empty-response guard - an agent run that produced no text
         still gets a useful reply
Layer 2: Format converter - transforms Markdown to Slack mrkdwn

Applied to every message before posting to Slack.
"""

from __future__ import annotations

import re

NO_TEXT_FALLBACK = (
    "I didn't quite understand that. Could you provide more details?\n"
    "- What were you trying to do?\n"
    "- What happened instead?\n"
    "- Any error messages?"
)

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_STAR_BULLET_RE = re.compile(r"^\*\s+", re.MULTILINE)
_DASH_BULLET_RE = re.compile(r"^-\s+", re.MULTILINE)


def to_slack_mrkdwn(text: str) -> str:
    """Convert Markdown emphasis and bullets to Slack mrkdwn.

    ``**bold**`` is resolved to ``*bold*`` before line-leading ``*``/``-``
    bullets become ``•``.
    """
    text = _BOLD_RE.sub(r"*\1*", text)
    text = _STAR_BULLET_RE.sub("• ", text)
    text = _DASH_BULLET_RE.sub("• ", text)
    return text


def process_output(text: str | None) -> str:
    """Run the full output pipeline on an agent response."""
    if not text or not text.strip():
        text = NO_TEXT_FALLBACK
    return to_slack_mrkdwn(text)
