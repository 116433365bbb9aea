"""Prompt for the task-extraction call."""

from __future__ import annotations

MAX_TITLE_CHARS = 80

_EXTRACTION_TEMPLATE = """Extract task information from this Slack message and respond with ONLY a JSON object (no markdown, no explanation):
{channel_info}
Message: {text}

Required JSON format:
{{
  "title": "Brief task title (max {max_title} chars, start with verb)",
  "description": "Fuller description",
  "priority": "critical|high|medium|low",
  "taskType": "bug|feature|improvement|task|question",
  "confidence": 0.0-1.0,
  "codeContext": {{ "filePaths": [], "errorMessage": "" }} // optional
}}"""


def build_extraction_prompt(text: str, channel_context: str | None = None) -> str:
    channel_info = f"Channel: #{channel_context}" if channel_context else ""
    return _EXTRACTION_TEMPLATE.format(
        channel_info=channel_info,
        text=text,
        max_title=MAX_TITLE_CHARS,
    )
