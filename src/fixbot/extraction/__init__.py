"""Message-to-task extraction: model-backed with a deterministic fallback."""

from fixbot.extraction.extractor import (
    AIExtractor,
    TaskExtractor,
    draft_from_payload,
    find_json_object,
    parse_extraction_response,
)
from fixbot.extraction.fallback import FallbackExtractor, fallback_extraction

__all__ = [
    "AIExtractor",
    "FallbackExtractor",
    "TaskExtractor",
    "draft_from_payload",
    "fallback_extraction",
    "find_json_object",
    "parse_extraction_response",
]
