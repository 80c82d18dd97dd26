"""Data models module."""

from pivot_coach.models.schemas import (
    Contact,
    ContextDocument,
    Emotion,
    Intent,
    IntentResult,
    Speaker,
    SuggestionContext,
    TranscriptSegment,
)

__all__ = [
    "Contact",
    "ContextDocument",
    "Emotion",
    "Intent",
    "IntentResult",
    "Speaker",
    "SuggestionContext",
    "TranscriptSegment",
]
