"""
Observable session state.

Everything the UI shows lives here; the orchestrator is the only writer.
"""

from collections import deque
from datetime import datetime
from typing import Optional

from ..models.schemas import Emotion, Intent, IntentResult, Speaker, TranscriptSegment
from ..utils.observable import Observable


class SuggestionState:
    """Per-session coaching state, reset when a session starts."""

    def __init__(self, log_size: int = 20):
        self.log_size = log_size
        self._log: deque[TranscriptSegment] = deque(maxlen=log_size)
        self._call: list[TranscriptSegment] = []

        # Conversation
        self.transcript_log: Observable[list[TranscriptSegment]] = Observable([], name="transcript_log")
        self.client_said = Observable("", name="client_said")
        self.transcript = Observable("", name="transcript")

        # Suggestion
        self.suggestion = Observable("", name="suggestion")
        self.intent: Observable[Optional[Intent]] = Observable(None, name="intent")
        self.emotion = Observable(Emotion.NEUTRAL, name="emotion")
        self.closing_probability = Observable(50, name="closing_probability")
        self.is_generating = Observable(False, name="is_generating")
        self.last_error: Observable[Optional[str]] = Observable(None, name="last_error")

        # Pipeline status
        self.audio_level = Observable(0.0, name="audio_level")
        self.status_message = Observable("", name="status_message")
        self.is_listening = Observable(False, name="is_listening")
        self.is_ready = Observable(False, name="is_ready")
        self.backend_available = Observable(False, name="backend_available")

    @property
    def segments(self) -> list[TranscriptSegment]:
        """Most recent segments, oldest first."""
        return list(self._log)

    @property
    def call_segments(self) -> list[TranscriptSegment]:
        """Every segment of the session (not bounded)."""
        return list(self._call)

    def reset(self) -> None:
        """Clear conversation and suggestion fields."""
        self._log.clear()
        self._call = []
        self.transcript_log.set([])
        self.client_said.set("")
        self.transcript.set("")
        self.suggestion.set("")
        self.intent.set(None)
        self.emotion.set(Emotion.NEUTRAL)
        self.closing_probability.set(50)
        self.is_generating.set(False)
        self.last_error.set(None)

    def append_segment(self, speaker: Speaker, text: str, timestamp: Optional[datetime] = None) -> TranscriptSegment:
        """Append to the bounded log; timestamps never go backwards."""
        timestamp = timestamp or datetime.now()
        if self._log and timestamp < self._log[-1].timestamp:
            timestamp = self._log[-1].timestamp

        segment = TranscriptSegment(speaker=speaker, text=text, timestamp=timestamp)
        self._log.append(segment)
        self._call.append(segment)
        self.transcript_log.set(list(self._log))
        return segment

    def apply_intent(self, result: IntentResult) -> None:
        self.intent.set(result.intent)
        self.emotion.set(result.emotion)
        self.closing_probability.set(result.closing_probability)
