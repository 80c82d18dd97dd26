"""
Streaming Transcription Engine.

Accumulates audio in a rolling buffer and transcribes overlapping
windows so words cut at a window edge are heard again in the next one.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import AsyncIterable, Optional

import numpy as np

from ..audio.capture import AudioChunk
from ..audio.whisper import SpeechRecognizer
from ..errors import ModelUnavailable
from ..utils.observable import Observable

logger = logging.getLogger(__name__)


# Whisper hallucinations on silence or music
NOISE_MARKERS = (
    "[BLANK_AUDIO]",
    "[MUSIC]",
    "[SILENCE]",
    "...",
    "…",
    "Sous-titres réalisés",
    "Merci d'avoir regardé",
    "♪",
)
MIN_TEXT_LENGTH = 3


def is_noise_or_silence(text: str) -> bool:
    """True for recognizer output that should never reach the transcript."""
    if len(text) < MIN_TEXT_LENGTH:
        return True
    return any(marker in text for marker in NOISE_MARKERS)


class TranscriptionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    BUFFERING = "buffering"
    TRANSCRIBING = "transcribing"
    FAILED = "failed"


class TranscriptionEngine:
    """
    Sliding-window transcription over an audio chunk sequence.

    The sample buffer is shared with the capture side and guarded by a
    threading lock; transcription runs in a worker thread.
    """

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        sample_rate: int = 16000,
        buffer_seconds: float = 1.5,
        overlap_seconds: float = 0.5,
        name: str = "transcriber",
    ):
        """
        Initialize engine.

        Args:
            recognizer: Speech-to-text backend
            sample_rate: Sample rate of incoming chunks
            buffer_seconds: Window length that triggers a transcription
            overlap_seconds: Trailing audio kept for the next window
            name: Label used in logs

        Raises:
            ValueError: If the overlap is negative or not shorter than the window
        """
        if not 0 <= overlap_seconds < buffer_seconds:
            raise ValueError(
                f"overlap_seconds must be in [0, {buffer_seconds}), got {overlap_seconds}"
            )

        self.recognizer = recognizer
        self.sample_rate = sample_rate
        self.buffer_seconds = buffer_seconds
        self.overlap_seconds = overlap_seconds
        self.name = name

        self.state = Observable(TranscriptionState.UNINITIALIZED, name=f"{name}.state")
        self.latest_transcript = Observable("", name=f"{name}.latest_transcript")
        self.full_transcript = ""

        self._buffer = np.zeros(0, dtype=np.float32)
        self._buffer_lock = threading.Lock()
        self._transcribe_lock = asyncio.Lock()

    @property
    def threshold_samples(self) -> int:
        return int(self.buffer_seconds * self.sample_rate)

    @property
    def overlap_samples(self) -> int:
        return int(self.overlap_seconds * self.sample_rate)

    @property
    def is_ready(self) -> bool:
        return self.state.value in (
            TranscriptionState.READY,
            TranscriptionState.BUFFERING,
            TranscriptionState.TRANSCRIBING,
        )

    @property
    def buffered_samples(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        """
        Load the recognizer model.

        Raises:
            ModelUnavailable: If the model cannot be loaded (no retry)
        """
        if self.is_ready:
            return

        self.state.set(TranscriptionState.LOADING)
        try:
            await asyncio.to_thread(self.recognizer.load)
        except ModelUnavailable:
            self.state.set(TranscriptionState.FAILED)
            raise
        except Exception as e:
            self.state.set(TranscriptionState.FAILED)
            raise ModelUnavailable(f"Speech model failed to load: {e}") from e

        self.state.set(TranscriptionState.READY)
        logger.info(f"{self.name}: ready")

    async def reset(self) -> None:
        """Clear buffer and transcripts; waits for a running transcription."""
        async with self._transcribe_lock:
            with self._buffer_lock:
                self._buffer = np.zeros(0, dtype=np.float32)
            self.full_transcript = ""
            self.latest_transcript.set("")
            if self.is_ready:
                self.state.set(TranscriptionState.READY)

    # ============================================
    # Buffering
    # ============================================

    def append_samples(self, samples: np.ndarray) -> Optional[np.ndarray]:
        """
        Append samples to the rolling buffer.

        Returns:
            A snapshot to transcribe once the threshold is reached (the
            buffer then keeps only the overlap), else None
        """
        with self._buffer_lock:
            self._buffer = np.concatenate([self._buffer, np.asarray(samples, dtype=np.float32)])
            if len(self._buffer) < self.threshold_samples:
                return None

            snapshot = self._buffer
            keep = min(self.overlap_samples, len(snapshot))
            self._buffer = snapshot[len(snapshot) - keep:].copy()
            return snapshot

    async def process_stream(self, chunks: AsyncIterable[AudioChunk]) -> None:
        """
        Consume chunks until the sequence ends or the task is cancelled.

        Raises:
            ModelUnavailable: Engine not ready, or the recognizer failed fatally
        """
        if not self.is_ready:
            raise ModelUnavailable(f"{self.name}: not initialized")

        async for chunk in chunks:
            snapshot = self.append_samples(chunk.data)
            if snapshot is None:
                if self.state.value == TranscriptionState.READY:
                    self.state.set(TranscriptionState.BUFFERING)
                continue

            await self.transcribe_snapshot(snapshot)

    async def transcribe_snapshot(self, snapshot: np.ndarray) -> Optional[str]:
        """Transcribe one window and publish the text if it is speech."""
        async with self._transcribe_lock:
            self.state.set(TranscriptionState.TRANSCRIBING)
            try:
                text = await asyncio.to_thread(self.recognizer.transcribe, snapshot)
            except ModelUnavailable as e:
                logger.error(f"{self.name}: recognizer unavailable: {e}")
                self.state.set(TranscriptionState.FAILED)
                raise
            except Exception as e:
                logger.error(f"{self.name}: transcription failed: {e}")
                self.state.set(TranscriptionState.BUFFERING)
                return None

            self.state.set(TranscriptionState.BUFFERING)

            text = text.strip()
            if is_noise_or_silence(text):
                logger.debug(f"{self.name}: filtered output {text!r}")
                return None

            self.full_transcript = f"{self.full_transcript} {text}".strip()
            self.latest_transcript.set(text)
            return text
