"""
Speech Recognizers

Local speech-to-text backends: Faster-Whisper (embedded) or the
whisper.cpp command line tool.
"""

import io
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from ..config.settings import WhisperSettings
from ..errors import ModelUnavailable

logger = logging.getLogger(__name__)


class SpeechRecognizer(Protocol):
    """Blocking recognizer; the transcription engine calls it off-loop."""

    def load(self) -> None:
        ...

    def transcribe(self, samples: np.ndarray) -> str:
        ...


def encode_wav(samples: np.ndarray, sample_rate: int = 16000) -> bytes:
    """Encode float samples as a mono 16-bit PCM WAV byte stream."""
    import soundfile as sf

    buffer = io.BytesIO()
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    sf.write(buffer, clipped, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class FasterWhisperRecognizer:
    """
    Whisper via Faster-Whisper (CTranslate2 backend).

    Decoding falls back to higher temperatures when the output looks
    like a hallucination (compression ratio or log-prob thresholds).
    """

    def __init__(
        self,
        model_size: str = "base",
        device: str = "auto",
        compute_type: str = "int8",
        language: str = "fr",
        beam_size: int = 5,
    ):
        """
        Initialize recognizer.

        Args:
            model_size: Model size (tiny, base, small, medium, large-v3-turbo)
            device: "cpu", "cuda", or "auto"
            compute_type: "int8" for CPU, "float16" for GPU
            language: Language hint
            beam_size: Beam search width
        """
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.beam_size = beam_size
        self._model = None

    def load(self) -> None:
        """Load the Whisper model (slow, call from a worker thread)."""
        if self._model is not None:
            return

        try:
            from faster_whisper import WhisperModel

            logger.info(f"Loading Whisper model: {self.model_size} on {self.device}")
            self._model = WhisperModel(
                self.model_size,
                device=self.device,
                compute_type=self.compute_type,
            )
            logger.info("Whisper model loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            raise ModelUnavailable(f"Whisper model {self.model_size} unavailable: {e}") from e

    def transcribe(self, samples: np.ndarray) -> str:
        if self._model is None:
            raise ModelUnavailable("Whisper model not loaded")

        segments, _info = self._model.transcribe(
            np.asarray(samples, dtype=np.float32),
            language=self.language,
            beam_size=self.beam_size,
            temperature=(0.0, 0.2, 0.4, 0.6, 0.8, 1.0),
            compression_ratio_threshold=2.4,
            log_prob_threshold=-1.0,
            no_speech_threshold=0.6,
            condition_on_previous_text=False,
        )
        return " ".join(segment.text.strip() for segment in segments).strip()


class WhisperCppRecognizer:
    """Runs the whisper.cpp CLI on a temporary WAV file per window."""

    def __init__(
        self,
        binary: str,
        model_path: Path,
        language: str = "fr",
        timeout: float = 30.0,
    ):
        self.binary = binary
        self.model_path = Path(model_path)
        self.language = language
        self.timeout = timeout
        self._resolved: Optional[str] = None

    def load(self) -> None:
        resolved = shutil.which(self.binary) or (self.binary if Path(self.binary).is_file() else None)
        if resolved is None:
            raise ModelUnavailable(f"whisper.cpp binary not found: {self.binary}")
        if not self.model_path.is_file():
            raise ModelUnavailable(f"whisper.cpp model not found: {self.model_path}")
        self._resolved = resolved
        logger.info(f"Using whisper.cpp: {resolved} ({self.model_path.name})")

    def build_command(self, wav_path: Path) -> list[str]:
        return [
            self._resolved or self.binary,
            "-m", str(self.model_path),
            "-f", str(wav_path),
            "-l", self.language,
            "-nt",
            "--no-prints",
        ]

    def transcribe(self, samples: np.ndarray) -> str:
        if self._resolved is None:
            raise ModelUnavailable("whisper.cpp not loaded")

        with tempfile.TemporaryDirectory(prefix="pivot-coach-") as tmp:
            wav_path = Path(tmp) / "window.wav"
            wav_path.write_bytes(encode_wav(samples))

            result = subprocess.run(
                self.build_command(wav_path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )

        lines = [line.strip() for line in result.stdout.splitlines()]
        return " ".join(line for line in lines if line)


def create_recognizer(settings: WhisperSettings) -> SpeechRecognizer:
    """Build the configured recognizer backend."""
    if settings.backend == "whisper-cpp":
        if not settings.cpp_model:
            raise ModelUnavailable("WHISPER_CPP_MODEL is required for the whisper-cpp backend")
        return WhisperCppRecognizer(
            binary=settings.cpp_binary or "whisper-cli",
            model_path=Path(settings.cpp_model),
            language=settings.language,
        )

    if settings.backend != "faster-whisper":
        raise ModelUnavailable(f"Unknown speech backend: {settings.backend}")

    return FasterWhisperRecognizer(
        model_size=settings.model_size,
        device=settings.device,
        compute_type=settings.compute_type,
        language=settings.language,
    )
