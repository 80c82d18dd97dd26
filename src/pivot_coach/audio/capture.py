"""
Audio Capture Module

Live audio sources yielding 16 kHz mono float32 chunks to the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

import numpy as np

from ..errors import CoachError, DeviceUnavailable, PermissionDenied
from ..models.schemas import Speaker
from ..utils.observable import Observable

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000


@dataclass
class AudioChunk:
    """Captured audio chunk with metadata."""

    data: np.ndarray
    sample_rate: int
    timestamp: datetime
    duration_seconds: float

    @classmethod
    def from_samples(cls, samples: np.ndarray, sample_rate: int) -> "AudioChunk":
        data = np.asarray(samples, dtype=np.float32)
        return cls(
            data=data,
            sample_rate=sample_rate,
            timestamp=datetime.now(),
            duration_seconds=len(data) / sample_rate,
        )


# ============================================
# Sample helpers
# ============================================


def to_mono(data: np.ndarray) -> np.ndarray:
    """Average channels of a (frames, channels) block."""
    if data.ndim > 1:
        data = data.mean(axis=1)
    return data.astype(np.float32)


def resample_linear(audio: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Resample by linear interpolation (cheap enough for the capture thread)."""
    if src_rate == dst_rate or len(audio) == 0:
        return audio.astype(np.float32)

    target_length = max(1, int(round(len(audio) * dst_rate / src_rate)))
    src_positions = np.arange(len(audio)) / src_rate
    dst_positions = np.arange(target_length) / dst_rate
    return np.interp(dst_positions, src_positions, audio).astype(np.float32)


def rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def list_input_devices() -> list[dict]:
    """List available audio input devices."""
    try:
        import sounddevice as sd

        devices = sd.query_devices()
        return [
            {
                "id": i,
                "name": dev["name"],
                "input_channels": dev["max_input_channels"],
                "sample_rate": dev["default_samplerate"],
            }
            for i, dev in enumerate(devices)
            if dev["max_input_channels"] > 0
        ]
    except Exception as e:
        logger.warning(f"Failed to list devices: {e}")
        return []


# ============================================
# Sources
# ============================================


class AudioSource:
    """
    Base class for chunk producers.

    Chunks are handed to a bounded asyncio queue on the event loop. When
    the queue is full the oldest chunk is dropped. stop() enqueues an end
    marker so a pending chunks() iteration finishes.
    """

    def __init__(
        self,
        name: str,
        speaker: Speaker = Speaker.OTHER,
        sample_rate: int = TARGET_SAMPLE_RATE,
        queue_size: int = 64,
    ):
        self.name = name
        self.speaker = speaker
        self.sample_rate = sample_rate
        self.queue_size = queue_size
        self.audio_level = Observable(0.0, name=f"{name}.audio_level")
        self.dropped_chunks = 0
        self._queue: Optional[asyncio.Queue] = None

    @property
    def is_running(self) -> bool:
        raise NotImplementedError

    async def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    async def chunks(self) -> AsyncIterator[AudioChunk]:
        """Iterate chunks until the source stops or runs out."""
        queue = self._queue
        if queue is None:
            return

        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk

    def _new_queue(self) -> asyncio.Queue:
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        return self._queue

    def _enqueue(self, chunk: Optional[AudioChunk], queue: Optional[asyncio.Queue] = None) -> None:
        """Put a chunk (or the end marker) without blocking. Runs on the loop."""
        queue = queue if queue is not None else self._queue
        if queue is None:
            return

        if queue.full():
            queue.get_nowait()
            self.dropped_chunks += 1
            logger.warning(f"{self.name}: audio queue full, dropped oldest chunk ({self.dropped_chunks} total)")

        queue.put_nowait(chunk)
        if chunk is not None:
            self.audio_level.set(rms(chunk.data))


class SoundDeviceSource(AudioSource):
    """
    Capture from an input device via PortAudio.

    System audio is captured by selecting a loopback device (e.g.
    BlackHole) by name.
    """

    def __init__(
        self,
        name: str,
        device_name: Optional[str] = None,
        speaker: Speaker = Speaker.OTHER,
        sample_rate: int = TARGET_SAMPLE_RATE,
        queue_size: int = 64,
        block_seconds: float = 0.1,
        channels: int = 1,
    ):
        """
        Initialize device source.

        Args:
            name: Label used in logs
            device_name: Substring of the input device name (None = default input)
            speaker: Who this source hears
            sample_rate: Output sample rate (16000 for Whisper)
            queue_size: Hand-off queue capacity in chunks
            block_seconds: Callback block duration
            channels: Maximum channels to open (downmixed to mono)
        """
        super().__init__(name, speaker, sample_rate, queue_size)
        self.device_name = device_name
        self.block_seconds = block_seconds
        self.channels = channels
        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._device_rate = sample_rate

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def _find_device(self, sd) -> int:
        """Resolve the configured device to a PortAudio index."""
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as e:
            raise DeviceUnavailable(f"Failed to query audio devices: {e}") from e

        if self.device_name:
            for i, dev in enumerate(devices):
                if self.device_name.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    logger.info(f"Found audio device: {dev['name']} (id={i})")
                    return i
            raise DeviceUnavailable(f"Audio device not found: {self.device_name}")

        default_input = sd.default.device[0]
        if default_input is None or default_input < 0:
            raise DeviceUnavailable("No default input device")
        return default_input

    async def start(self) -> None:
        """
        Open the device and start capturing.

        Raises:
            DeviceUnavailable: No matching device, or it could not be opened
            PermissionDenied: The OS refused microphone access
        """
        if self._stream is not None:
            return

        try:
            import sounddevice as sd
        except OSError as e:
            raise DeviceUnavailable(f"PortAudio not available: {e}") from e

        device = self._find_device(sd)
        try:
            info = sd.query_devices(device)
        except sd.PortAudioError as e:
            raise DeviceUnavailable(f"Failed to query audio device {device}: {e}") from e
        self._device_rate = int(info["default_samplerate"])
        channels = max(1, min(int(info["max_input_channels"]), self.channels))

        self._loop = asyncio.get_running_loop()
        self._new_queue()

        stream = None
        try:
            stream = sd.InputStream(
                device=device,
                samplerate=self._device_rate,
                channels=channels,
                dtype="float32",
                blocksize=int(self._device_rate * self.block_seconds),
                callback=self._callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            if stream is not None:
                stream.close()
            message = str(e).lower()
            if "permission" in message or "not permitted" in message:
                raise PermissionDenied(f"Microphone access denied for {info['name']}") from e
            raise DeviceUnavailable(f"Cannot open {info['name']}: {e}") from e

        self._stream = stream
        logger.info(f"{self.name}: capturing from {info['name']} at {self._device_rate} Hz")

    def _callback(self, indata, frames, time_info, status) -> None:
        """PortAudio thread: convert and hand off to the loop."""
        if status:
            logger.debug(f"{self.name}: stream status {status}")

        data = to_mono(indata.copy())
        if self._device_rate != self.sample_rate:
            data = resample_linear(data, self._device_rate, self.sample_rate)

        chunk = AudioChunk.from_samples(data, self.sample_rate)
        queue = self._queue
        try:
            self._loop.call_soon_threadsafe(self._enqueue, chunk, queue)
        except RuntimeError:
            # loop already closed during shutdown
            pass

    def stop(self) -> None:
        """Stop capturing and release the device. Safe to call twice."""
        stream, self._stream = self._stream, None
        if stream is None:
            return

        stream.stop()
        stream.close()
        self._enqueue(None)
        self.audio_level.set(0.0)
        logger.info(f"{self.name}: capture stopped")


class FileAudioSource(AudioSource):
    """Replay an audio file as paced chunks (offline rehearsal, tests)."""

    def __init__(
        self,
        path: Path,
        name: str = "file",
        speaker: Speaker = Speaker.OTHER,
        sample_rate: int = TARGET_SAMPLE_RATE,
        chunk_seconds: float = 0.1,
        realtime: bool = True,
        queue_size: int = 64,
    ):
        super().__init__(name, speaker, sample_rate, queue_size)
        self.path = Path(path)
        self.chunk_seconds = chunk_seconds
        self.realtime = realtime
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def load(self) -> np.ndarray:
        """Read the file as mono float32 at the target rate."""
        import soundfile as sf

        try:
            data, original_sr = sf.read(str(self.path), dtype="float32")
        except (RuntimeError, OSError) as e:
            raise DeviceUnavailable(f"Cannot read audio file {self.path}: {e}") from e

        data = to_mono(data)
        if original_sr != self.sample_rate:
            import scipy.signal as signal

            target_length = int(len(data) * self.sample_rate / original_sr)
            data = signal.resample(data, target_length).astype(np.float32)

        return data

    async def start(self) -> None:
        if self.is_running:
            return

        samples = await asyncio.to_thread(self.load)
        queue = self._new_queue()
        self._task = asyncio.create_task(self._pump(samples, queue))
        logger.info(f"{self.name}: replaying {self.path} ({len(samples) / self.sample_rate:.1f}s)")

    async def _pump(self, samples: np.ndarray, queue: asyncio.Queue) -> None:
        step = max(1, int(self.chunk_seconds * self.sample_rate))
        for offset in range(0, len(samples), step):
            chunk = AudioChunk.from_samples(samples[offset:offset + step], self.sample_rate)
            if self.realtime:
                self._enqueue(chunk, queue)
                await asyncio.sleep(chunk.duration_seconds)
            else:
                await queue.put(chunk)
                self.audio_level.set(rms(chunk.data))
        await queue.put(None)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
            self._enqueue(None)
        self.audio_level.set(0.0)


class MergedAudioSource(AudioSource):
    """Interleave several sources into one chunk sequence."""

    def __init__(self, sources: Sequence[AudioSource], name: str = "merged", queue_size: int = 64):
        super().__init__(name, Speaker.OTHER, TARGET_SAMPLE_RATE, queue_size)
        self.sources = list(sources)
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return

        started: list[AudioSource] = []
        try:
            for source in self.sources:
                await source.start()
                started.append(source)
        except CoachError:
            for source in started:
                source.stop()
            raise

        queue = self._new_queue()
        remaining = {"count": len(self.sources)}
        self._tasks = [
            asyncio.create_task(self._forward(source, queue, remaining))
            for source in self.sources
        ]

    async def _forward(self, source: AudioSource, queue: asyncio.Queue, remaining: dict) -> None:
        try:
            async for chunk in source.chunks():
                self._enqueue(chunk, queue)
        finally:
            remaining["count"] -= 1
            if remaining["count"] == 0:
                self._enqueue(None, queue)

    def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return
        for source in self.sources:
            source.stop()
        for task in tasks:
            task.cancel()
        self._enqueue(None)
        self.audio_level.set(0.0)
