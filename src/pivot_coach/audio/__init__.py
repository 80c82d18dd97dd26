"""Audio capture and speech recognition."""

from .capture import (
    AudioChunk,
    AudioSource,
    FileAudioSource,
    MergedAudioSource,
    SoundDeviceSource,
    list_input_devices,
    resample_linear,
    rms,
    to_mono,
)
from .whisper import (
    FasterWhisperRecognizer,
    SpeechRecognizer,
    WhisperCppRecognizer,
    create_recognizer,
    encode_wav,
)

__all__ = [
    "AudioChunk",
    "AudioSource",
    "FileAudioSource",
    "MergedAudioSource",
    "SoundDeviceSource",
    "list_input_devices",
    "resample_linear",
    "rms",
    "to_mono",
    "FasterWhisperRecognizer",
    "SpeechRecognizer",
    "WhisperCppRecognizer",
    "create_recognizer",
    "encode_wav",
]
