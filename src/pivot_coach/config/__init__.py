"""Configuration module."""

from .settings import (
    AudioSettings,
    CoachSettings,
    EmbeddingSettings,
    HubSpotSettings,
    OllamaSettings,
    Settings,
    WhisperSettings,
)

__all__ = [
    "AudioSettings",
    "CoachSettings",
    "EmbeddingSettings",
    "HubSpotSettings",
    "OllamaSettings",
    "Settings",
    "WhisperSettings",
]
