"""
Configuration settings for Pivot Coach.

Loads settings from environment variables and .env file.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class AudioSettings(BaseSettings):
    """Audio capture settings."""

    sample_rate: int = 16000
    channels: int = 1
    mic_device: Optional[str] = None
    system_device: Optional[str] = None  # loopback device, e.g. "BlackHole"
    mix_policy: str = "merge"  # "merge" or "independent"
    queue_size: int = 64
    block_seconds: float = 0.1

    class Config:
        env_prefix = "AUDIO_"


class WhisperSettings(BaseSettings):
    """Speech recognition settings."""

    backend: str = "faster-whisper"  # or "whisper-cpp"
    model_size: str = "base"
    device: str = "auto"
    compute_type: str = "int8"
    language: str = "fr"
    cpp_binary: Optional[str] = None
    cpp_model: Optional[str] = None
    buffer_seconds: float = 1.5
    overlap_seconds: float = 0.5

    @model_validator(mode="after")
    def check_window(self) -> "WhisperSettings":
        if not 0 <= self.overlap_seconds < self.buffer_seconds:
            raise ValueError("overlap_seconds must be >= 0 and shorter than buffer_seconds")
        return self

    class Config:
        env_prefix = "WHISPER_"


class OllamaSettings(BaseSettings):
    """Local LLM (Ollama) settings."""

    url: str = "http://127.0.0.1:11434"
    model: str = "qwen2.5:7b-instruct-q4_K_M"
    timeout: float = 60.0
    temperature: float = 0.7
    num_predict: int = 256
    top_p: float = 0.9
    repeat_penalty: float = 1.1

    class Config:
        env_prefix = "OLLAMA_"


class EmbeddingSettings(BaseSettings):
    """Word-embedding table settings (fastText .vec files)."""

    primary_path: Optional[Path] = None  # e.g. cc.fr.300.vec
    fallback_path: Optional[Path] = None  # e.g. cc.en.300.vec
    max_words: Optional[int] = 200000

    class Config:
        env_prefix = "EMBEDDING_"


class CoachSettings(BaseSettings):
    """Coaching pipeline behaviour."""

    debounce_seconds: float = 0.5
    transcript_log_size: int = 20
    rag_limit: int = 3
    save_calls_to_history: bool = True
    stop_timeout: float = 2.0

    class Config:
        env_prefix = "COACH_"


class HubSpotSettings(BaseSettings):
    """HubSpot CRM settings."""

    access_token: Optional[str] = None
    base_url: str = "https://api.hubapi.com"
    page_size: int = 100

    class Config:
        env_prefix = "HUBSPOT_"


class Settings(BaseSettings):
    """Main application settings."""

    # Data directory (database, logs)
    data_dir: Path = Path.home() / ".pivot_coach"
    database_name: str = "vectors.db"

    # Logging
    log_level: str = "INFO"

    # Nested settings
    audio: AudioSettings = Field(default_factory=AudioSettings)
    whisper: WhisperSettings = Field(default_factory=WhisperSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    coach: CoachSettings = Field(default_factory=CoachSettings)
    hubspot: HubSpotSettings = Field(default_factory=HubSpotSettings)

    class Config:
        env_prefix = "PIVOT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def database_path(self) -> Path:
        """Get full context store path."""
        return self.data_dir / self.database_name

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
