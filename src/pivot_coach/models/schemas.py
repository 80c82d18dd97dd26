"""
Pivot Coach - Data Models (Pydantic Schemas)
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Speaker(str, Enum):
    """Who spoke a transcript segment."""

    SELF = "self"  # the salesperson (microphone)
    OTHER = "other"  # the prospect (system audio)


class Intent(str, Enum):
    """Coarse conversational intent of the prospect."""

    PRICE_QUESTION = "price_question"
    INTEREST = "interest"
    OBJECTION = "objection"
    TECHNICAL_QUESTION = "technical_question"
    COMPETITION = "competition"
    DEMO_REQUEST = "demo_request"
    CLOSING_SIGNAL = "closing_signal"
    NEUTRAL = "neutral"


class Emotion(str, Enum):
    """Emotion attached to an intent."""

    NEUTRAL = "neutral"
    POSITIVE = "positive"
    SKEPTICAL = "skeptical"


# --- Transcript ---


class TranscriptSegment(BaseModel):
    """A single recognized utterance."""

    speaker: Speaker = Speaker.OTHER
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)

    class Config:
        frozen = True

    def format_line(self) -> str:
        """Format for prompts and console output."""
        who = "Moi" if self.speaker == Speaker.SELF else "Client"
        return f"[{self.timestamp:%H:%M:%S}] {who}: {self.text}"


# --- Context store ---


class ContextDocument(BaseModel):
    """Contextual text (notes, prior calls) stored with its embedding."""

    id: str
    owner_id: Optional[str] = None  # contact or session key
    kind: str = "note"
    content: str
    vector: Optional[list[float]] = None
    created_at: datetime = Field(default_factory=datetime.now)


class Contact(BaseModel):
    """Prospect/customer record (CRM or local)."""

    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    phone: str = ""
    deal_stage: Optional[str] = None
    notes: list[str] = Field(default_factory=list)
    last_activity: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def display_name(self) -> str:
        """Full name, else company, else email."""
        if self.full_name:
            return self.full_name
        if self.company:
            return self.company
        return self.email


# --- Coaching ---


class IntentResult(BaseModel):
    """Output of the rule-based intent classifier."""

    intent: Intent = Intent.NEUTRAL
    emotion: Emotion = Emotion.NEUTRAL
    closing_probability: int = Field(default=50, ge=0, le=100)


class SuggestionContext(BaseModel):
    """Everything a suggestion prompt is grounded on."""

    contact: Optional[Contact] = None
    session_notes: str = ""
    rag_snippets: list[str] = Field(default_factory=list)
