"""
AI module for local RAG coaching.

Components:
- Word-embedding engine and SQLite context store
- Streaming transcription engine
- Local LLM client (Ollama)
- Suggestion engine and intent rules
"""

from .coach import SuggestionEngine
from .context_store import ContextStore, NullContextStore
from .embeddings import EmbeddingEngine, WordVectorTable
from .intent import INTENT_RULES, IntentRule, classify_intent
from .llm_client import OllamaClient
from .transcriber import TranscriptionEngine, TranscriptionState, is_noise_or_silence

__all__ = [
    "SuggestionEngine",
    "ContextStore",
    "NullContextStore",
    "EmbeddingEngine",
    "WordVectorTable",
    "INTENT_RULES",
    "IntentRule",
    "classify_intent",
    "OllamaClient",
    "TranscriptionEngine",
    "TranscriptionState",
    "is_noise_or_silence",
]
