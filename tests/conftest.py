"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from pivot_coach.ai.context_store import ContextStore
from pivot_coach.ai.embeddings import EmbeddingEngine, WordVectorTable


WORDS = {
    "prix": [1.0, 0.0, 0.0],
    "tarif": [0.9, 0.1, 0.0],
    "restaurant": [0.0, 1.0, 0.0],
    "cuisine": [0.0, 0.9, 0.1],
    "livraison": [0.0, 0.0, 1.0],
    "client": [0.5, 0.5, 0.0],
}


@pytest.fixture
def word_table() -> WordVectorTable:
    """Tiny 3-d table covering a handful of French words."""
    return WordVectorTable({w: np.asarray(v) for w, v in WORDS.items()}, name="tiny")


@pytest.fixture
def embeddings(word_table) -> EmbeddingEngine:
    return EmbeddingEngine(word_table)


@pytest.fixture
def store(tmp_path, embeddings):
    """File-based context store in tmp_path, closed after test."""
    s = ContextStore(tmp_path / "vectors.db", embeddings)
    yield s
    s.close()


class FakeRecognizer:
    """Recognizer returning scripted outputs and recording window sizes."""

    def __init__(self, outputs=None, fail_load=False):
        self.outputs = list(outputs or [])
        self.fail_load = fail_load
        self.loaded = False
        self.windows: list[int] = []

    def load(self) -> None:
        if self.fail_load:
            raise RuntimeError("model file missing")
        self.loaded = True

    def transcribe(self, samples) -> str:
        self.windows.append(len(samples))
        return self.outputs.pop(0) if self.outputs else ""


class FakeLLM:
    """Stands in for OllamaClient; streams scripted tokens."""

    def __init__(self, tokens=None, delay=0.0, available=True, error=None, shortened="Court."):
        self.tokens = list(tokens or ["Bonne ", "question", "."])
        self.delay = delay
        self.available = available
        self.error = error
        self.shortened = shortened
        self.prompts: list[tuple[str, str]] = []
        self.closed_streams = 0

    async def is_available(self) -> bool:
        return self.available

    async def generate(self, prompt, system=None) -> str:
        if self.error:
            raise self.error
        self.prompts.append((prompt, system))
        return self.shortened

    async def generate_stream(self, prompt, system=None):
        self.prompts.append((prompt, system))
        try:
            if self.error:
                raise self.error
            for token in self.tokens:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield token
        finally:
            self.closed_streams += 1


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()
