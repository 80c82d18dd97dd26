"""
Word-Embedding Engine.

Averages pretrained word vectors (fastText/word2vec .vec text format)
into a fixed-size sentence vector. A single table is used per process:
the primary language if it loads, otherwise the fallback.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ..config.settings import EmbeddingSettings

logger = logging.getLogger(__name__)

# Letters and digits only (unicode aware, underscore excluded)
_WORD_RE = re.compile(r"[^\W_]+")
MIN_WORD_LENGTH = 3


class WordVectorTable:
    """In-memory word -> vector lookup table."""

    def __init__(self, vectors: dict[str, np.ndarray], name: str = ""):
        if not vectors:
            raise ValueError("Word vector table is empty")

        dims = {len(v) for v in vectors.values()}
        if len(dims) != 1:
            raise ValueError(f"Inconsistent vector dimensions: {sorted(dims)}")

        self.name = name
        self.dimensions = dims.pop()
        self._vectors = vectors

    def __len__(self) -> int:
        return len(self._vectors)

    def get(self, word: str) -> Optional[np.ndarray]:
        return self._vectors.get(word)

    @classmethod
    def load(cls, path: Path, max_words: Optional[int] = None) -> "WordVectorTable":
        """
        Load a .vec text file.

        The optional "count dim" header line is detected and skipped.
        Lines whose length disagrees with the table dimension are ignored.

        Args:
            path: Path to the .vec file
            max_words: Stop after this many words (files are frequency sorted)
        """
        vectors: dict[str, np.ndarray] = {}
        dimensions: Optional[int] = None

        with open(path, "r", encoding="utf-8", errors="ignore") as handle:
            for line_number, line in enumerate(handle):
                parts = line.rstrip().split(" ")

                if line_number == 0 and len(parts) == 2 and all(p.isdigit() for p in parts):
                    dimensions = int(parts[1])
                    continue

                if len(parts) < 2:
                    continue

                if dimensions is None:
                    dimensions = len(parts) - 1
                if len(parts) - 1 != dimensions:
                    continue

                try:
                    vectors[parts[0]] = np.asarray(parts[1:], dtype=np.float64)
                except ValueError:
                    continue

                if max_words and len(vectors) >= max_words:
                    break

        logger.info(f"Loaded {len(vectors)} word vectors ({dimensions}d) from {path}")
        return cls(vectors, name=Path(path).stem)


class EmbeddingEngine:
    """
    Sentence embeddings from averaged word vectors.

    Fails soft: embed() returns None instead of raising when no table
    is loaded or no word of the text is known.
    """

    def __init__(self, table: Optional[WordVectorTable] = None):
        self.table = table

        if table is not None:
            logger.info(f"EmbeddingEngine initialized: {table.name} ({table.dimensions}d)")
        else:
            logger.warning("EmbeddingEngine has no word table - embeddings unavailable")

    @classmethod
    def from_settings(cls, settings: EmbeddingSettings) -> "EmbeddingEngine":
        """Load the primary table, falling back to the secondary one."""
        for path in (settings.primary_path, settings.fallback_path):
            if path is None:
                continue
            if not Path(path).exists():
                logger.warning(f"Embedding table not found: {path}")
                continue
            try:
                return cls(WordVectorTable.load(Path(path), max_words=settings.max_words))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load embedding table {path}: {e}")

        return cls(None)

    @property
    def is_available(self) -> bool:
        return self.table is not None

    @property
    def dimensions(self) -> int:
        return self.table.dimensions if self.table else 0

    @staticmethod
    def tokenize(text: str) -> list[str]:
        """Lowercase alphanumeric words longer than two characters."""
        return [w for w in _WORD_RE.findall(text.lower()) if len(w) >= MIN_WORD_LENGTH]

    def embed(self, text: str) -> Optional[list[float]]:
        """
        Embed text as the mean of its known word vectors.

        Returns:
            Vector of length `dimensions`, or None
        """
        if self.table is None or not text:
            return None

        total: Optional[np.ndarray] = None
        count = 0

        for word in self.tokenize(text):
            vector = self.table.get(word)
            if vector is None:
                continue
            total = vector.copy() if total is None else total + vector
            count += 1

        if total is None or count == 0:
            return None

        return (total / count).tolist()

    @staticmethod
    def similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
        """Cosine similarity; 0.0 for empty, mismatched or zero vectors."""
        if a is None or b is None or len(a) == 0 or len(a) != len(b):
            return 0.0

        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if denominator == 0.0:
            return 0.0

        return float(np.dot(va, vb) / denominator)
