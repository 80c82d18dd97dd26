"""Embedding blob serialization (flat little-endian float64 arrays)."""

from typing import Sequence

import numpy as np

VECTOR_DTYPE = np.dtype("<f8")


def encode_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector to raw little-endian float64 bytes."""
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """
    Rebuild a vector from a blob.

    Element count is byte length / element size; a trailing partial
    element is ignored.
    """
    usable = len(blob) - len(blob) % VECTOR_DTYPE.itemsize
    return np.frombuffer(blob[:usable], dtype=VECTOR_DTYPE)
