"""Vector similarity index over pattern embeddings.

Embeddings are opaque fixed-length float vectors produced by an injected
``EmbeddingGenerator``; the engine never trains a model. With compression
enabled each vector is quantized to int8 using its own affine map::

    q = round((v - min) / (max - min) * 254 - 127)        # [-127, 127]
    v ≈ (q + 127) / 254 * (max - min) + min

which keeps cosine similarity within about 0.01 of the original. A constant
vector (max == min) is stored as zeros and decodes back to the constant.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from patternloop.core.config import VectorConfig
from patternloop.core.errors import ValidationError
from patternloop.core.logging import get_logger
from patternloop.learning.cache import EmbeddingCache
from patternloop.learning.store import EmbeddingRow, PatternStore
from patternloop.utils.time import utc_now

_logger = get_logger("learning.vectors")

_TOKEN = re.compile(r"[a-z0-9]+")

VectorLike = np.ndarray | Sequence[float]


class EmbeddingGenerator(Protocol):
    """Produces fixed-length embeddings for text."""

    @property
    def model_name(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    def generate(self, text: str) -> np.ndarray: ...

    def generate_batch(self, texts: Sequence[str]) -> list[np.ndarray]: ...


class HashEmbeddingGenerator:
    """Deterministic feature-hashing embedder.

    Word tokens and character trigrams are hashed into signed buckets and
    the result is L2-normalized, so texts sharing vocabulary land close
    together. Useful as a default and in tests; swap in a real model for
    semantic quality.
    """

    def __init__(self, dimensions: int = 384, model_name: str = "hash-embedding") -> None:
        self._dimensions = dimensions
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def generate(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimensions, dtype=np.float32)
        for feature in self._features(text):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            sign = 1.0 if value & 1 else -1.0
            vector[(value >> 1) % self._dimensions] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector

    def generate_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        return [self.generate(text) for text in texts]

    @staticmethod
    def _features(text: str) -> list[str]:
        tokens = _TOKEN.findall(text.lower())
        features = [f"w:{token}" for token in tokens]
        for token in tokens:
            padded = f"#{token}#"
            features.extend(f"c:{padded[i:i + 3]}" for i in range(len(padded) - 2))
        return features


# ─── Vector math ──────────────────────────────────────────────────────


def quantize(vector: np.ndarray) -> tuple[np.ndarray, float, float]:
    """Quantize a float vector to int8 with its own (min, max) range."""
    v_min = float(vector.min())
    v_max = float(vector.max())
    value_range = v_max - v_min
    if value_range == 0:
        return np.zeros(vector.shape, dtype=np.int8), v_min, v_max
    scaled = (vector.astype(np.float64) - v_min) / value_range * 254.0 - 127.0
    quantized = np.clip(np.rint(scaled), -127, 127).astype(np.int8)
    return quantized, v_min, v_max


def dequantize(quantized: np.ndarray, v_min: float, v_max: float) -> np.ndarray:
    """Invert ``quantize``."""
    value_range = v_max - v_min
    if value_range == 0:
        return np.full(quantized.shape, v_min, dtype=np.float32)
    restored = (quantized.astype(np.float64) + 127.0) / 254.0 * value_range + v_min
    return restored.astype(np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def dot_product(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.dot(a, b))


@dataclass
class VectorSearchResult:
    pattern_id: str
    similarity: float


@dataclass
class SimilarityMetrics:
    cosine: float
    euclidean: float
    dot_product: float


# ─── Index ────────────────────────────────────────────────────────────


class VectorIndex:
    """One embedding per pattern id, searchable by cosine similarity.

    Args:
        store: Pattern store holding the embedding rows.
        config: Model name, dimensions, compression and cache settings.
        generator: Text embedder; defaults to HashEmbeddingGenerator with
            the configured model name and dimensions.
        cache: Decoded-vector cache; built from config when omitted.

    Raises:
        ValidationError: If the generator or previously stored embeddings
            disagree with the configured dimension.
    """

    def __init__(
        self,
        store: PatternStore,
        config: VectorConfig | None = None,
        generator: EmbeddingGenerator | None = None,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.config = config or VectorConfig()
        self._store = store
        self._generator = generator or HashEmbeddingGenerator(
            dimensions=self.config.dimensions, model_name=self.config.model
        )
        self._cache = cache or EmbeddingCache(
            capacity=self.config.cache_capacity,
            ttl_seconds=self.config.cache_ttl_seconds,
        )
        if self._generator.dimensions != self.config.dimensions:
            raise ValidationError(
                f"generator produces {self._generator.dimensions} dims, "
                f"index expects {self.config.dimensions}"
            )
        recorded = store.model_dimensions(self.model)
        if recorded is not None and recorded != self.config.dimensions:
            raise ValidationError(
                f"model {self.model} already stored with {recorded} dims, "
                f"index configured for {self.config.dimensions}"
            )

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    # ─── Writes ───────────────────────────────────────────────────────

    def embed(self, text: str) -> np.ndarray:
        """Embed text with the configured generator."""
        return self._coerce(self._generator.generate(text))

    def store_embedding(self, pattern_id: str, vector: VectorLike) -> np.ndarray:
        """Store (or replace) the embedding of a pattern.

        Returns:
            The vector as it will be read back (after any quantization).

        Raises:
            ValidationError: On a dimension mismatch or non-finite values.
            NotFoundError: If the pattern does not exist.
        """
        array = self._coerce(vector)
        if self.config.compression_enabled:
            quantized, v_min, v_max = quantize(array)
            row = EmbeddingRow(
                pattern_id=pattern_id,
                model=self.model,
                dims=self.dimensions,
                vector=quantized.tobytes(),
                compressed=True,
                min_val=v_min,
                max_val=v_max,
                created_at=utc_now(),
            )
            stored = dequantize(quantized, v_min, v_max)
        else:
            row = EmbeddingRow(
                pattern_id=pattern_id,
                model=self.model,
                dims=self.dimensions,
                vector=array.tobytes(),
                compressed=False,
                min_val=None,
                max_val=None,
                created_at=utc_now(),
            )
            stored = array
        self._store.put_embedding(row)
        self._cache.put(pattern_id, stored)
        return stored

    def store(self, pattern_id: str, content: str | VectorLike) -> np.ndarray:
        """Store an embedding from text (embedded first) or a ready vector."""
        if isinstance(content, str):
            return self.store_embedding(pattern_id, self.embed(content))
        return self.store_embedding(pattern_id, content)

    def delete_embedding(self, pattern_id: str) -> bool:
        self._cache.evict(pattern_id)
        return self._store.delete_embedding(pattern_id)

    def forget(self, pattern_ids: Sequence[str]) -> None:
        """Drop cached vectors of patterns deleted elsewhere."""
        for pattern_id in pattern_ids:
            self._cache.evict(pattern_id)

    # ─── Reads ────────────────────────────────────────────────────────

    def get_embedding(self, pattern_id: str) -> np.ndarray | None:
        cached = self._cache.get(pattern_id)
        if cached is not None:
            return cached
        row = self._store.get_embedding_row(pattern_id)
        if row is None or row.model != self.model:
            return None
        vector = self._decode(row)
        self._cache.put(pattern_id, vector)
        return vector

    def count(self) -> int:
        return self._store.count_embeddings(self.model)

    def similarity_search(
        self,
        query: VectorLike,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[VectorSearchResult]:
        """Top-k stored embeddings by cosine similarity to ``query``.

        Results below ``min_similarity`` are dropped; ties keep insertion
        order.

        Raises:
            ValidationError: On a dimension mismatch.
        """
        query_vec = self._coerce(query)
        results: list[VectorSearchResult] = []
        for row in self._store.embedding_rows(self.model):
            vector = self._cache.get(row.pattern_id)
            if vector is None:
                vector = self._decode(row)
                self._cache.put(row.pattern_id, vector)
            similarity = cosine_similarity(query_vec, vector)
            if similarity >= min_similarity:
                results.append(VectorSearchResult(row.pattern_id, similarity))
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:k]

    def batch_similarity_search(
        self,
        queries: Sequence[VectorLike],
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[list[VectorSearchResult]]:
        return [self.similarity_search(query, k, min_similarity) for query in queries]

    def compute_similarity_metrics(self, a: VectorLike, b: VectorLike) -> SimilarityMetrics:
        va, vb = self._coerce(a), self._coerce(b)
        return SimilarityMetrics(
            cosine=cosine_similarity(va, vb),
            euclidean=euclidean_distance(va, vb),
            dot_product=dot_product(va, vb),
        )

    # ─── Cache ────────────────────────────────────────────────────────

    def get_cache_stats(self) -> dict[str, object]:
        return self._cache.stats()

    def clear_expired_cache(self) -> int:
        removed = self._cache.clear_expired()
        if removed:
            _logger.debug("vector_cache.expired_cleared", removed=removed)
        return removed

    def clear_cache(self) -> None:
        self._cache.clear()

    # ─── Helpers ──────────────────────────────────────────────────────

    def _coerce(self, vector: VectorLike) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1 or array.shape[0] != self.dimensions:
            raise ValidationError(
                f"expected a {self.dimensions}-dim vector, got shape {array.shape}"
            )
        if not np.all(np.isfinite(array)):
            raise ValidationError("embedding contains non-finite values")
        return array

    def _decode(self, row: EmbeddingRow) -> np.ndarray:
        if row.compressed:
            quantized = np.frombuffer(row.vector, dtype=np.int8)
            return dequantize(quantized, row.min_val or 0.0, row.max_val or 0.0)
        return np.frombuffer(row.vector, dtype=np.float32).copy()
