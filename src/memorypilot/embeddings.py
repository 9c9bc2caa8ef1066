"""Optional embeddings. Cosine similarity for semantic recall.

Providers:
    OllamaEmbedder    local Ollama server (/api/embed)
    HashingEmbedder   numpy hashing vectorizer, fully offline
    NullEmbedder      no vectors at all; recall stays keyword-only

Vectors travel as float32 bytes (numpy ``.tobytes()``), which is also how
the store keeps them.
"""

from __future__ import annotations

import collections
import hashlib
import json
import logging
import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Protocol

import numpy as np

from memorypilot.errors import EmbeddingError

if TYPE_CHECKING:
    from memorypilot.config import AgentConfig
    from memorypilot.models import Memory

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"

# Blend used by hybrid recall.
SIMILARITY_WEIGHT = 0.6
IMPORTANCE_WEIGHT = 0.3
KEYWORD_WEIGHT = 0.1

RELATED_THRESHOLD = 0.85


class Embedder(Protocol):
    def embed(self, text: str) -> bytes | None:
        """Return a float32 vector as bytes, or None when unavailable."""


# ── Providers ──────────────────────────────────────────────────────────


class NullEmbedder:
    """No embedding service. Always answers 'unavailable'."""

    def embed(self, text: str) -> bytes | None:
        return None

    def embed_batch(self, texts: list[str]) -> list[bytes | None]:
        return [None] * len(texts)


class HashingEmbedder:
    """Hashing vectorizer: token -> bucket -> L2-normalized TF vector.

    Deterministic and fast. Captures word overlap, not meaning.
    """

    def __init__(self, dims: int = 256) -> None:
        self.dims = dims

    def embed(self, text: str) -> bytes | None:
        vec = np.zeros(self.dims, dtype=np.float32)
        for token in text.lower().split():
            h = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vec[h % self.dims] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec.tobytes()

    def embed_batch(self, texts: list[str]) -> list[bytes | None]:
        return [self.embed(t) for t in texts]


class OllamaEmbedder:
    """Ollama embedding provider with a small in-process LRU cache.

    Failures raise EmbeddingError; callers decide how to degrade.
    """

    def __init__(self, endpoint: str = "", model: str = "nomic-embed-text",
                 timeout: float = 30.0, cache_size: int = 512) -> None:
        self.endpoint = (endpoint or DEFAULT_OLLAMA_URL).rstrip("/")
        self.model = model or "nomic-embed-text"
        self.timeout = timeout
        self._cache_size = cache_size
        self._cache: collections.OrderedDict[str, bytes] = collections.OrderedDict()

    def _post(self, inputs: str | list[str]) -> list[list[float]]:
        payload = json.dumps({"model": self.model, "input": inputs}).encode()
        req = urllib.request.Request(
            f"{self.endpoint}/api/embed",
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read())
            embeddings = data["embeddings"]
        except (urllib.error.URLError, OSError, ValueError,
                KeyError, TypeError) as exc:
            raise EmbeddingError(f"ollama embedding failed: {exc}") from exc
        if not isinstance(embeddings, list):
            raise EmbeddingError("ollama embedding response has no vectors")
        return embeddings

    def _cache_put(self, text: str, value: bytes) -> None:
        self._cache[text] = value
        self._cache.move_to_end(text)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def embed(self, text: str) -> bytes | None:
        if text in self._cache:
            self._cache.move_to_end(text)
            return self._cache[text]
        embeddings = self._post(text)
        if not embeddings:
            raise EmbeddingError("ollama returned an empty embedding list")
        result = np.asarray(embeddings[0], dtype=np.float32).tobytes()
        self._cache_put(text, result)
        return result

    def embed_batch(self, texts: list[str]) -> list[bytes | None]:
        """Embed several texts in one HTTP call, reusing cached vectors."""
        results: list[bytes | None] = [None] * len(texts)
        to_fetch: list[tuple[int, str]] = []
        for i, text in enumerate(texts):
            if text in self._cache:
                self._cache.move_to_end(text)
                results[i] = self._cache[text]
            else:
                to_fetch.append((i, text))
        if to_fetch:
            embeddings = self._post([t for _, t in to_fetch])
            if len(embeddings) != len(to_fetch):
                raise EmbeddingError(
                    f"asked for {len(to_fetch)} vectors, got {len(embeddings)}"
                )
            for (idx, text), values in zip(to_fetch, embeddings):
                result = np.asarray(values, dtype=np.float32).tobytes()
                self._cache_put(text, result)
                results[idx] = result
        return results


def build_embedder(config: AgentConfig) -> Embedder:
    provider = (config.embedding_provider or "none").lower()
    if provider == "ollama":
        return OllamaEmbedder(config.ollama_url, config.embedding_model)
    if provider == "hashing":
        return HashingEmbedder()
    if provider != "none":
        logger.warning("Unknown embedding provider %r, embeddings disabled",
                       provider)
    return NullEmbedder()


# ── Similarity ─────────────────────────────────────────────────────────


def to_vector(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype=np.float32)


def cosine_similarity(a: bytes, b: bytes) -> float:
    """Cosine similarity between two float32 byte vectors.

    Raises ValueError on dimension mismatch (vectors from different models).
    """
    va, vb = to_vector(a), to_vector(b)
    if va.shape != vb.shape:
        raise ValueError(
            f"Embedding dimension mismatch: {va.shape[0]}d vs {vb.shape[0]}d"
        )
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _safe_similarity(a: bytes, b: bytes | None) -> float:
    if b is None:
        return 0.0
    try:
        return cosine_similarity(a, b)
    except ValueError:
        return 0.0


def _keyword_hit(query: str, mem: Memory) -> float:
    if not query:
        return 0.0
    needle = query.casefold()
    haystacks = [mem.content, mem.summary, *mem.topics]
    return 1.0 if any(needle in h.casefold() for h in haystacks) else 0.0


def hybrid_rank(query_embedding: bytes, memories: list[Memory],
                query: str = "", limit: int = 5) -> list[Memory]:
    """Rank memories by similarity blended with importance and keyword match.

    Memories without a vector still compete on importance and keywords.
    """
    scored = []
    for mem in memories:
        sim = _safe_similarity(query_embedding, mem.embedding)
        score = (SIMILARITY_WEIGHT * sim
                 + IMPORTANCE_WEIGHT * mem.importance
                 + KEYWORD_WEIGHT * _keyword_hit(query, mem))
        scored.append((score, mem.importance, mem.last_accessed, mem))
    scored.sort(key=lambda x: x[:3], reverse=True)
    return [mem for *_, mem in scored[:limit]]


def find_related(embedding: bytes, candidates: list[Memory],
                 threshold: float = RELATED_THRESHOLD,
                 limit: int = 5) -> list[str]:
    """Ids of candidates whose vectors are close to ``embedding``."""
    scored = []
    for mem in candidates:
        sim = _safe_similarity(embedding, mem.embedding)
        if sim >= threshold:
            scored.append((sim, mem.id))
    scored.sort(reverse=True)
    return [mid for _, mid in scored[:limit]]
