"""Embedding clients and similarity scoring.

The validator and the vector index take an embedder matching the protocol:

    async def __call__(self, text: str) -> list[float]: ...

Three implementations are provided:

    SentenceTransformerEmbedder — local sentence-transformers model
                                  (all-MiniLM-L6-v2 by default), lazy-loaded
                                  on first call, normalized output.
    HttpEmbedder                — OpenAI-compatible POST /v1/embeddings.
    HashEmbedder                — deterministic hashed bag-of-words. No model,
                                  no network; useful for smoke-testing the
                                  import and validation wiring.

All backend failures surface as EmbeddingError.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from typing import Any, NamedTuple, Protocol

import httpx
import numpy as np

from ludic_reader.models import Verdict

logger = logging.getLogger(__name__)

VALID_THRESHOLD = 0.7
PARTIAL_THRESHOLD = 0.5


# ---------------------------------------------------------------------------
# Protocol — every embedder must match this signature
# ---------------------------------------------------------------------------

class Embedder(Protocol):
    async def __call__(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

class Similarity(NamedTuple):
    score: float
    verdict: Verdict


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is all zeros."""
    vec_a = np.asarray(a, dtype=np.float32)
    vec_b = np.asarray(b, dtype=np.float32)
    if vec_a.shape != vec_b.shape:
        raise ValueError(f"Vector dimensions must match: {vec_a.shape[0]} vs {vec_b.shape[0]}")
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / norm)


def verdict_for(score: float) -> Verdict:
    if score > VALID_THRESHOLD:
        return "valid"
    if score > PARTIAL_THRESHOLD:
        return "partial"
    return "invalid"


async def compute_similarity(embedder: Embedder, text: str, reference: str) -> Similarity:
    vec_a = await embedder(text)
    vec_b = await embedder(reference)
    score = cosine_similarity(vec_a, vec_b)
    logger.debug("similarity score=%.3f text_len=%d ref_len=%d", score, len(text), len(reference))
    return Similarity(score=score, verdict=verdict_for(score))


# ---------------------------------------------------------------------------
# SentenceTransformerEmbedder — local model
# ---------------------------------------------------------------------------

class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use.

    Encoding runs in a worker thread so the event loop is not blocked.

    Args:
        model_name: sentence-transformers model id. Defaults to all-MiniLM-L6-v2
                    (384 dimensions, ~23MB download on first run).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        self._model_name = model_name
        self._model = None

    def _load(self):
        if self._model is None:
            logger.info("Loading embedding model %s (first run may download it)...", self._model_name)
            try:
                from sentence_transformers import SentenceTransformer

                self._model = SentenceTransformer(self._model_name)
            except Exception as e:
                raise EmbeddingError(f"Failed to load embedding model {self._model_name}: {e}") from e
            logger.info("Embedding model loaded.")
        return self._model

    def _encode(self, text: str) -> list[float]:
        model = self._load()
        try:
            vector = model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e
        return vector.astype(np.float32).tolist()

    async def __call__(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)


# ---------------------------------------------------------------------------
# HttpEmbedder — OpenAI-compatible embeddings endpoint
# ---------------------------------------------------------------------------

class HttpEmbedder:
    """Async HTTP client for an OpenAI-compatible embeddings backend.

    POST {base_url}/v1/embeddings  {"model": ..., "input": ...}
    Response: {"data": [{"embedding": [...]}]}

    Args:
        base_url: Backend root, e.g. "http://localhost:8080".
        api_key:  Bearer token, or empty string if not required.
        model:    Model identifier sent with each request.
        timeout:  HTTP timeout in seconds. Defaults to 30.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _parse_response(self, data: dict) -> list[float]:
        items = data.get("data")
        if not items or "embedding" not in items[0]:
            raise EmbeddingError("Unexpected response format from embeddings backend")
        return [float(x) for x in items[0]["embedding"]]

    async def __call__(self, text: str) -> list[float]:
        url = f"{self._base_url}/v1/embeddings"
        body: dict = {"input": text}
        if self._model:
            body["model"] = self._model
        logger.debug("embedding call url=%s text_len=%d", url, len(text))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise EmbeddingError(f"Cannot connect to embeddings backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Embeddings backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Embeddings backend timed out after {self._timeout}s") from e

        return self._parse_response(resp.json())


# ---------------------------------------------------------------------------
# HashEmbedder — deterministic, model-free
# ---------------------------------------------------------------------------

_TOKEN = re.compile(r"\w+", re.UNICODE)


class HashEmbedder:
    """Hashed bag-of-words vectors. Texts sharing words score as similar.

    Not a semantic model; it lets the import and validation flow run without
    downloading anything.
    """

    def __init__(self, dimensions: int = 256) -> None:
        self._dimensions = dimensions

    async def __call__(self, text: str) -> list[float]:
        vector = np.zeros(self._dimensions, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "little") % self._dimensions] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


# ---------------------------------------------------------------------------
# EmbeddingError — raised by embedders for all backend failures
# ---------------------------------------------------------------------------

class EmbeddingError(RuntimeError):
    """Raised when the embedding backend cannot be loaded, reached, or parsed."""
