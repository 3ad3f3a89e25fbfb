"""Per-book vector index and the registry that owns open index handles.

Each book gets one file-backed index:

    {data_dir}/{book_id}/vector_index.json   ← [{"vector": [...], "metadata": {"text": ..., ...}}]

Chunk metadata written by the importer: text, chapter_index, chapter_title,
chunk_index, type ("heading" | "paragraph").

IndexRegistry caches one VectorIndex per book and is passed explicitly to the
validator and the importer; nothing holds index handles as module state.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from ludic_reader.embeddings import Embedder, EmbeddingError, Similarity, verdict_for
from ludic_reader.models import SearchHit

logger = logging.getLogger(__name__)

INDEX_FILENAME = "vector_index.json"

ProgressCallback = Callable[[int, int], None]


# ---------------------------------------------------------------------------
# Protocol — what the validator needs from retrieval
# ---------------------------------------------------------------------------

class Retriever(Protocol):
    async def search(self, book_id: str, query: str, k: int = 5) -> list[SearchHit]: ...

    async def validate_against_index(
        self, book_id: str, text: str, k: int = 3
    ) -> tuple[Similarity, SearchHit | None]: ...


# ---------------------------------------------------------------------------
# VectorIndex
# ---------------------------------------------------------------------------

class VectorIndex:
    """Flat vector index persisted as one JSON file. Brute-force cosine search."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._items: list[dict[str, Any]] = []
        self._matrix: np.ndarray | None = None
        if path.is_file():
            self._items = json.loads(path.read_text())

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[dict[str, Any]]:
        return list(self._items)

    def insert(self, vector: list[float], metadata: dict[str, Any]) -> None:
        self._items.append({"vector": list(vector), "metadata": metadata})
        self._matrix = None

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._items))
        logger.debug("index saved path=%s items=%d", self._path, len(self._items))

    def _normalized_matrix(self) -> np.ndarray:
        if self._matrix is None:
            matrix = np.asarray([item["vector"] for item in self._items], dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        return self._matrix

    def query(self, vector: list[float], k: int) -> list[SearchHit]:
        if not self._items or k <= 0:
            return []
        query = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        scores = self._normalized_matrix() @ (query / norm)
        top = np.argsort(-scores)[:k]
        return [
            SearchHit(
                text=self._items[i]["metadata"].get("text", ""),
                score=float(scores[i]),
                metadata=dict(self._items[i]["metadata"]),
            )
            for i in top
        ]


# ---------------------------------------------------------------------------
# IndexRegistry
# ---------------------------------------------------------------------------

class IndexRegistry:
    """Owns the open VectorIndex handles for a data directory.

    Args:
        data_dir: Base directory; each book's index lives in {data_dir}/{book_id}/.
        embedder: Embedder used for both chunks and queries.
    """

    def __init__(self, data_dir: Path, embedder: Embedder) -> None:
        self._data_dir = data_dir
        self._embedder = embedder
        self._handles: dict[str, VectorIndex] = {}

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    def get(self, book_id: str) -> VectorIndex:
        index = self._handles.get(book_id)
        if index is None:
            index = VectorIndex(self._data_dir / book_id / INDEX_FILENAME)
            self._handles[book_id] = index
        return index

    def drop(self, book_id: str) -> None:
        """Forget the cached handle (the file on disk is left alone)."""
        self._handles.pop(book_id, None)

    async def add(self, book_id: str, text: str, metadata: dict[str, Any]) -> None:
        index = self.get(book_id)
        index.insert(await self._embedder(text), {"text": text, **metadata})
        index.save()

    async def batch_add(
        self,
        book_id: str,
        items: list[dict[str, Any]],
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Embed and insert many {"text", "metadata"} items; returns how many were added.

        Blank texts are skipped. A chunk whose embedding fails is logged and
        skipped so one bad chunk does not abort a whole import.
        """
        index = self.get(book_id)
        added = 0
        total = len(items)
        for i, item in enumerate(items):
            text = item.get("text", "")
            if text.strip():
                try:
                    vector = await self._embedder(text)
                except EmbeddingError as e:
                    logger.warning("Failed to embed chunk %d: %s", i, e)
                else:
                    index.insert(vector, {"text": text, **item.get("metadata", {})})
                    added += 1
            if on_progress:
                on_progress(i + 1, total)
        index.save()
        return added

    async def search(self, book_id: str, query: str, k: int = 5) -> list[SearchHit]:
        index = self.get(book_id)
        if not len(index):
            return []
        hits = index.query(await self._embedder(query), k)
        logger.debug("search book=%s k=%d hits=%d", book_id, k, len(hits))
        return hits

    async def search_expanded(self, book_id: str, query: str, k: int = 5) -> list[SearchHit]:
        """Search, then widen each hit with its neighbouring chunks in the same chapter.

        Each expanded hit gets a `file_uri` pointing at the chapter Markdown
        file (with a #L<line> anchor when the chunk can be located).
        """
        hits = await self.search(book_id, query, k)
        if not hits:
            return []

        chapters: dict[Any, dict[Any, str]] = {}
        for item in self.get(book_id).items():
            meta = item["metadata"]
            chapters.setdefault(meta.get("chapter_index"), {})[meta.get("chunk_index")] = meta.get("text", "")

        expanded: list[SearchHit] = []
        for hit in hits:
            chapter_index = hit.metadata.get("chapter_index")
            chunk_index = hit.metadata.get("chunk_index")
            neighbours = chapters.get(chapter_index, {})
            parts = []
            if isinstance(chunk_index, int):
                if prev := neighbours.get(chunk_index - 1):
                    parts.append(prev)
                parts.append(hit.text)
                if nxt := neighbours.get(chunk_index + 1):
                    parts.append(nxt)
            else:
                parts.append(hit.text)

            metadata = dict(hit.metadata)
            if isinstance(chapter_index, int):
                chapter_file = chapter_path(self._data_dir, book_id, chapter_index).resolve()
                line = find_line_number(chapter_file, hit.text)
                uri = chapter_file.as_uri()
                metadata["file_uri"] = f"{uri}#L{line}" if line > 1 else uri
            expanded.append(SearchHit(text="\n\n".join(parts), score=hit.score, metadata=metadata))
        return expanded

    async def validate_against_index(
        self, book_id: str, text: str, k: int = 3
    ) -> tuple[Similarity, SearchHit | None]:
        """Score a user answer against the best matching chunk of the book."""
        hits = await self.search(book_id, text, k)
        if not hits:
            return Similarity(score=0.0, verdict="invalid"), None
        best = hits[0]
        return Similarity(score=best.score, verdict=verdict_for(best.score)), best


# ---------------------------------------------------------------------------
# Chapter file helpers
# ---------------------------------------------------------------------------

def chapter_path(data_dir: Path, book_id: str, chapter_index: int) -> Path:
    return data_dir / book_id / f"chapter_{chapter_index:03d}.md"


def find_line_number(path: Path, text: str) -> int:
    """1-based line of the chunk's first line within a file, or 1 if not found."""
    if not path.is_file():
        return 1
    first_line = text.split("\n")[0].strip()
    if not first_line:
        return 1
    for i, line in enumerate(path.read_text().split("\n")):
        if first_line in line:
            return i + 1
    return 1
