"""FastMCP server exposing book search and chapter links as MCP tools.

Tools:
  - search_book(query, book_id, k)    — expanded passage search with file links
  - chapter_link(chapter_index, book_id) — file URI of a chapter's Markdown

When book_id is omitted the most recently imported book is used. Storage and
the index registry are module state replaced via set_context() for tests, or
built from settings when run as __main__.

Usage:
    python -m ludic_reader.mcp_server
"""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from ludic_reader.index import IndexRegistry, chapter_path
from ludic_reader.storage import Storage

mcp = FastMCP("ludic-reader")

_storage: Storage | None = None
_registry: IndexRegistry | None = None


def set_context(storage: Storage, registry: IndexRegistry) -> None:
    """Replace the active storage and index registry (used in tests)."""
    global _storage, _registry
    _storage = storage
    _registry = registry


def _resolve_book(book_id: str | None) -> str:
    if _storage is None or _registry is None:
        raise RuntimeError("MCP server context is not initialised")
    if book_id:
        if _storage.get_book(book_id) is None:
            raise ValueError(f"Book not found: {book_id}")
        return book_id
    books = _storage.list_books()
    if not books:
        raise ValueError("No imported books found")
    return books[0].id


@mcp.tool()
async def search_book(query: str, book_id: str | None = None, k: int = 8) -> list[dict]:
    """Search a book for passages similar to the query, with neighbouring context."""
    book_id = _resolve_book(book_id)
    hits = await _registry.search_expanded(book_id, query, k)
    return [
        {
            "text": hit.text.strip(),
            "score": round(hit.score, 4),
            "chapter_title": hit.metadata.get("chapter_title", "Unknown"),
            "chapter_index": hit.metadata.get("chapter_index"),
            "file_uri": hit.metadata.get("file_uri", ""),
        }
        for hit in hits
    ]


@mcp.tool()
def chapter_link(chapter_index: int, book_id: str | None = None) -> dict:
    """Return a file:// link to one chapter's Markdown file."""
    book_id = _resolve_book(book_id)
    path = chapter_path(_storage.base_path, book_id, chapter_index)
    if not path.is_file():
        raise ValueError(f"Chapter file not found: {path.name} (index {chapter_index})")
    return {"book_id": book_id, "chapter_index": chapter_index, "file_uri": path.resolve().as_uri()}


if __name__ == "__main__":
    from ludic_reader.config import build_embedder, load_settings

    settings = load_settings()
    set_context(
        Storage(settings.data_dir),
        IndexRegistry(settings.data_dir, build_embedder(settings)),
    )
    mcp.run()
