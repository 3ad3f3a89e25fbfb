"""Tests for the MCP tools: direct calls and through an in-memory client session."""

import json
from pathlib import Path

import pytest
from mcp.shared.memory import create_connected_server_and_client_session

import ludic_reader.mcp_server as mcp_server
from conftest import TableEmbedder, vec
from ludic_reader.index import IndexRegistry, chapter_path
from ludic_reader.models import Book
from ludic_reader.storage import Storage

PASSAGES = [
    "Inspectional reading is the art of skimming systematically.",
    "Analytical reading is thorough reading.",
    "Syntopical reading compares many books on one subject.",
]


@pytest.fixture
async def context(storage: Storage) -> tuple[Storage, IndexRegistry]:
    """One indexed book with a chapter file on disk, installed as the server context."""
    embedder = TableEmbedder({
        PASSAGES[0]: vec(0.2),
        PASSAGES[1]: vec(0.95),
        PASSAGES[2]: vec(0.3),
        "thorough reading": [1.0, 0.0],
    })
    registry = IndexRegistry(storage.base_path, embedder)
    storage.add_book(Book(id="b1", title="How to Read a Book", imported_at="2025-01-01T00:00:00+00:00"))
    await registry.batch_add("b1", [
        {"text": t, "metadata": {"chapter_index": 0, "chapter_title": "Levels of Reading", "chunk_index": i}}
        for i, t in enumerate(PASSAGES)
    ])
    chapter_path(storage.base_path, "b1", 0).write_text("\n\n".join(PASSAGES) + "\n")
    mcp_server.set_context(storage, registry)
    return storage, registry


class TestSearchBook:
    async def test_expanded_results(self, context) -> None:
        results = await mcp_server.search_book("thorough reading", book_id="b1", k=1)
        assert len(results) == 1
        hit = results[0]
        assert hit["text"] == "\n\n".join(PASSAGES)
        assert hit["score"] == pytest.approx(0.95, abs=1e-3)
        assert hit["chapter_title"] == "Levels of Reading"
        assert hit["chapter_index"] == 0
        assert hit["file_uri"].endswith("chapter_000.md#L3")

    async def test_defaults_to_newest_book(self, context) -> None:
        storage, _ = context
        storage.add_book(Book(id="b0", title="Older", imported_at="2020-01-01T00:00:00+00:00"))
        results = await mcp_server.search_book("thorough reading", k=1)
        assert results[0]["chapter_title"] == "Levels of Reading"

    async def test_unknown_book(self, context) -> None:
        with pytest.raises(ValueError, match="Book not found"):
            await mcp_server.search_book("x", book_id="nope")

    async def test_no_books(self, tmp_path: Path) -> None:
        mcp_server.set_context(Storage(tmp_path / "empty"), IndexRegistry(tmp_path / "empty", TableEmbedder()))
        with pytest.raises(ValueError, match="No imported books"):
            await mcp_server.search_book("x")


class TestChapterLink:
    async def test_link(self, context) -> None:
        storage, _ = context
        link = mcp_server.chapter_link(0, book_id="b1")
        assert link["book_id"] == "b1"
        assert link["chapter_index"] == 0
        assert link["file_uri"] == chapter_path(storage.base_path, "b1", 0).resolve().as_uri()

    async def test_missing_chapter(self, context) -> None:
        with pytest.raises(ValueError, match="Chapter file not found"):
            mcp_server.chapter_link(7, book_id="b1")


class TestClientSession:
    async def test_tools_listed(self, context) -> None:
        async with create_connected_server_and_client_session(mcp_server.mcp) as client:
            tools = await client.list_tools()
        assert {t.name for t in tools.tools} == {"search_book", "chapter_link"}

    async def test_chapter_link_over_mcp(self, context) -> None:
        async with create_connected_server_and_client_session(mcp_server.mcp) as client:
            result = await client.call_tool("chapter_link", {"chapter_index": 0, "book_id": "b1"})
        assert result.isError is False
        assert json.loads(result.content[0].text)["chapter_index"] == 0

    async def test_search_over_mcp(self, context) -> None:
        async with create_connected_server_and_client_session(mcp_server.mcp) as client:
            result = await client.call_tool("search_book", {"query": "thorough reading", "k": 1})
        assert result.isError is False
        assert "Analytical reading is thorough reading." in "".join(c.text for c in result.content)

    async def test_tool_error_reported(self, context) -> None:
        async with create_connected_server_and_client_session(mcp_server.mcp) as client:
            result = await client.call_tool("chapter_link", {"chapter_index": 9, "book_id": "b1"})
        assert result.isError is True
