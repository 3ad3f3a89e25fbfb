"""Book import pipeline.

    epub_parsing → chunking → vectorizing → db_write

The progress callback receives (stage, current, total) for each step.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel

from ludic_reader.difficulty import DEFAULT_DIFFICULTY, get_config
from ludic_reader.engine import initialize_state
from ludic_reader.epub import process_epub, split_into_chunks
from ludic_reader.index import IndexRegistry
from ludic_reader.models import Book
from ludic_reader.storage import Storage

logger = logging.getLogger(__name__)

ImportProgress = Callable[[str, int, int], None]


class ImportResult(BaseModel):
    book: Book
    chunk_count: int


async def import_book(
    epub_path: Path,
    storage: Storage,
    registry: IndexRegistry,
    on_progress: ImportProgress | None = None,
    difficulty_id: str = DEFAULT_DIFFICULTY,
) -> ImportResult:
    def report(stage: str, current: int, total: int) -> None:
        if on_progress:
            on_progress(stage, current, total)
        else:
            logger.debug("[%s] %d/%d", stage, current, total)

    difficulty_id = get_config(difficulty_id).id
    report("epub_parsing", 0, 1)
    book, chapters = process_epub(epub_path, storage.base_path)
    report("epub_parsing", 1, 1)
    logger.info("Parsed %r: %d chapters", book.title, len(chapters))

    report("chunking", 0, len(chapters))
    items: list[dict] = []
    for i, chapter in enumerate(chapters):
        for chunk in split_into_chunks(chapter.content):
            items.append({
                "text": chunk["text"],
                "metadata": {
                    "chapter_index": chapter.index,
                    "chapter_title": chapter.title,
                    "chunk_index": chunk["index"],
                    "type": chunk["type"],
                },
            })
        report("chunking", i + 1, len(chapters))
    logger.info("Created %d chunks from %d chapters", len(items), len(chapters))

    report("vectorizing", 0, len(items))
    added = await registry.batch_add(
        book.id, items, lambda current, total: report("vectorizing", current, total)
    )
    logger.info("Vectorized %d chunks for book %s", added, book.id)

    report("db_write", 0, 1)
    storage.add_book(book)
    storage.add_chapters(book.id, chapters)
    storage.save_game_state(book.id, difficulty_id, initialize_state())
    report("db_write", 1, 1)

    logger.info("Imported %r as %s", book.title, book.id)
    return ImportResult(book=book, chunk_count=added)
