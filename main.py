"""Ludic Reader — command line.

    python main.py import book.epub
    python main.py search <book_id> "query"
    python main.py serve
    python main.py debug <book_id> "/goto:ALCHEMY" [--difficulty expert]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from ludic_reader.config import Settings, build_embedder, load_settings
from ludic_reader.epub import EpubError
from ludic_reader.embeddings import EmbeddingError
from ludic_reader.importer import import_book
from ludic_reader.index import IndexRegistry
from ludic_reader.pipeline.orchestrator import ReaderSession, SessionError
from ludic_reader.storage import Storage
from ludic_reader.validation import AnswerValidator


def _print_progress(stage: str, current: int, total: int) -> None:
    print(f"\r[{stage}] {current}/{total}", end="\n" if current >= total else "", flush=True)


async def cmd_import(settings: Settings, args: argparse.Namespace) -> int:
    storage = Storage(settings.data_dir)
    registry = IndexRegistry(settings.data_dir, build_embedder(settings))
    result = await import_book(
        args.epub, storage, registry, _print_progress, difficulty_id=settings.default_difficulty
    )
    print(f"Imported \"{result.book.title}\" by {result.book.author}")
    print(f"  Book ID:  {result.book.id}")
    print(f"  Chapters: {result.book.chapter_count}")
    print(f"  Chunks:   {result.chunk_count}")
    return 0


async def cmd_search(settings: Settings, args: argparse.Namespace) -> int:
    registry = IndexRegistry(settings.data_dir, build_embedder(settings))
    hits = await registry.search_expanded(args.book_id, args.query, args.k)
    if not hits:
        print("No relevant content found.")
        return 0
    for i, hit in enumerate(hits, start=1):
        print(f"[Match {i}] Similarity: {hit.score * 100:.2f}%")
        print(f"Chapter: {hit.metadata.get('chapter_title', 'Unknown')}")
        if hit.metadata.get("file_uri"):
            print(f"Link: {hit.metadata['file_uri']}")
        print("---")
        print(hit.text.strip())
        print("---\n")
    return 0


def cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from ludic_reader.app import create_app

    uvicorn.run(create_app(settings), host=args.host or settings.host, port=args.port or settings.port)
    return 0


def cmd_debug(settings: Settings, args: argparse.Namespace) -> int:
    storage = Storage(settings.data_dir)
    registry = IndexRegistry(settings.data_dir, build_embedder(settings))
    session = ReaderSession(storage, AnswerValidator(registry.embedder, registry), registry)
    result = session.run_debug(args.book_id, args.difficulty or settings.default_difficulty, args.command)
    print(result.markdown)
    return 1 if result.error else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ludic Reader: gamified deep reading of EPUB books")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: DATA_DIR or ./data)")
    sub = parser.add_subparsers(dest="command_name", required=True)

    p_import = sub.add_parser("import", help="Import an EPUB file")
    p_import.add_argument("epub", type=Path)

    p_search = sub.add_parser("search", help="Search a book's passages")
    p_search.add_argument("book_id")
    p_search.add_argument("query")
    p_search.add_argument("-k", type=int, default=8, help="Number of matches (default: 8)")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)

    p_debug = sub.add_parser("debug", help="Run a debug console command against a game")
    p_debug.add_argument("book_id")
    p_debug.add_argument("command", help="e.g. /goto:ALCHEMY or /set:XP:500")
    p_debug.add_argument("--difficulty", default=None)

    args = parser.parse_args(argv)

    settings = load_settings()
    if args.data_dir:
        settings = settings.model_copy(update={"data_dir": args.data_dir})
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command_name == "import":
            return asyncio.run(cmd_import(settings, args))
        if args.command_name == "search":
            return asyncio.run(cmd_search(settings, args))
        if args.command_name == "serve":
            return cmd_serve(settings, args)
        return cmd_debug(settings, args)
    except (EpubError, EmbeddingError, SessionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
