"""EPUB → per-chapter Markdown.

Flow for process_epub():
  1. read the EPUB with EbookLib (missing/unreadable file → EpubError)
  2. pull Dublin Core metadata and the table of contents
  3. copy every image in the manifest to {output_dir}/{book_id}/assets/
  4. convert each spine document to Markdown with BeautifulSoup
     (headings → '#', list items → '- ', images → assets/ links)
  5. write chapter_NNN.md (with a frontmatter block) per document

Chapters are numbered from 0 in spine order.
"""

from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path, PurePosixPath

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub

from ludic_reader.models import Book, Chapter, TocEntry

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 500
MIN_CHUNK_SIZE = 50

_IMAGE_SUFFIX = re.compile(r"\.(jpg|jpeg|png|gif|svg|webp)$", re.IGNORECASE)
_HEADING = re.compile(r"^#{1,6}\s")
_SENTENCE_END = re.compile(r"(?<=[.!?。！？\n])\s*")
_BLOCK_SPLIT = re.compile(r"\n{2,}")

_TEXT_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre")


class EpubError(ValueError):
    """Raised when an EPUB file is missing or cannot be parsed."""


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def read_book(epub_path: Path) -> epub.EpubBook:
    if not epub_path.is_file():
        raise EpubError(f"EPUB file not found: {epub_path}")
    try:
        return epub.read_epub(str(epub_path))
    except Exception as e:
        raise EpubError(f"Cannot read EPUB {epub_path}: {e}") from e


def _metadata(book: epub.EpubBook, name: str) -> list[str]:
    return [value for value, _attrs in book.get_metadata("DC", name) if value]


def extract_toc(book: epub.EpubBook) -> list[TocEntry]:
    """Hierarchical TOC. EbookLib nests sections as (Section, [children]) tuples."""

    def convert(item) -> TocEntry | None:
        if isinstance(item, tuple):
            section, children = item
            return TocEntry(
                title=getattr(section, "title", "") or "",
                href=getattr(section, "href", "") or "",
                children=[c for c in (convert(child) for child in children) if c],
            )
        if hasattr(item, "title") and hasattr(item, "href"):
            return TocEntry(title=item.title or "", href=item.href or "")
        return None

    return [entry for entry in (convert(item) for item in book.toc) if entry]


def _flatten_toc(entries: list[TocEntry]) -> list[TocEntry]:
    flat: list[TocEntry] = []
    for entry in entries:
        flat.append(entry)
        flat.extend(_flatten_toc(entry.children))
    return flat


def _toc_titles(toc: list[TocEntry]) -> dict[str, str]:
    """Document name → first TOC title that points into it."""
    titles: dict[str, str] = {}
    for entry in _flatten_toc(toc):
        doc = entry.href.split("#", 1)[0]
        if doc and entry.title and doc not in titles:
            titles[doc] = entry.title
    return titles


def _lookup_title(titles: dict[str, str], doc_name: str) -> str | None:
    if doc_name in titles:
        return titles[doc_name]
    for href, title in titles.items():
        if doc_name.endswith(href) or href.endswith(doc_name):
            return title
    return None


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def extract_images(book: epub.EpubBook, assets_dir: Path) -> list[str]:
    """Write every manifest image to assets_dir; returns the file basenames."""
    names: list[str] = []
    for item in book.get_items():
        href = item.get_name()
        if not href or not _IMAGE_SUFFIX.search(href):
            continue
        basename = PurePosixPath(href).name
        try:
            assets_dir.mkdir(parents=True, exist_ok=True)
            (assets_dir / basename).write_bytes(item.get_content())
        except OSError as e:
            logger.warning("Failed to extract image %s: %s", href, e)
            continue
        names.append(basename)
    return names


# ---------------------------------------------------------------------------
# HTML → Markdown
# ---------------------------------------------------------------------------

def html_to_markdown(html: bytes | str, image_names: list[str] | None = None) -> str:
    """Convert one XHTML document to Markdown blocks separated by blank lines."""
    if isinstance(html, bytes):
        html = html.decode("utf-8", errors="ignore")
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    known = set(image_names or [])
    blocks: list[str] = []
    for tag in soup.find_all([*_TEXT_TAGS, "img"]):
        if tag.name == "img":
            src = tag.get("src", "")
            basename = PurePosixPath(src).name
            if basename in known:
                src = f"assets/{basename}"
            blocks.append(f"![{tag.get('alt', '')}]({src})")
            continue
        if tag.find_parent(_TEXT_TAGS):
            continue
        text = tag.get_text(" ", strip=True)
        if not text:
            continue
        if tag.name.startswith("h"):
            blocks.append(f"{'#' * int(tag.name[1])} {text}")
        elif tag.name == "li":
            blocks.append(f"- {text}")
        elif tag.name == "blockquote":
            blocks.append(f"> {text}")
        else:
            blocks.append(text)

    if not blocks:
        text = soup.get_text("\n", strip=True)
        return text
    return "\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

def split_into_chunks(
    markdown: str,
    max_chunk_size: int = MAX_CHUNK_SIZE,
    min_chunk_size: int = MIN_CHUNK_SIZE,
) -> list[dict]:
    """Split chapter Markdown into retrieval chunks.

    Blocks (blank-line separated) are merged up to max_chunk_size; a heading
    always starts a new chunk; a single block longer than max_chunk_size is
    split on sentence boundaries. Chunks shorter than min_chunk_size are
    dropped. Returns [{"text", "type", "index"}] with consecutive indices.
    """
    if not markdown or not markdown.strip():
        return []

    chunks: list[dict] = []

    def emit(text: str, kind: str) -> None:
        chunks.append({"text": text.strip(), "type": kind, "index": len(chunks)})

    current = ""
    current_type = "paragraph"
    for block in _BLOCK_SPLIT.split(markdown):
        block = block.strip()
        if not block:
            continue
        is_heading = bool(_HEADING.match(block))
        block_type = "heading" if is_heading else "paragraph"

        if current and (len(current) + len(block) > max_chunk_size or is_heading):
            if len(current) >= min_chunk_size:
                emit(current, current_type)
            current = ""

        if len(block) > max_chunk_size:
            sentence_chunk = ""
            for sentence in _SENTENCE_END.split(block):
                if not sentence:
                    continue
                if (
                    len(sentence_chunk) + len(sentence) > max_chunk_size
                    and len(sentence_chunk) >= min_chunk_size
                ):
                    emit(sentence_chunk, block_type)
                    sentence_chunk = ""
                sentence_chunk += (" " if sentence_chunk else "") + sentence
            if len(sentence_chunk) >= min_chunk_size:
                emit(sentence_chunk, block_type)
        else:
            current += ("\n\n" if current else "") + block
            current_type = block_type

    if len(current) >= min_chunk_size:
        emit(current, current_type)
    return chunks


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def save_chapter(chapter: Chapter, output_dir: Path) -> Path:
    path = output_dir / f"chapter_{chapter.index:03d}.md"
    title = chapter.title.replace('"', '\\"')
    path.write_text(
        "---\n"
        f'title: "{title}"\n'
        f"index: {chapter.index}\n"
        f"word_count: {chapter.word_count}\n"
        "---\n\n"
        f"{chapter.content}\n"
    )
    return path


def process_epub(epub_path: Path, output_dir: Path) -> tuple[Book, list[Chapter]]:
    """Parse an EPUB and write its chapters under {output_dir}/{book_id}/."""
    book = read_book(epub_path)
    book_id = str(uuid.uuid4())
    markdown_dir = output_dir / book_id
    markdown_dir.mkdir(parents=True, exist_ok=True)

    toc = extract_toc(book)
    titles = _toc_titles(toc)
    image_names = extract_images(book, markdown_dir / "assets")

    chapters: list[Chapter] = []
    for idref, _linear in book.spine:
        item = book.get_item_with_id(idref)
        if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue
        index = len(chapters)
        content = html_to_markdown(item.get_content(), image_names)
        chapter = Chapter(
            index=index,
            title=_lookup_title(titles, item.get_name()) or f"Chapter {index + 1}",
            content=content,
            word_count=len(content.split()),
        )
        path = save_chapter(chapter, markdown_dir)
        chapters.append(chapter.model_copy(update={"file_path": str(path)}))

    authors = _metadata(book, "creator")
    languages = _metadata(book, "language")
    descriptions = _metadata(book, "description")
    titles_meta = _metadata(book, "title")
    metadata = Book(
        id=book_id,
        title=titles_meta[0] if titles_meta else "Unknown Title",
        author=", ".join(authors) if authors else "Unknown Author",
        language=languages[0] if languages else "en",
        description=BeautifulSoup(descriptions[0], "html.parser").get_text(" ", strip=True) if descriptions else "",
        chapter_count=len(chapters),
        markdown_dir=str(markdown_dir),
        toc=toc,
    )
    logger.info(
        "Parsed EPUB title=%r chapters=%d images=%d", metadata.title, len(chapters), len(image_names)
    )
    return metadata, chapters
