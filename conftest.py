"""Shared fixtures: tmp-path storage, deterministic embedders and retrievers."""

import math

import pytest
from ebooklib import epub

from ludic_reader.embeddings import HashEmbedder, Similarity, verdict_for
from ludic_reader.engine import initialize_state
from ludic_reader.models import Book, Chapter, SearchHit, TocEntry
from ludic_reader.storage import Storage


def vec(similarity: float) -> list[float]:
    """Unit vector whose cosine with [1, 0] equals `similarity`."""
    return [similarity, math.sqrt(max(0.0, 1 - similarity ** 2))]


class TableEmbedder:
    """Embedder returning preset vectors per text; unknown text gets [1, 0]."""

    def __init__(self, table: dict[str, list[float]] | None = None) -> None:
        self.table = table or {}
        self.calls: list[str] = []

    async def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.table.get(text, [1.0, 0.0]))


class StubRetriever:
    """Retriever with canned hits and a fixed best-match score."""

    def __init__(self, hits: list[SearchHit] | None = None, score: float | None = None) -> None:
        self.hits = hits or []
        self.score = score
        self.searches: list[tuple[str, str, int]] = []

    async def search(self, book_id: str, query: str, k: int = 5) -> list[SearchHit]:
        self.searches.append((book_id, query, k))
        return self.hits[:k]

    async def validate_against_index(self, book_id: str, text: str, k: int = 3):
        self.searches.append((book_id, text, k))
        if self.score is None:
            return Similarity(score=0.0, verdict="invalid"), None
        best = SearchHit(text="passage", score=self.score)
        return Similarity(score=self.score, verdict=verdict_for(self.score)), best


CHAPTER_ONE_HTML = (
    "<h1>The Activity of Reading</h1>"
    "<p>Reading is an activity, and all reading must be active to some degree.</p>"
    "<p>The more active the reading the better, and the reader who demands more of himself reads better.</p>"
    '<img src="images/diagram.png" alt="Levels of reading"/>'
)
CHAPTER_TWO_HTML = (
    "<h2>Analytical Reading</h2>"
    "<ul><li>Classify the book according to kind and subject matter.</li>"
    "<li>State what the whole book is about with the utmost brevity.</li></ul>"
    "<blockquote><p>Come to terms with the author by interpreting his key words.</p></blockquote>"
)


@pytest.fixture
def epub_file(tmp_path):
    """A small two-chapter EPUB with one image, written with EbookLib."""
    book = epub.EpubBook()
    book.set_identifier("adler-1940")
    book.set_title("How to Read a Book")
    book.set_language("en")
    book.add_author("Mortimer Adler")
    book.add_author("Charles Van Doren")
    book.add_metadata("DC", "description", "<p>A guide to <b>intelligent</b> reading</p>")

    c1 = epub.EpubHtml(title="The Activity of Reading", file_name="chap_01.xhtml", lang="en")
    c1.content = CHAPTER_ONE_HTML
    c2 = epub.EpubHtml(title="Analytical Reading", file_name="chap_02.xhtml", lang="en")
    c2.content = CHAPTER_TWO_HTML
    image = epub.EpubItem(
        uid="diagram", file_name="images/diagram.png", media_type="image/png", content=b"\x89PNG-fake"
    )
    for item in (c1, c2, image):
        book.add_item(item)

    book.toc = (
        epub.Link("chap_01.xhtml", "The Activity of Reading", "activity"),
        epub.Link("chap_02.xhtml", "Analytical Reading", "analytical"),
    )
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = [c1, c2]

    path = tmp_path / "adler.epub"
    epub.write_epub(str(path), book)
    return path


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "data")


@pytest.fixture
def hash_embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def book() -> Book:
    return Book(
        id="book-1",
        title="How to Read a Book",
        author="Mortimer Adler",
        description="A guide to intelligent reading",
        chapter_count=2,
        toc=[TocEntry(title="The Activity of Reading"), TocEntry(title="Analytical Reading")],
    )


@pytest.fixture
def stored_book(storage: Storage, book: Book) -> Book:
    """A book with two chapters and a fresh master-difficulty game state."""
    storage.add_book(book)
    storage.add_chapters(book.id, [
        Chapter(index=0, title="The Activity of Reading",
                content="Reading is an activity.\n\n" + "Active reading asks questions of the text " * 3),
        Chapter(index=1, title="Analytical Reading",
                content="Analytical reading is thorough reading.\n\n" + "Come to terms with the author " * 3),
    ])
    storage.save_game_state(book.id, "master", initialize_state())
    return book
