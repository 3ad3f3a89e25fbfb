"""FastAPI API endpoints under /api.

Endpoint groups: health, difficulties, books (list/get/delete), and the
per-(book, difficulty) game endpoints nested under
/api/books/{book_id}/games/{difficulty_id}/ (state, quest, hint, answer,
verification, rest, phase, debug).

The app's ReaderSession and Storage live on app.state (see app.create_app).
"""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ludic_reader import engine
from ludic_reader.difficulty import get_config, list_difficulties
from ludic_reader.embeddings import EmbeddingError
from ludic_reader.pipeline.orchestrator import (
    VERIFICATION_QUESTION_COUNT,
    Answer,
    ReaderSession,
    SessionError,
)
from ludic_reader.storage import Storage

router = APIRouter()


class QuestBody(BaseModel):
    chapter_index: int | None = None


class HintBody(BaseModel):
    query: str | None = None


class VerificationBody(BaseModel):
    count: int = Field(default=VERIFICATION_QUESTION_COUNT, ge=1, le=10)


class VerificationAnswersBody(BaseModel):
    answers: list[str]


class DebugBody(BaseModel):
    command: str


def _storage(request: Request) -> Storage:
    return request.app.state.storage


def _session(request: Request) -> ReaderSession:
    return request.app.state.session


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/difficulties")
async def difficulties():
    """All difficulty tiers with their multipliers and thresholds."""
    return list_difficulties()


# ── Books ────────────────────────────────────────────────


@router.get("/books")
async def list_books(request: Request):
    """Imported books, most recent first."""
    return _storage(request).list_books()


@router.get("/books/{book_id}")
async def get_book(book_id: str, request: Request):
    book = _storage(request).get_book(book_id)
    if not book:
        raise HTTPException(404, "Book not found")
    return book


@router.delete("/books/{book_id}")
async def delete_book(book_id: str, request: Request):
    """Delete a book and every record scoped to it."""
    if not _storage(request).delete_book(book_id):
        raise HTTPException(404, "Book not found")
    request.app.state.registry.drop(book_id)
    return {"ok": True}


# ── Games ────────────────────────────────────────────────


@router.get("/books/{book_id}/games/{difficulty_id}")
async def get_state(book_id: str, difficulty_id: str, request: Request):
    """Current state; a new game is started for an unplayed difficulty."""
    try:
        return _session(request).start(book_id, difficulty_id)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/quest")
async def request_quest(book_id: str, difficulty_id: str, body: QuestBody, request: Request):
    try:
        return await _session(request).request_quest(book_id, difficulty_id, body.chapter_index)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
    except EmbeddingError as e:
        raise HTTPException(502, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/answer")
async def submit_answer(book_id: str, difficulty_id: str, body: Answer, request: Request):
    try:
        return await _session(request).submit_answer(book_id, difficulty_id, body)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
    except EmbeddingError as e:
        raise HTTPException(502, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/hint")
async def request_hint(book_id: str, difficulty_id: str, body: HintBody, request: Request):
    """Hints for the active quest; costs mana, refused on tiers without hints."""
    try:
        return await _session(request).request_hint(book_id, difficulty_id, body.query)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
    except EmbeddingError as e:
        raise HTTPException(502, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/verification")
async def request_verification(book_id: str, difficulty_id: str, body: VerificationBody, request: Request):
    """Cloze questions that must be answered before critiques are accepted."""
    try:
        return await _session(request).request_verification(book_id, difficulty_id, body.count)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
    except EmbeddingError as e:
        raise HTTPException(502, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/verification/answers")
async def verify_understanding(
    book_id: str, difficulty_id: str, body: VerificationAnswersBody, request: Request
):
    try:
        return await _session(request).verify_understanding(book_id, difficulty_id, body.answers)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
    except EmbeddingError as e:
        raise HTTPException(502, str(e)) from e


@router.post("/books/{book_id}/games/{difficulty_id}/rest")
async def rest(book_id: str, difficulty_id: str, request: Request):
    try:
        return _session(request).rest(book_id, difficulty_id)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e


@router.get("/books/{book_id}/games/{difficulty_id}/phase")
async def phase_check(book_id: str, difficulty_id: str, request: Request):
    """What the reader still needs before leaving the current phase."""
    storage = _storage(request)
    difficulty_id = get_config(difficulty_id).id
    state = storage.get_game_state(book_id, difficulty_id)
    if not state:
        raise HTTPException(404, "Game not found")
    check = engine.check_phase_progression(state, storage.get_inventory(book_id), difficulty_id)
    return {
        "phase": state.current_phase,
        "ready": check.ready,
        "missing": check.missing,
        "tools": engine.available_tools(state.current_phase),
    }


@router.post("/books/{book_id}/games/{difficulty_id}/debug")
async def debug(book_id: str, difficulty_id: str, body: DebugBody, request: Request):
    """Run a debug console command (/goto:, /set:, /debug, ...)."""
    try:
        return _session(request).run_debug(book_id, difficulty_id, body.command)
    except SessionError as e:
        raise HTTPException(404, str(e)) from e
