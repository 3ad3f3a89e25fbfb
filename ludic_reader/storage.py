"""JSON file storage.

All records live in one JSON document under a configurable base directory.
There is no database or ORM — every call loads the document, changes it and
dumps it back.

Directory layout:

    {base}/
      ludic_data.json           ← {collection: [record, ...]} for every collection below
      {book_id}/
        chapter_NNN.md          ← chapter Markdown written at import
        assets/                 ← images extracted from the EPUB
        vector_index.json       ← embedded chunks (see ludic_reader.index)

Collections: books, chapters, game_states, terms, propositions, arguments,
quests, critiques, milestones, verifications. Every record carries an "id";
records scoped to a book also carry "book_id". Game states and verifications
are keyed by (book_id, difficulty_id).

Single-writer contract: read-modify-write is not atomic across calls. Only
one process may use a data directory at a time, with at most one write in
flight.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ludic_reader.models import (
    Argument,
    Book,
    Chapter,
    Critique,
    GameState,
    Inventory,
    Milestone,
    Proposition,
    Quest,
    QuestStatus,
    Term,
    VerificationQuestion,
)

logger = logging.getLogger(__name__)

DB_FILENAME = "ludic_data.json"

COLLECTIONS = (
    "books",
    "chapters",
    "game_states",
    "terms",
    "propositions",
    "arguments",
    "quests",
    "critiques",
    "milestones",
    "verifications",
)

# Phases at which a book counts as analytically complete
_COMPLETE_PHASES = ("JUDGMENT", "SYNTOPICAL")


def game_state_key(book_id: str, difficulty_id: str) -> str:
    return f"{book_id}::{difficulty_id}"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)
        self._db_path = base_path / DB_FILENAME

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal document helpers
    # ------------------------------------------------------------------

    def _empty(self) -> dict[str, list[dict]]:
        return {name: [] for name in COLLECTIONS}

    def _read(self) -> dict[str, list[dict]]:
        data = self._empty()
        if self._db_path.is_file():
            content = self._db_path.read_text()
            if content.strip():
                data.update(json.loads(content))
        return data

    def _write(self, data: dict[str, list[dict]]) -> None:
        self._db_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        logger.debug("storage write path=%s", self._db_path)

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {kind}")

    # ------------------------------------------------------------------
    # Generic key-value access
    # ------------------------------------------------------------------

    def get(self, kind: str, key: str) -> dict[str, Any] | None:
        self._check_kind(kind)
        for record in self._read()[kind]:
            if record.get("id") == key:
                return record
        return None

    def put(self, kind: str, key: str, value: dict[str, Any]) -> dict[str, Any]:
        """Upsert a record by id."""
        self._check_kind(kind)
        data = self._read()
        record = {**value, "id": key}
        records = data[kind]
        for i, existing in enumerate(records):
            if existing.get("id") == key:
                records[i] = record
                break
        else:
            records.append(record)
        self._write(data)
        return record

    def list(
        self, kind: str, where: Callable[[dict[str, Any]], bool] | None = None
    ) -> list[dict[str, Any]]:
        self._check_kind(kind)
        records = self._read()[kind]
        if where is None:
            return records
        return [r for r in records if where(r)]

    def delete(self, kind: str, key: str) -> bool:
        self._check_kind(kind)
        data = self._read()
        before = len(data[kind])
        data[kind] = [r for r in data[kind] if r.get("id") != key]
        if len(data[kind]) == before:
            return False
        self._write(data)
        return True

    def _for_book(self, kind: str, book_id: str) -> list[dict[str, Any]]:
        """Records for a book, newest first."""
        records = self.list(kind, lambda r: r.get("book_id") == book_id)
        return sorted(records, key=lambda r: r.get("created_at", ""), reverse=True)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def add_book(self, book: Book) -> Book:
        self.put("books", book.id, book.model_dump(mode="json"))
        return book

    def get_book(self, book_id: str) -> Book | None:
        record = self.get("books", book_id)
        return Book.model_validate(record) if record else None

    def list_books(self) -> list[Book]:
        """All books, most recently imported first."""
        books = [Book.model_validate(b) for b in self.list("books")]
        return sorted(books, key=lambda b: b.imported_at, reverse=True)

    def update_book(self, book_id: str, fields: dict[str, Any]) -> Book | None:
        book = self.get_book(book_id)
        if book is None:
            return None
        updated = book.model_copy(update=fields)
        self.put("books", book_id, updated.model_dump(mode="json"))
        return updated

    def record_classification(self, book_id: str, classification: str) -> Book | None:
        return self.update_book(book_id, {"classification": classification})

    def record_unity_statement(self, book_id: str, statement: str) -> Book | None:
        return self.update_book(book_id, {"unity_statement": statement})

    def set_topics(self, book_id: str, topics: list[str]) -> Book | None:
        return self.update_book(book_id, {"topics": topics})

    def delete_book(self, book_id: str) -> bool:
        """Delete a book and cascade to every record scoped to it."""
        data = self._read()
        before = len(data["books"])
        data["books"] = [b for b in data["books"] if b.get("id") != book_id]
        if len(data["books"]) == before:
            return False
        for kind in COLLECTIONS:
            if kind != "books":
                data[kind] = [r for r in data[kind] if r.get("book_id") != book_id]
        self._write(data)
        return True

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    def add_chapters(self, book_id: str, chapters: list[Chapter]) -> None:
        data = self._read()
        for chapter in chapters:
            data["chapters"].append({
                "id": f"{book_id}:{chapter.index}",
                "book_id": book_id,
                **chapter.model_dump(mode="json"),
            })
        self._write(data)

    def get_chapter(self, book_id: str, chapter_index: int) -> Chapter | None:
        record = self.get("chapters", f"{book_id}:{chapter_index}")
        return Chapter.model_validate(record) if record else None

    def get_chapters(self, book_id: str) -> list[Chapter]:
        records = self.list("chapters", lambda r: r.get("book_id") == book_id)
        return sorted((Chapter.model_validate(r) for r in records), key=lambda c: c.index)

    # ------------------------------------------------------------------
    # Game states
    # ------------------------------------------------------------------

    def save_game_state(self, book_id: str, difficulty_id: str, state: GameState) -> None:
        self.put("game_states", game_state_key(book_id, difficulty_id), {
            "book_id": book_id,
            "difficulty_id": difficulty_id,
            "state": state.model_dump(mode="json"),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        })

    def get_game_state(self, book_id: str, difficulty_id: str) -> GameState | None:
        record = self.get("game_states", game_state_key(book_id, difficulty_id))
        return GameState.model_validate(record["state"]) if record else None

    def delete_game_state(self, book_id: str, difficulty_id: str) -> bool:
        return self.delete("game_states", game_state_key(book_id, difficulty_id))

    def list_game_states(self, book_id: str) -> dict[str, GameState]:
        """difficulty_id → state for every difficulty played on a book."""
        return {
            r["difficulty_id"]: GameState.model_validate(r["state"])
            for r in self.list("game_states", lambda r: r.get("book_id") == book_id)
        }

    # ------------------------------------------------------------------
    # Understanding verification
    # ------------------------------------------------------------------

    def save_verification_questions(
        self, book_id: str, difficulty_id: str, questions: list[VerificationQuestion]
    ) -> None:
        """Store a fresh question set. Any earlier pass is revoked."""
        self.put("verifications", game_state_key(book_id, difficulty_id), {
            "book_id": book_id,
            "difficulty_id": difficulty_id,
            "questions": [q.model_dump(mode="json") for q in questions],
            "verified": False,
        })

    def get_verification_questions(self, book_id: str, difficulty_id: str) -> list[VerificationQuestion]:
        record = self.get("verifications", game_state_key(book_id, difficulty_id))
        if not record:
            return []
        return [VerificationQuestion.model_validate(q) for q in record.get("questions", [])]

    def mark_understanding_verified(self, book_id: str, difficulty_id: str) -> None:
        key = game_state_key(book_id, difficulty_id)
        record = self.get("verifications", key) or {
            "book_id": book_id, "difficulty_id": difficulty_id, "questions": [],
        }
        self.put("verifications", key, {
            **record,
            "verified": True,
            "verified_at": datetime.now(timezone.utc).isoformat(),
        })

    def is_understanding_verified(self, book_id: str, difficulty_id: str) -> bool:
        record = self.get("verifications", game_state_key(book_id, difficulty_id))
        return bool(record and record.get("verified"))

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def add_term(self, book_id: str, term: Term) -> None:
        self.put("terms", term.id, {"book_id": book_id, **term.model_dump(mode="json")})

    def get_terms(self, book_id: str) -> list[Term]:
        return [Term.model_validate(r) for r in self._for_book("terms", book_id)]

    def add_proposition(self, book_id: str, proposition: Proposition) -> None:
        self.put("propositions", proposition.id, {"book_id": book_id, **proposition.model_dump(mode="json")})

    def get_propositions(self, book_id: str) -> list[Proposition]:
        return [Proposition.model_validate(r) for r in self._for_book("propositions", book_id)]

    def add_argument(self, book_id: str, argument: Argument) -> None:
        self.put("arguments", argument.id, {"book_id": book_id, **argument.model_dump(mode="json")})

    def get_arguments(self, book_id: str) -> list[Argument]:
        return [Argument.model_validate(r) for r in self._for_book("arguments", book_id)]

    def add_critique(self, book_id: str, critique: Critique) -> None:
        self.put("critiques", critique.id, {"book_id": book_id, **critique.model_dump(mode="json")})

    def get_critiques(self, book_id: str) -> list[Critique]:
        return [Critique.model_validate(r) for r in self._for_book("critiques", book_id)]

    def get_inventory(self, book_id: str) -> Inventory:
        book = self.get_book(book_id)
        return Inventory(
            book_classified=bool(book and book.classification),
            unity_statement=bool(book and book.unity_statement),
            terms=self.get_terms(book_id),
            propositions=self.get_propositions(book_id),
            arguments=self.get_arguments(book_id),
        )

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    def add_quest(self, book_id: str, quest: Quest) -> None:
        self.put("quests", quest.id, {"book_id": book_id, **quest.model_dump(mode="json")})

    def get_quest(self, quest_id: str) -> Quest | None:
        record = self.get("quests", quest_id)
        return Quest.model_validate(record) if record else None

    def get_quests(self, book_id: str, status: QuestStatus | None = None) -> list[Quest]:
        quests = [Quest.model_validate(r) for r in self._for_book("quests", book_id)]
        if status:
            quests = [q for q in quests if q.status == status]
        return quests

    def update_quest_status(self, quest_id: str, status: QuestStatus) -> Quest | None:
        record = self.get("quests", quest_id)
        if record is None:
            return None
        record["status"] = status
        if status == "completed":
            record["completed_at"] = datetime.now(timezone.utc).isoformat()
        self.put("quests", quest_id, record)
        return Quest.model_validate(record)

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    def add_milestone(self, book_id: str, milestone: Milestone) -> None:
        self.put("milestones", milestone.id, {"book_id": book_id, **milestone.model_dump(mode="json")})

    def get_milestones(self, book_id: str, difficulty_id: str | None = None) -> list[Milestone]:
        records = self.list("milestones", lambda r: r.get("book_id") == book_id)
        milestones = [Milestone.model_validate(r) for r in records]
        if difficulty_id:
            milestones = [m for m in milestones if m.difficulty == difficulty_id]
        return sorted(milestones, key=lambda m: m.timestamp)

    # ------------------------------------------------------------------
    # Cross-book queries (advanced tier)
    # ------------------------------------------------------------------

    def completed_books(self) -> list[Book]:
        """Books with any game state at JUDGMENT or beyond."""
        done = {
            r["book_id"] for r in self.list("game_states")
            if r.get("state", {}).get("current_phase") in _COMPLETE_PHASES
        }
        return [b for b in self.list_books() if b.id in done]

    def topic_books(self) -> dict[str, list[Book]]:
        topics: dict[str, list[Book]] = {}
        for book in self.list_books():
            for topic in book.topics:
                topics.setdefault(topic, []).append(book)
        return topics
