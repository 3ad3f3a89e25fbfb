"""Reader session — runs one reader action end-to-end.

Answer flow (submit_answer):
  1. Load the book and the (book, difficulty) game state.
  2. Dispatch to the validator for the action:
       classify     → validate_book_classification  → record classification
       unity        → validate_unity_statement      → record unity statement
       term         → validate_term_definition      → store Term
       proposition  → validate_proposition          → store Proposition
       argument     → validate_argument_chain       → store Argument
       critique     → validate_critique             → store Critique
                      (only once verify_understanding has passed)
       quest        → validate_answer vs. the quest → mark quest completed
  3. Valid → award XP (action table or quest reward, difficulty scaled).
     Partial → PARTIAL_ANSWER mana. Invalid → WRONG_ANSWER mana.
  4. After an accepted answer, check the phase gate; when ready, record a
     milestone and advance. At JUDGMENT the advanced-tier unlock check
     decides instead.
  5. Persist the state and render the turn as Markdown.

Critiques are gated on a stored per-(book, difficulty) verification pass:
request_verification stores cloze questions, verify_understanding grades the
answers and records the pass.

The session holds no state of its own between calls; everything lives in
Storage.
"""

from __future__ import annotations

import logging
import random
import uuid
from typing import Literal

from pydantic import BaseModel, Field

from ludic_reader import engine
from ludic_reader.debug import AddTopics, ExitDebug, ShowMenu, run_debug_command
from ludic_reader.difficulty import (
    DEFAULT_DIFFICULTY,
    advanced_mode_config,
    advanced_mode_enabled,
    get_config,
    hints_available,
)
from ludic_reader.index import IndexRegistry
from ludic_reader.milestones import generate_milestone
from ludic_reader.models import (
    Argument,
    Book,
    Critique,
    CritiqueType,
    GameState,
    LevelUp,
    ManaChange,
    Milestone,
    PhaseCheck,
    Proposition,
    Quest,
    Term,
    UnlockCheck,
    ValidationResult,
    VerificationResult,
    XPAward,
)
from ludic_reader.quests import generate_advanced_quest, generate_quest
from ludic_reader.render import (
    render_advanced_unlock,
    render_combo_streak,
    render_dashboard,
    render_debug_menu,
    render_hints,
    render_level_up,
    render_milestone_card,
    render_phase_status,
    render_quest_complete,
    render_quest_failed,
    render_quest_with_shards,
    render_rest_prompt,
    render_verification_questions,
    render_verification_result,
)
from ludic_reader.storage import Storage
from ludic_reader.validation import AnswerValidator, generate_hints

logger = logging.getLogger(__name__)

Action = Literal["classify", "unity", "term", "proposition", "argument", "critique", "quest"]

ACTION_XP: dict[str, str] = {
    "classify": "BOOK_CLASSIFIED",
    "unity": "UNITY_STATEMENT",
    "term": "TERM_DEFINED",
    "proposition": "PROPOSITION_EXTRACTED",
    "argument": "ARGUMENT_BUILT",
    "critique": "VALID_CRITIQUE",
}

DEBUG_TOPIC = "debug-topic"
QUEST_SHARD_COUNT = 3
VERIFICATION_QUESTION_COUNT = 3


class SessionError(LookupError):
    """Raised when a book, game state or quest referenced by a call does not exist."""


class Answer(BaseModel):
    action: Action
    text: str
    term: str | None = None
    premise_ids: list[str] = Field(default_factory=list)
    critique_type: CritiqueType = "agreement"
    target_argument: str = ""
    quest_id: str | None = None
    chapter_index: int | None = None


class TurnResult(BaseModel):
    state: GameState
    validation: ValidationResult | None = None
    xp: XPAward | None = None
    mana: ManaChange | None = None
    level_up: LevelUp | None = None
    advanced: bool = False
    phase_check: PhaseCheck | None = None
    unlock: UnlockCheck | None = None
    milestone: Milestone | None = None
    quest: Quest | None = None
    hints: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    verification: VerificationResult | None = None
    error: str | None = None
    markdown: str = ""


class ReaderSession:
    """Binds storage, validator and index registry for reader actions."""

    def __init__(
        self,
        storage: Storage,
        validator: AnswerValidator,
        registry: IndexRegistry,
        rng: random.Random | None = None,
    ) -> None:
        self._storage = storage
        self._validator = validator
        self._registry = registry
        self._rng = rng

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _book(self, book_id: str) -> Book:
        book = self._storage.get_book(book_id)
        if book is None:
            raise SessionError(f"Book not found: {book_id}")
        return book

    def _state(self, book_id: str, difficulty_id: str) -> GameState:
        state = self._storage.get_game_state(book_id, difficulty_id)
        if state is None:
            raise SessionError(f"No game state for book {book_id} at difficulty {difficulty_id}")
        return state

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, book_id: str, difficulty_id: str = DEFAULT_DIFFICULTY) -> TurnResult:
        """Load (or create) the game state for a book at a difficulty."""
        book = self._book(book_id)
        difficulty_id = get_config(difficulty_id).id
        state = self._storage.get_game_state(book_id, difficulty_id)
        if state is None:
            state = engine.initialize_state()
            self._storage.save_game_state(book_id, difficulty_id, state)
            logger.info("new game state book=%s difficulty=%s", book_id, difficulty_id)
        return TurnResult(state=state, markdown=render_dashboard(state, book))

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    async def request_quest(
        self,
        book_id: str,
        difficulty_id: str = DEFAULT_DIFFICULTY,
        chapter_index: int | None = None,
        rng: random.Random | None = None,
    ) -> TurnResult:
        """Generate a quest for the current phase and attach supporting passages.

        At SYNTOPICAL the quest is a cross-book synthesis over a topic the
        book shares with enough other books.
        """
        difficulty_id = get_config(difficulty_id).id
        book = self._book(book_id)
        state = self._state(book_id, difficulty_id)
        if state.current_phase == "SYNTOPICAL":
            topic, books = self._synthesis_topic(book, difficulty_id)
            quest = generate_advanced_quest(state, [{"id": b.id, "title": b.title} for b in books], topic)
        else:
            if chapter_index is None:
                chapter_index = max(0, state.current_chapter - 1)
            chapter = self._storage.get_chapter(book_id, chapter_index)
            chapter_text = chapter.content if chapter else ""
            quest = generate_quest(state, chapter_text, rng=rng or self._rng, chapter_index=chapter_index)
        self._storage.add_quest(book_id, quest)
        state = state.model_copy(update={"active_quest_id": quest.id})
        self._storage.save_game_state(book_id, difficulty_id, state)

        shards = await self._registry.search_expanded(book_id, quest.description, QUEST_SHARD_COUNT)
        logger.debug("quest %s type=%s shards=%d", quest.id, quest.type, len(shards))
        return TurnResult(
            state=state,
            quest=quest,
            markdown=render_quest_with_shards(quest, shards),
        )

    def _synthesis_topic(self, book: Book, difficulty_id: str) -> tuple[str, list[Book]]:
        """Pick the topic for a synthesis quest: one of the book's own topics first."""
        min_size = advanced_mode_config(difficulty_id).min_group_size
        groups = {
            topic: books for topic, books in self._storage.topic_books().items()
            if len(books) >= min_size
        }
        for topic in book.topics:
            if topic in groups:
                return topic, groups[topic]
        if groups:
            topic = sorted(groups)[0]
            return topic, groups[topic]
        return engine.AUTO_TOPIC, self._completed_with(book)

    def _completed_with(self, book: Book) -> list[Book]:
        completed = self._storage.completed_books()
        if all(b.id != book.id for b in completed):
            completed.append(book)
        return completed

    async def request_hint(
        self, book_id: str, difficulty_id: str = DEFAULT_DIFFICULTY, query: str | None = None
    ) -> TurnResult:
        """Hints for the active quest (or `query`), paid for with HINT_REQUEST mana.

        Tiers without hints get a structured refusal and no mana is spent.
        """
        difficulty_id = get_config(difficulty_id).id
        self._book(book_id)
        state = self._state(book_id, difficulty_id)
        if not hints_available(difficulty_id):
            error = f"Hints are not available on {get_config(difficulty_id).name} difficulty"
            return TurnResult(state=state, error=error, markdown=f"❌ {error}")

        if query is None and state.active_quest_id:
            quest = self._storage.get_quest(state.active_quest_id)
            query = quest.description if quest else None
        best = None
        if query:
            hits = await self._registry.search(book_id, query, 1)
            best = hits[0] if hits else None
        hints = generate_hints(state.consecutive_failures, best)

        change = engine.modify_mana(state, engine.MANA_TABLE["HINT_REQUEST"], "hint request")
        state = change.state
        self._storage.save_game_state(book_id, difficulty_id, state)
        logger.debug("hint book=%s best_match=%s", book_id, best is not None)

        parts = [render_hints(hints, change.mana_change)]
        if engine.needs_rest(state):
            parts.append(render_rest_prompt(state.mana))
        return TurnResult(state=state, mana=change, hints=hints, markdown="\n".join(parts))

    # ------------------------------------------------------------------
    # Understanding verification
    # ------------------------------------------------------------------

    async def request_verification(
        self,
        book_id: str,
        difficulty_id: str = DEFAULT_DIFFICULTY,
        count: int = VERIFICATION_QUESTION_COUNT,
    ) -> TurnResult:
        """Generate and store cloze questions; the expected answers stay server side."""
        difficulty_id = get_config(difficulty_id).id
        self._book(book_id)
        state = self._state(book_id, difficulty_id)
        questions = await self._validator.generate_verification_questions(count, book_id)
        self._storage.save_verification_questions(book_id, difficulty_id, questions)
        return TurnResult(
            state=state,
            questions=[q.question for q in questions],
            markdown=render_verification_questions(questions),
        )

    async def verify_understanding(
        self, book_id: str, difficulty_id: str, answers: list[str]
    ) -> TurnResult:
        """Grade answers to the stored questions and record a pass."""
        difficulty_id = get_config(difficulty_id).id
        self._book(book_id)
        state = self._state(book_id, difficulty_id)
        questions = self._storage.get_verification_questions(book_id, difficulty_id)
        result = await self._validator.evaluate_understanding_verification(questions, answers)
        if result.passed:
            self._storage.mark_understanding_verified(book_id, difficulty_id)
        logger.info("verification book=%s difficulty=%s passed=%s", book_id, difficulty_id, result.passed)
        return TurnResult(state=state, verification=result, markdown=render_verification_result(result))

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def submit_answer(
        self, book_id: str, difficulty_id: str, answer: Answer
    ) -> TurnResult:
        difficulty_id = get_config(difficulty_id).id
        book = self._book(book_id)
        state = self._state(book_id, difficulty_id)

        quest: Quest | None = None
        if answer.action == "quest":
            quest_id = answer.quest_id or state.active_quest_id
            quest = self._storage.get_quest(quest_id) if quest_id else None
            if quest is None:
                raise SessionError(f"Quest not found: {quest_id}")

        result = await self._validate(book, difficulty_id, answer, quest)

        xp: XPAward | None = None
        mana: ManaChange | None = None
        parts: list[str] = []
        if result.valid:
            self._record(book_id, answer, quest)
            if quest is not None:
                outcome = engine.complete_quest(state, quest, result, difficulty_id)
            else:
                outcome = engine.award_xp(state, ACTION_XP[answer.action], difficulty_id=difficulty_id)
            xp = outcome
            state = outcome.state
            parts.append(render_quest_complete(result, outcome.xp_gained))
            if outcome.level_up:
                parts.append(render_level_up(outcome.level_up))
            if state.combo_count > 1:
                parts.append(render_combo_streak(state.combo_count))
        else:
            key = "PARTIAL_ANSWER" if result.verdict == "partial" else "WRONG_ANSWER"
            mana = engine.modify_mana(state, engine.MANA_TABLE[key], key.lower().replace("_", " "))
            state = mana.state
            parts.append(render_quest_failed(result, mana.mana_change))

        if engine.needs_rest(state):
            parts.append(render_rest_prompt(state.mana))

        state, check, unlock, milestone = self._progress(book, difficulty_id, state, result.valid)
        if milestone is not None:
            parts.append(render_milestone_card(milestone))
        if unlock is not None:
            parts.append(render_advanced_unlock(unlock))
        parts.append(render_phase_status(state, check))

        self._storage.save_game_state(book_id, difficulty_id, state)
        return TurnResult(
            state=state,
            validation=result,
            xp=xp,
            mana=mana,
            level_up=xp.level_up if xp else None,
            advanced=milestone is not None,
            phase_check=check,
            unlock=unlock,
            milestone=milestone,
            quest=quest,
            markdown="\n".join(parts),
        )

    async def _validate(
        self, book: Book, difficulty_id: str, answer: Answer, quest: Quest | None
    ) -> ValidationResult:
        v = self._validator
        if answer.action == "classify":
            first = self._storage.get_chapter(book.id, 0)
            return await v.validate_book_classification(answer.text, book, first.content if first else "")
        if answer.action == "unity":
            return await v.validate_unity_statement(answer.text, book, book.toc)
        if answer.action == "term":
            return await v.validate_term_definition(answer.term or "", answer.text, book.id)
        if answer.action == "proposition":
            return await v.validate_proposition(answer.text, book.id)
        if answer.action == "argument":
            return await v.validate_argument_chain(
                answer.premise_ids, self._storage.get_propositions(book.id), answer.text, book.id
            )
        if answer.action == "critique":
            return await v.validate_critique(
                answer.critique_type,
                answer.target_argument,
                answer.text,
                self._storage.is_understanding_verified(book.id, difficulty_id),
                book.id,
            )
        return await v.validate_answer(answer.text, quest.description if quest else "")

    def _record(self, book_id: str, answer: Answer, quest: Quest | None) -> None:
        """Persist the inventory item (or quest completion) for an accepted answer."""
        s = self._storage
        item_id = uuid.uuid4().hex
        if answer.action == "classify":
            s.record_classification(book_id, answer.text)
        elif answer.action == "unity":
            s.record_unity_statement(book_id, answer.text)
        elif answer.action == "term":
            s.add_term(book_id, Term(
                id=f"term_{item_id}",
                word=answer.term or "",
                definition=answer.text,
                chapter_index=answer.chapter_index,
            ))
        elif answer.action == "proposition":
            s.add_proposition(book_id, Proposition(
                id=f"prop_{item_id}", statement=answer.text, chapter_index=answer.chapter_index
            ))
        elif answer.action == "argument":
            s.add_argument(book_id, Argument(
                id=f"arg_{item_id}",
                premises=answer.premise_ids,
                conclusion=answer.text,
                chapter_index=answer.chapter_index,
            ))
        elif answer.action == "critique":
            s.add_critique(book_id, Critique(
                id=f"critique_{item_id}",
                type=answer.critique_type,
                content=answer.text,
                chapter_index=answer.chapter_index,
            ))
        elif quest is not None:
            s.update_quest_status(quest.id, "completed")

    # ------------------------------------------------------------------
    # Phase progression
    # ------------------------------------------------------------------

    def _phase_stats(self, book_id: str, difficulty_id: str, state: GameState) -> dict[str, int]:
        inventory = self._storage.get_inventory(book_id)
        earlier = sum(m.stats.get("xp", 0) for m in self._storage.get_milestones(book_id, difficulty_id))
        return {
            "xp": max(0, state.xp_total - earlier),
            "terms": len(inventory.terms),
            "propositions": len(inventory.propositions),
            "arguments": len(inventory.arguments),
        }

    def _progress(
        self, book: Book, difficulty_id: str, state: GameState, accepted: bool
    ) -> tuple[GameState, PhaseCheck, UnlockCheck | None, Milestone | None]:
        """Advance the phase after an accepted answer; a rejected one never moves it."""
        check = engine.check_phase_progression(state, self._storage.get_inventory(book.id), difficulty_id)
        if not accepted:
            return state, check, None, None

        if state.current_phase == "JUDGMENT":
            if not advanced_mode_enabled(difficulty_id):
                return state, check, None, None
            unlock = engine.check_advanced_unlock_for(
                state, difficulty_id, self._completed_with(book), self._storage.topic_books()
            )
            if not unlock.can_unlock:
                return state, check, unlock, None
            milestone = self._advance(book.id, difficulty_id, state)
            new_state = engine.advance_phase(state, allow_advanced=True)
            return new_state, check, unlock, milestone

        if not check.ready or state.current_phase == "SYNTOPICAL":
            return state, check, None, None

        milestone = self._advance(book.id, difficulty_id, state)
        new_state = engine.advance_phase(state)
        return new_state, engine.check_phase_progression(
            new_state, self._storage.get_inventory(book.id), difficulty_id
        ), None, milestone

    def _advance(self, book_id: str, difficulty_id: str, state: GameState) -> Milestone:
        milestone = generate_milestone(
            state.current_phase, difficulty_id, self._phase_stats(book_id, difficulty_id, state)
        )
        self._storage.add_milestone(book_id, milestone)
        logger.info("milestone book=%s phase=%s", book_id, state.current_phase)
        return milestone

    # ------------------------------------------------------------------
    # Rest and debug
    # ------------------------------------------------------------------

    def rest(self, book_id: str, difficulty_id: str = DEFAULT_DIFFICULTY) -> TurnResult:
        difficulty_id = get_config(difficulty_id).id
        self._book(book_id)
        change = engine.apply_rest(self._state(book_id, difficulty_id), difficulty_id)
        self._storage.save_game_state(book_id, difficulty_id, change.state)
        return TurnResult(state=change.state, mana=change, markdown=change.message)

    def run_debug(self, book_id: str, difficulty_id: str, command_text: str) -> TurnResult:
        """Apply an operator debug command, bypassing all progression gates."""
        difficulty_id = get_config(difficulty_id).id
        book = self._book(book_id)
        outcome = run_debug_command(self._state(book_id, difficulty_id), command_text)
        if outcome.error:
            return TurnResult(state=outcome.state, error=outcome.error, markdown=f"❌ {outcome.error}")

        state = outcome.state
        if isinstance(outcome.command, AddTopics):
            topics = sorted({*book.topics, DEBUG_TOPIC})
            self._storage.set_topics(book_id, topics)
        self._storage.save_game_state(book_id, difficulty_id, state)
        logger.info("debug book=%s command=%r", book_id, command_text)

        if isinstance(outcome.command, ShowMenu):
            markdown = render_debug_menu()
        elif isinstance(outcome.command, ExitDebug):
            markdown = outcome.message
        else:
            markdown = f"🔧 {outcome.message}\n\n{render_dashboard(state, book)}"
        return TurnResult(state=state, markdown=markdown)
