"""Core domain models.

Every engine, validator and storage function operates on these types.
Pydantic is used for validation and serialisation at every data boundary;
game state is never mutated in place — operations return a new copy.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

Phase = Literal[
    "SCOUTING",
    "HUNTING",
    "ALCHEMY",
    "JUDGMENT",
    "SYNTOPICAL",
]

BASE_PHASES: tuple[Phase, ...] = ("SCOUTING", "HUNTING", "ALCHEMY", "JUDGMENT")
ADVANCED_PHASE: Phase = "SYNTOPICAL"
ALL_PHASES: tuple[Phase, ...] = BASE_PHASES + (ADVANCED_PHASE,)

Verdict = Literal["valid", "partial", "invalid"]
QuestTier = Literal["EASY", "NORMAL"]
QuestStatus = Literal["active", "completed", "failed"]
CritiqueType = Literal["agreement", "disagreement", "suspend_judgment"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Game state
# ---------------------------------------------------------------------------

class Vision(BaseModel):
    """An "insight vision" reward fragment (an image generated for a concept)."""

    id: str
    concept: str
    image_path: str
    timestamp: str = Field(default_factory=utc_now)


class GameState(BaseModel):
    """A reader's progress through one book at one difficulty."""

    level: int = Field(default=1, ge=1)
    xp_total: int = Field(default=0, ge=0)
    mana: int = Field(default=100, ge=0, le=100)
    current_phase: Phase = "SCOUTING"
    current_chapter: int = 1
    combo_count: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    active_quest_id: str | None = None
    visions: list[Vision] = Field(default_factory=list)


class Inventory(BaseModel):
    """What the reader has collected for a book so far (read-only to the engine)."""

    book_classified: bool = False
    unity_statement: bool = False
    terms: list[Any] = Field(default_factory=list)
    propositions: list[Any] = Field(default_factory=list)
    arguments: list[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Difficulty
# ---------------------------------------------------------------------------

class Thresholds(BaseModel):
    terms: int = Field(ge=0)
    propositions: int = Field(ge=0)
    arguments: int = Field(ge=0)


class AdvancedModeConfig(BaseModel):
    enabled: bool = False
    min_group_size: int = 2
    require_prior_phase_complete: bool = True


class DifficultyConfig(BaseModel):
    id: str
    name: str
    xp_multiplier: float = Field(gt=0)
    mana_recovery_base: int
    hints_available: bool
    thresholds: Thresholds
    advanced_mode: AdvancedModeConfig | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------

class LevelInfo(BaseModel):
    level: int
    title: str
    xp_required: int


class LevelUp(BaseModel):
    old_level: int
    new_level: int
    new_title: str


class XPAward(BaseModel):
    state: GameState
    xp_gained: int
    multiplier: float
    level_up: LevelUp | None = None
    message: str = ""

    @property
    def leveled_up(self) -> bool:
        return self.level_up is not None


class ManaChange(BaseModel):
    state: GameState
    mana_change: int
    exhausted: bool
    message: str = ""


class PhaseCheck(BaseModel):
    ready: bool
    missing: list[str] = Field(default_factory=list)


class UnlockCheck(BaseModel):
    can_unlock: bool
    reason: str
    eligible_topics: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Quests and validation
# ---------------------------------------------------------------------------

class Quest(BaseModel):
    id: str
    type: str
    description: str
    target: str
    xp_reward: int
    difficulty_tier: QuestTier = "NORMAL"
    phase: Phase | None = None
    topic: str | None = None
    books: list[dict[str, str]] = Field(default_factory=list)
    chapter_index: int | None = None
    status: QuestStatus = "active"
    created_at: str = Field(default_factory=utc_now)
    completed_at: str | None = None


class ValidationResult(BaseModel):
    valid: bool
    score: int = Field(ge=0, le=100)
    feedback: str
    hints: list[str] = Field(default_factory=list)
    verdict: Verdict | None = None
    matched_concepts: list[str] = Field(default_factory=list)
    missed_concepts: list[str] = Field(default_factory=list)


class VerificationQuestion(BaseModel):
    type: Literal["cloze"] = "cloze"
    question: str
    expected_answer: str
    context: str


class VerificationResult(BaseModel):
    passed: bool
    score: float
    threshold: int = 60
    feedback: str
    hints: list[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    """One ranked chunk returned by the retrieval collaborator."""

    text: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Books and inventory records
# ---------------------------------------------------------------------------

class TocEntry(BaseModel):
    title: str
    href: str = ""
    children: list[TocEntry] = Field(default_factory=list)


class Chapter(BaseModel):
    index: int
    title: str
    content: str = ""
    word_count: int = 0
    file_path: str = ""


class Book(BaseModel):
    id: str
    title: str
    author: str = "Unknown Author"
    language: str = "en"
    description: str = ""
    chapter_count: int = 0
    markdown_dir: str = ""
    toc: list[TocEntry] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    classification: str | None = None
    unity_statement: str | None = None
    imported_at: str = Field(default_factory=utc_now)


class Term(BaseModel):
    id: str
    word: str
    definition: str
    context: str = ""
    chapter_index: int | None = None
    created_at: str = Field(default_factory=utc_now)


class Proposition(BaseModel):
    id: str
    statement: str
    source: str = ""
    chapter_index: int | None = None
    related_term_ids: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)


class Argument(BaseModel):
    id: str
    premises: list[str] = Field(default_factory=list)
    conclusion: str
    chapter_index: int | None = None
    strength: str = "unverified"
    created_at: str = Field(default_factory=utc_now)


class Critique(BaseModel):
    id: str
    type: CritiqueType
    content: str
    reasoning: str = ""
    chapter_index: int | None = None
    related_argument_ids: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)


class Milestone(BaseModel):
    id: str
    phase: Phase
    difficulty: str
    emoji: str
    phase_name: str
    stats: dict[str, int] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now)


class BookSummary(BaseModel):
    id: str
    book_id: str
    book_title: str
    author: str
    difficulty: str
    difficulty_name: str
    level_achieved: int
    total_xp: int
    phases_completed: dict[str, dict[str, int] | None]
    completion_date: str = Field(default_factory=utc_now)
