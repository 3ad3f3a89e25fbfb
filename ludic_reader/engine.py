"""Progression state machine — XP, levels, mana, phase gating and transitions.

Phase order:
  SCOUTING → HUNTING → ALCHEMY → JUDGMENT  (→ SYNTOPICAL when the advanced tier is on)

XP:
  gained = round(base * (1 + min(combo * 0.1, 1.0)))  — saturates at 2.0x after a 10-streak
  Every award bumps the combo and clears the failure streak. Level is a pure
  function of total XP; any level increase refills mana to 100.

Mana:
  Clamped to [0, 100] on every change. Any negative change is a penalty:
  the combo resets to 0 and the failure streak grows by one.

Every operation takes a GameState and returns a new one; nothing here persists.
"""

from __future__ import annotations

import logging
import uuid

from ludic_reader.difficulty import (
    advanced_mode_config,
    compute_mana_recovery,
    compute_xp,
    round_half_up,
    thresholds_for,
)
from ludic_reader.models import (
    ADVANCED_PHASE,
    BASE_PHASES,
    AdvancedModeConfig,
    GameState,
    Inventory,
    LevelInfo,
    LevelUp,
    ManaChange,
    Phase,
    PhaseCheck,
    Quest,
    UnlockCheck,
    ValidationResult,
    Vision,
    XPAward,
)

logger = logging.getLogger(__name__)

XP_TABLE: dict[str, int] = {
    "BOOK_CLASSIFIED": 50,
    "UNITY_STATEMENT": 30,
    "TERM_DEFINED": 20,
    "PROPOSITION_EXTRACTED": 25,
    "ARGUMENT_BUILT": 50,
    "VALID_CRITIQUE": 100,
    "CHAPTER_COMPLETE": 75,
    # Advanced (syntopical) tier
    "TOPIC_ANALYZED": 150,
    "NEUTRAL_TERM_CREATED": 80,
    "CROSS_BOOK_COMPARISON": 120,
    "SYNTHESIS_CREATED": 200,
    "TOPIC_COMPLETE": 300,
}

DEFAULT_ACTION_XP = 10
COMBO_STEP = 0.1
COMBO_CAP = 1.0

MANA_TABLE: dict[str, int] = {
    "WRONG_ANSWER": -10,
    "HINT_REQUEST": -15,
    "PARTIAL_ANSWER": -5,
    "REST_RECOVERY": 30,
    "RESTATEMENT_SUCCESS": 15,
}

MANA_MIN = 0
MANA_MAX = 100
LOW_MANA_THRESHOLD = 20

# Ascending by xp_required
LEVEL_THRESHOLDS: list[LevelInfo] = [
    LevelInfo(level=1, title="Novice", xp_required=0),
    LevelInfo(level=2, title="Apprentice", xp_required=200),
    LevelInfo(level=3, title="Scholar", xp_required=500),
    LevelInfo(level=4, title="Master", xp_required=1000),
    LevelInfo(level=5, title="Sage", xp_required=2000),
]

PHASE_TOOLS: dict[str, list[str]] = {
    "SCOUTING": ["scan_structure", "classify_book"],
    "HUNTING": ["log_term", "define_term"],
    "ALCHEMY": ["extract_proposition", "build_argument"],
    "JUDGMENT": ["critique_argument", "verify_understanding"],
    "SYNTOPICAL": ["compare_books", "build_neutral_terms"],
}

AUTO_TOPIC = "auto-detected"


def initialize_state() -> GameState:
    """Fresh state for a newly imported book."""
    return GameState()


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------

def calculate_level(xp: int) -> LevelInfo:
    """Highest level whose requirement is met, defaulting to level 1."""
    for info in reversed(LEVEL_THRESHOLDS):
        if xp >= info.xp_required:
            return info
    return LEVEL_THRESHOLDS[0]


def check_level_up(old_xp: int, new_xp: int) -> LevelUp | None:
    old = calculate_level(old_xp)
    new = calculate_level(new_xp)
    if new.level > old.level:
        return LevelUp(old_level=old.level, new_level=new.level, new_title=new.title)
    return None


def next_level_info(xp: int) -> LevelInfo | None:
    """The next level to reach, or None once the top level is reached."""
    for info in LEVEL_THRESHOLDS:
        if info.xp_required > xp:
            return info
    return None


def level_info(level: int) -> LevelInfo:
    for info in LEVEL_THRESHOLDS:
        if info.level == level:
            return info
    return LEVEL_THRESHOLDS[-1] if level > LEVEL_THRESHOLDS[-1].level else LEVEL_THRESHOLDS[0]


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------

def combo_multiplier(combo_count: int) -> float:
    return 1 + min(combo_count * COMBO_STEP, COMBO_CAP)


def award_xp(
    state: GameState,
    action: str,
    difficulty_id: str | None = None,
    base_xp: int | None = None,
) -> XPAward:
    """Award XP for an action, applying the combo multiplier.

    `base_xp` overrides the XP_TABLE lookup (used for quest rewards). When a
    `difficulty_id` is given, the combo-scaled amount is further scaled by the
    tier's XP multiplier.
    """
    base = base_xp if base_xp is not None else XP_TABLE.get(action, DEFAULT_ACTION_XP)
    multiplier = combo_multiplier(state.combo_count)
    xp_gained = round_half_up(base * multiplier)
    if difficulty_id is not None:
        xp_gained = compute_xp(xp_gained, difficulty_id)

    new_xp = state.xp_total + xp_gained
    update: dict = {
        "xp_total": new_xp,
        "combo_count": state.combo_count + 1,
        "consecutive_failures": 0,
        "level": calculate_level(new_xp).level,
    }

    level_up = check_level_up(state.xp_total, new_xp)
    if level_up:
        update["mana"] = MANA_MAX
        logger.info("level up %d -> %d (%s)", level_up.old_level, level_up.new_level, level_up.new_title)

    message = f"+{xp_gained} XP"
    if state.combo_count > 0:
        message += f" (x{multiplier:.1f} Combo!)"

    return XPAward(
        state=state.model_copy(update=update),
        xp_gained=xp_gained,
        multiplier=multiplier,
        level_up=level_up,
        message=message,
    )


# ---------------------------------------------------------------------------
# Mana
# ---------------------------------------------------------------------------

def clamp_mana(value: int) -> int:
    return max(MANA_MIN, min(MANA_MAX, value))


def modify_mana(state: GameState, delta: int, reason: str = "") -> ManaChange:
    new_mana = clamp_mana(state.mana + delta)
    update: dict = {"mana": new_mana}
    if delta < 0:
        update["combo_count"] = 0
        update["consecutive_failures"] = state.consecutive_failures + 1

    sign = "+" if delta > 0 else ""
    return ManaChange(
        state=state.model_copy(update=update),
        mana_change=delta,
        exhausted=new_mana == 0,
        message=f"Mana {sign}{delta} ({reason})",
    )


def needs_rest(state: GameState) -> bool:
    return state.mana < LOW_MANA_THRESHOLD


def apply_rest(state: GameState, difficulty_id: str | None = None) -> ManaChange:
    """Recover the tier's fixed mana amount (positive, so the combo survives)."""
    return modify_mana(state, compute_mana_recovery(difficulty_id), "rest")


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

def phase_order(allow_advanced: bool = False) -> tuple[Phase, ...]:
    return BASE_PHASES + (ADVANCED_PHASE,) if allow_advanced else BASE_PHASES


def available_tools(phase: str) -> list[str]:
    return list(PHASE_TOOLS.get(phase, []))


def check_phase_progression(
    state: GameState, inventory: Inventory, difficulty_id: str | None = None
) -> PhaseCheck:
    """Evaluate the requirements for leaving the current phase.

    JUDGMENT and the advanced tier have no blocking requirement here; the
    advanced tier is reached through check_advanced_unlock() instead.
    """
    missing: list[str] = []
    thresholds = thresholds_for(difficulty_id)
    terms = len(inventory.terms)
    props = len(inventory.propositions)
    args = len(inventory.arguments)

    phase = state.current_phase
    if phase == "SCOUTING":
        if not inventory.book_classified:
            missing.append("Classify Book")
        if not inventory.unity_statement:
            missing.append("Unity Statement")
    elif phase == "HUNTING":
        if terms < thresholds.terms:
            missing.append(f"Log {thresholds.terms} Terms (Collected: {terms}/{thresholds.terms})")
    elif phase == "ALCHEMY":
        if props < thresholds.propositions:
            missing.append(
                f"Extract {thresholds.propositions} Propositions "
                f"(Collected: {props}/{thresholds.propositions})"
            )
        if args < thresholds.arguments:
            missing.append(
                f"Build {thresholds.arguments} Argument(s) (Built: {args}/{thresholds.arguments})"
            )

    return PhaseCheck(ready=not missing, missing=missing)


def advance_phase(state: GameState, allow_advanced: bool = False) -> GameState:
    """Move to the next phase; the last phase in the active order is a no-op."""
    order = phase_order(allow_advanced)
    try:
        idx = order.index(state.current_phase)
    except ValueError:
        # Already past the active order (e.g. advanced tier reached via debug)
        return state
    if idx >= len(order) - 1:
        return state

    next_phase = order[idx + 1]
    logger.info("phase %s -> %s", state.current_phase, next_phase)
    return state.model_copy(update={
        "current_phase": next_phase,
        "current_chapter": 1,
        "combo_count": 0,
        "consecutive_failures": 0,
    })


def check_advanced_unlock(
    state: GameState,
    config: AdvancedModeConfig | None,
    completed_books: list,
    topic_books: dict[str, list] | None = None,
) -> UnlockCheck:
    """Decide whether the reader may enter the advanced (syntopical) tier.

    Needs the tier to be enabled, the reader to be at JUDGMENT, and either a
    topic shared by at least `min_group_size` books or, without any eligible
    topic, at least that many phase-complete books.
    """
    if config is None or not config.enabled:
        return UnlockCheck(
            can_unlock=False,
            reason="Syntopical reading is only available on Expert difficulty",
        )

    if config.require_prior_phase_complete and state.current_phase != "JUDGMENT":
        return UnlockCheck(
            can_unlock=False,
            reason="Complete the analytical reading (Judgment) phase first",
        )

    eligible = [
        topic for topic, books in (topic_books or {}).items()
        if len(books) >= config.min_group_size
    ]
    if eligible:
        return UnlockCheck(
            can_unlock=True,
            reason=f"Found {len(eligible)} eligible topic(s)",
            eligible_topics=eligible,
        )

    count = len(completed_books)
    if count < config.min_group_size:
        return UnlockCheck(
            can_unlock=False,
            reason=(
                f"Need at least {config.min_group_size} books on one topic to start "
                f"syntopical reading. Completed books: {count}"
            ),
        )
    return UnlockCheck(
        can_unlock=True,
        reason="You have completed several books and can start syntopical reading",
        eligible_topics=[AUTO_TOPIC],
    )


def check_advanced_unlock_for(
    state: GameState,
    difficulty_id: str | None,
    completed_books: list,
    topic_books: dict[str, list] | None = None,
) -> UnlockCheck:
    return check_advanced_unlock(
        state, advanced_mode_config(difficulty_id), completed_books, topic_books
    )


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

def complete_quest(
    state: GameState,
    quest: Quest,
    result: ValidationResult,
    difficulty_id: str | None = None,
) -> XPAward | ManaChange:
    """Apply a quest outcome: reward on success, mana penalty otherwise."""
    if result.valid:
        award = award_xp(state, quest.type, difficulty_id=difficulty_id, base_xp=quest.xp_reward)
        return award.model_copy(update={
            "state": award.state.model_copy(update={"active_quest_id": None}),
        })

    if result.verdict == "partial":
        return modify_mana(state, MANA_TABLE["PARTIAL_ANSWER"], "partial answer")
    return modify_mana(state, MANA_TABLE["WRONG_ANSWER"], "wrong answer")


# ---------------------------------------------------------------------------
# Visions
# ---------------------------------------------------------------------------

VISION_STYLE = (
    "Ethereal ancient library style, cinematic lighting, conceptual metaphor, "
    "high detail, 4k, artistic composition"
)

_VISION_METAPHORS: list[tuple[tuple[str, ...], str]] = [
    (("structure", "skeleton"),
     "A ghostly, glowing architectural skeleton of a massive cathedral floating inside a giant open book."),
    (("soul", "essence"),
     "A pulsing heart made of ink and starlight, beating within a crystalline manuscript."),
    (("argument", "disagree"),
     "Two spectral knights clashing with pens made of fire and ice on a battlefield of parchment pages."),
    (("theme", "unity"),
     "A single golden thread weaving through a storm of flying pages, connecting them into a radiant tapestry."),
]


def award_vision(state: GameState, concept: str, image_path: str) -> tuple[GameState, Vision]:
    vision = Vision(id=f"vision_{uuid.uuid4().hex}", concept=concept, image_path=image_path)
    return state.model_copy(update={"visions": [*state.visions, vision]}), vision


def generate_vision_prompt(concept: str, book_title: str) -> str:
    """Turn a reader's insight into an image-generation prompt."""
    clean = concept.strip()[:200]
    lower = clean.lower()
    for keywords, metaphor in _VISION_METAPHORS:
        if any(k in lower for k in keywords):
            break
    else:
        metaphor = (
            f'A surreal manifestation of the concept "{clean}", '
            "represented by floating geometric symbols and ancient scrolls."
        )
    return f'{metaphor} Inspired by "{book_title}". {VISION_STYLE}'
