"""Quest generation — one task per request, dispatched on the reader's phase.

Quest tier is EASY once the reader has failed more than twice in a row,
otherwise NORMAL. EASY quests anchor on a random excerpt of the chapter;
NORMAL quests ask for a whole-chapter task.

Excerpt selection uses an injected random.Random so callers (and tests) can
make it deterministic.
"""

from __future__ import annotations

import random
import re
import uuid

from ludic_reader.engine import XP_TABLE
from ludic_reader.models import GameState, Phase, Quest, QuestTier

MIN_PARAGRAPH_LENGTH = 50
EXCERPT_LENGTH = 100
EASY_FAILURE_THRESHOLD = 2
FALLBACK_EXCERPT = "the chapter text"

_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
_rng = random.Random()

# phase → (type, xp_reward, {tier: (target, description template)})
QUEST_TABLE: dict[Phase, tuple[str, int, dict[QuestTier, tuple[str, str]]]] = {
    "SCOUTING": ("SCOUT", 20, {
        "EASY": ("Keyword Identification",
                 "Read the first paragraph and identify one keyword."),
        "NORMAL": ("Unity Statement",
                   "Read the chapter and summarize its main theme in one sentence."),
    }),
    "HUNTING": ("HUNT", 40, {
        "EASY": ("Term Definition",
                 'Find the definition of a word in this section: "{excerpt}"'),
        "NORMAL": ("Term Logging",
                   "Identify and define 2 key terms that are central to this chapter's argument."),
    }),
    "ALCHEMY": ("ALCHEMY", 50, {
        "EASY": ("Proposition Extraction",
                 'Find one declarative sentence in this paragraph: "{excerpt}"'),
        "NORMAL": ("Argument Building",
                   "Construct an argument by linking 2 propositions found in this chapter."),
    }),
    "JUDGMENT": ("JUDGE", 100, {
        "EASY": ("Critique",
                 "Critique the author's main argument in this chapter using specific evidence."),
        "NORMAL": ("Critique",
                   "Critique the author's main argument in this chapter using specific evidence."),
    }),
    "SYNTOPICAL": ("SYNTHESIS", 150, {
        "EASY": ("Topic Identification",
                 "Analyze the common themes across your completed books and identify one key topic."),
        "NORMAL": ("Neutral Term System",
                   "Build a neutral terminology system by comparing terms from different "
                   "books on the same topic."),
    }),
}


def quest_tier(state: GameState) -> QuestTier:
    return "EASY" if state.consecutive_failures > EASY_FAILURE_THRESHOLD else "NORMAL"


def paragraphs(chapter_text: str) -> list[str]:
    """Blank-line separated blocks longer than the minimum length."""
    return [p for p in _PARAGRAPH_SPLIT.split(chapter_text or "") if len(p) > MIN_PARAGRAPH_LENGTH]


def pick_excerpt(chapter_text: str, rng: random.Random | None = None) -> str:
    blocks = paragraphs(chapter_text)
    source = (rng or _rng).choice(blocks) if blocks else FALLBACK_EXCERPT
    return source[:EXCERPT_LENGTH] + "..."


def _quest_id() -> str:
    return f"quest_{uuid.uuid4().hex}"


def generate_quest(
    state: GameState,
    chapter_text: str,
    rng: random.Random | None = None,
    chapter_index: int | None = None,
) -> Quest:
    """Build the quest for the reader's current phase. Has no side effects on state."""
    tier = quest_tier(state)
    quest_type, xp_reward, variants = QUEST_TABLE[state.current_phase]
    target, template = variants[tier]

    description = template
    if "{excerpt}" in template:
        description = template.format(excerpt=pick_excerpt(chapter_text, rng))

    return Quest(
        id=_quest_id(),
        type=quest_type,
        description=description,
        target=target,
        xp_reward=xp_reward,
        difficulty_tier=tier,
        phase=state.current_phase,
        chapter_index=chapter_index,
    )


def generate_advanced_quest(state: GameState, books: list[dict], topic: str) -> Quest:
    """Cross-book synthesis quest for the advanced tier."""
    return Quest(
        id=_quest_id(),
        type="SYNTHESIS",
        description=f'Syntopical reading: build a neutral terminology for "{topic}"',
        target="Cross-Book Analysis",
        xp_reward=XP_TABLE["TOPIC_ANALYZED"],
        difficulty_tier=quest_tier(state),
        phase="SYNTOPICAL",
        topic=topic,
        books=[{"id": b["id"], "title": b["title"]} for b in books],
    )
