"""Phase milestones and the end-of-book reading summary."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path

from ludic_reader.difficulty import get_config
from ludic_reader.models import BASE_PHASES, Book, BookSummary, GameState, Milestone, Phase
from ludic_reader.render import PHASE_EMOJIS, PHASE_NAMES, render_book_summary

logger = logging.getLogger(__name__)

STAT_KEYS = ("xp", "terms", "propositions", "arguments")

_UNSAFE_FILENAME = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def generate_milestone(phase: Phase, difficulty_id: str, stats: dict[str, int]) -> Milestone:
    """Milestone card data for a completed phase. Missing stats default to 0."""
    return Milestone(
        id=f"milestone_{uuid.uuid4().hex}",
        phase=phase,
        difficulty=difficulty_id,
        emoji=PHASE_EMOJIS.get(phase, "🏆"),
        phase_name=PHASE_NAMES.get(phase, phase),
        stats={key: int(stats.get(key, 0)) for key in STAT_KEYS},
    )


def generate_book_summary(
    book: Book, state: GameState, milestones: list[Milestone], difficulty_id: str
) -> BookSummary:
    by_phase: dict[str, dict[str, int]] = {}
    for milestone in milestones:
        by_phase.setdefault(milestone.phase, milestone.stats)

    config = get_config(difficulty_id)
    return BookSummary(
        id=f"summary_{uuid.uuid4().hex}",
        book_id=book.id,
        book_title=book.title,
        author=book.author,
        difficulty=config.id,
        difficulty_name=config.name,
        level_achieved=state.level,
        total_xp=state.xp_total,
        phases_completed={phase: by_phase.get(phase) for phase in BASE_PHASES},
    )


def summary_filename(summary: BookSummary) -> str:
    safe_title = _WHITESPACE.sub("_", _UNSAFE_FILENAME.sub("_", summary.book_title))[:100]
    date = datetime.now(timezone.utc).date().isoformat()
    return f"{safe_title}_{summary.difficulty}_{date}_summary.md"


def save_book_summary(summary: BookSummary, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / summary_filename(summary)
    path.write_text(render_book_summary(summary), encoding="utf-8")
    logger.info("Saved reading summary to %s", path)
    return path
