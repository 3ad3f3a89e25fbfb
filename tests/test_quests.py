"""Tests for quest generation."""

import random

import pytest

from ludic_reader.models import GameState
from ludic_reader.quests import (
    FALLBACK_EXCERPT,
    generate_advanced_quest,
    generate_quest,
    paragraphs,
    pick_excerpt,
    quest_tier,
)

CHAPTER = (
    "Short intro.\n\n"
    "The first long paragraph explains how a reader should come to terms with an author.\n\n"
    "The second long paragraph shows that propositions are the answers to questions.\n\n"
)


class TestTier:
    def test_normal_by_default(self) -> None:
        assert quest_tier(GameState()) == "NORMAL"

    def test_two_failures_still_normal(self) -> None:
        assert quest_tier(GameState(consecutive_failures=2)) == "NORMAL"

    def test_easy_after_three_failures(self) -> None:
        assert quest_tier(GameState(consecutive_failures=3)) == "EASY"


class TestExcerpts:
    def test_short_paragraphs_filtered(self) -> None:
        blocks = paragraphs(CHAPTER)
        assert len(blocks) == 2
        assert all(len(b) > 50 for b in blocks)

    def test_excerpt_truncated(self) -> None:
        excerpt = pick_excerpt("x" * 300, random.Random(0))
        assert excerpt == "x" * 100 + "..."

    def test_fallback_when_no_paragraphs(self) -> None:
        assert pick_excerpt("tiny", random.Random(0)) == FALLBACK_EXCERPT + "..."

    def test_deterministic_with_seed(self) -> None:
        assert pick_excerpt(CHAPTER, random.Random(7)) == pick_excerpt(CHAPTER, random.Random(7))


class TestGenerateQuest:
    @pytest.mark.parametrize("phase,quest_type,xp", [
        ("SCOUTING", "SCOUT", 20),
        ("HUNTING", "HUNT", 40),
        ("ALCHEMY", "ALCHEMY", 50),
        ("JUDGMENT", "JUDGE", 100),
        ("SYNTOPICAL", "SYNTHESIS", 150),
    ])
    def test_type_and_reward_per_phase(self, phase: str, quest_type: str, xp: int) -> None:
        quest = generate_quest(GameState(current_phase=phase), CHAPTER)
        assert quest.type == quest_type
        assert quest.xp_reward == xp
        assert quest.phase == phase
        assert quest.status == "active"

    def test_normal_scouting(self) -> None:
        quest = generate_quest(GameState(), CHAPTER, chapter_index=3)
        assert quest.difficulty_tier == "NORMAL"
        assert quest.target == "Unity Statement"
        assert quest.chapter_index == 3

    def test_easy_hunting_quotes_excerpt(self) -> None:
        state = GameState(current_phase="HUNTING", consecutive_failures=3)
        quest = generate_quest(state, CHAPTER, rng=random.Random(1))
        assert quest.difficulty_tier == "EASY"
        assert quest.target == "Term Definition"
        assert quest.description.startswith("Find the definition of a word")
        assert "paragraph" in quest.description
        assert quest.description.endswith('..."')

    def test_easy_alchemy_with_empty_chapter(self) -> None:
        state = GameState(current_phase="ALCHEMY", consecutive_failures=5)
        quest = generate_quest(state, "")
        assert FALLBACK_EXCERPT in quest.description

    def test_ids_are_unique(self) -> None:
        ids = {generate_quest(GameState(), CHAPTER).id for _ in range(20)}
        assert len(ids) == 20

    def test_state_untouched(self) -> None:
        state = GameState(consecutive_failures=3)
        generate_quest(state, CHAPTER)
        assert state.consecutive_failures == 3
        assert state.active_quest_id is None


class TestAdvancedQuest:
    def test_synthesis_quest(self) -> None:
        books = [{"id": "b1", "title": "One", "author": "A"}, {"id": "b2", "title": "Two"}]
        quest = generate_advanced_quest(GameState(current_phase="SYNTOPICAL"), books, "justice")
        assert quest.type == "SYNTHESIS"
        assert quest.xp_reward == 150
        assert quest.topic == "justice"
        assert quest.books == [{"id": "b1", "title": "One"}, {"id": "b2", "title": "Two"}]
        assert '"justice"' in quest.description
