"""Tests for AnswerValidator — embedding-similarity checks per reading phase."""

import random

import pytest

from conftest import StubRetriever, TableEmbedder, vec
from ludic_reader.models import Book, SearchHit, TocEntry, VerificationQuestion
from ludic_reader.validation import (
    CLOZE_BLANK,
    GENERIC_HINTS,
    AnswerValidator,
    generate_hints,
    to_score,
)

UNITY = "This book teaches how to read actively and analytically"


def _validator(table: dict | None = None, hits=None, score=None, seed: int = 0):
    embedder = TableEmbedder(table)
    retriever = StubRetriever(hits, score)
    return AnswerValidator(embedder, retriever, random.Random(seed)), embedder, retriever


class TestToScore:
    @pytest.mark.parametrize("similarity,score", [(0.855, 86), (1.0, 100), (-0.3, 0), (0.0, 0), (1.2, 100)])
    def test_scaling(self, similarity: float, score: int) -> None:
        assert to_score(similarity) == score


class TestValidateAnswer:
    async def test_valid(self) -> None:
        validator, _, _ = _validator({"mine": vec(0.9)})
        result = await validator.validate_answer("mine", "reference")
        assert result.valid is True
        assert result.verdict == "valid"
        assert result.score == 90
        assert result.hints == []
        assert result.matched_concepts

    async def test_partial(self) -> None:
        validator, _, _ = _validator({"mine": vec(0.55)})
        result = await validator.validate_answer("mine", "reference")
        assert result.valid is False
        assert result.verdict == "partial"
        assert result.missed_concepts
        assert len(result.hints) == 2

    async def test_invalid(self) -> None:
        validator, _, _ = _validator({"mine": vec(0.1)})
        result = await validator.validate_answer("mine", "reference")
        assert result.verdict == "invalid"
        assert result.feedback.startswith("Not quite")


class TestClassification:
    async def test_compares_with_title_and_description(self, book: Book) -> None:
        validator, embedder, _ = _validator({"a practical book": vec(0.45)})
        result = await validator.validate_book_classification("a practical book", book)
        assert result.valid is True
        assert embedder.calls[1] == "How to Read a Book A guide to intelligent reading"

    async def test_below_threshold(self, book: Book) -> None:
        validator, _, _ = _validator({"a novel": vec(0.3)})
        result = await validator.validate_book_classification("a novel", book)
        assert result.valid is False
        assert result.score == 30


class TestUnityStatement:
    async def test_too_short_never_embeds(self, book: Book) -> None:
        validator, embedder, _ = _validator()
        result = await validator.validate_unity_statement("Too short", book, book.toc)
        assert result.valid is False
        assert result.score == 0
        assert "Length" in result.feedback
        assert embedder.calls == []

    async def test_too_long(self, book: Book) -> None:
        validator, embedder, _ = _validator()
        result = await validator.validate_unity_statement("word " * 101, book, book.toc)
        assert result.valid is False
        assert embedder.calls == []

    async def test_reference_includes_toc(self, book: Book) -> None:
        validator, embedder, _ = _validator({UNITY: vec(0.6)})
        result = await validator.validate_unity_statement(UNITY, book, book.toc)
        assert result.valid is True
        assert embedder.calls[1] == (
            "How to Read a Book. A guide to intelligent reading. "
            "The Activity of Reading, Analytical Reading"
        )

    async def test_low_similarity(self, book: Book) -> None:
        validator, _, _ = _validator({UNITY: vec(0.45)})
        result = await validator.validate_unity_statement(UNITY, book, [TocEntry(title="x")])
        assert result.valid is False


class TestTermDefinition:
    async def test_term_not_in_index(self) -> None:
        validator, embedder, retriever = _validator(hits=[])
        result = await validator.validate_term_definition("entelechy", "actuality", "b1")
        assert result.valid is False
        assert result.feedback == "Term not found in our index."
        assert retriever.searches == [("b1", "entelechy", 3)]
        assert embedder.calls == []

    async def test_against_best_passage(self) -> None:
        hits = [SearchHit(text="Terms are words used unambiguously by the author.", score=0.9)]
        validator, embedder, _ = _validator({"my definition": vec(0.5)}, hits=hits)
        result = await validator.validate_term_definition("term", "my definition", "b1")
        assert result.valid is True
        assert embedder.calls == ["my definition", hits[0].text]
        assert hits[0].text[:50] in result.hints[0]

    async def test_below_threshold(self) -> None:
        hits = [SearchHit(text="passage", score=0.9)]
        validator, _, _ = _validator({"bad": vec(0.4)}, hits=hits)
        assert (await validator.validate_term_definition("term", "bad", "b1")).valid is False


class TestProposition:
    @pytest.mark.parametrize("score,valid", [(0.8, True), (0.6, True), (0.3, False)])
    async def test_by_index_verdict(self, score: float, valid: bool) -> None:
        validator, _, _ = _validator(score=score)
        result = await validator.validate_proposition("claim", "b1")
        assert result.valid is valid

    async def test_no_index_match(self) -> None:
        validator, _, _ = _validator(score=None)
        result = await validator.validate_proposition("claim", "b1")
        assert result.valid is False
        assert result.score == 0


class TestArgumentChain:
    async def test_accepted(self) -> None:
        validator, _, _ = _validator(score=0.75)
        result = await validator.validate_argument_chain(["p1", "p2"], [], "so therefore", "b1")
        assert result.valid is True
        assert result.score == 75

    async def test_unsupported_conclusion_checked_first(self) -> None:
        validator, _, _ = _validator(score=0.2)
        result = await validator.validate_argument_chain(["p1"], [], "nonsense", "b1")
        assert result.feedback == "Conclusion not supported by the text."

    async def test_needs_two_premises(self) -> None:
        validator, _, _ = _validator(score=0.9)
        result = await validator.validate_argument_chain(["p1"], [], "so therefore", "b1")
        assert result.valid is False
        assert "at least 2 premises" in result.feedback


class TestCritique:
    async def test_requires_verified_understanding(self) -> None:
        validator, _, retriever = _validator(score=0.9)
        result = await validator.validate_critique("disagreement", "arg", "evidence", False, "b1")
        assert result.valid is False
        assert retriever.searches == []

    async def test_relevant_evidence(self) -> None:
        validator, _, _ = _validator(score=0.45)
        result = await validator.validate_critique("agreement", "arg", "evidence", True, "b1")
        assert result.valid is True

    async def test_irrelevant_evidence(self) -> None:
        validator, _, _ = _validator(score=0.35)
        result = await validator.validate_critique("suspend_judgment", "arg", "evidence", True, "b1")
        assert result.valid is False


class TestVerification:
    async def test_generates_cloze(self) -> None:
        hits = [
            SearchHit(text="a b c", score=0.9),
            SearchHit(text="Reading requires attention always", score=0.8),
        ]
        validator, _, retriever = _validator(hits=hits)
        questions = await validator.generate_verification_questions(1, "b1")
        assert len(questions) == 1
        q = questions[0]
        assert q.expected_answer in ("Reading", "requires", "attention", "always")
        assert CLOZE_BLANK in q.question
        assert q.context == hits[1].text
        assert retriever.searches[0][2] == 2

    async def test_blanks_whole_word_only(self) -> None:
        validator, _, _ = _validator(hits=[SearchHit(text="Proofreading, not reading", score=0.9)])
        (question,) = await validator.generate_verification_questions(1, "b1")
        assert question.expected_answer == "reading"
        assert f"Proofreading, not {CLOZE_BLANK}" in question.question

    async def test_no_candidates(self) -> None:
        validator, _, _ = _validator(hits=[SearchHit(text="tiny bits", score=0.5)])
        assert await validator.generate_verification_questions(3, "b1") == []

    async def test_evaluate_exact_answers(self) -> None:
        validator, embedder, _ = _validator()
        questions = [
            VerificationQuestion(question="q1", expected_answer="Analytical", context="c"),
            VerificationQuestion(question="q2", expected_answer="reading", context="c"),
        ]
        result = await validator.evaluate_understanding_verification(questions, ["analytical ", "READING"])
        assert result.passed is True
        assert result.score == 100
        assert embedder.calls == []

    async def test_evaluate_partial_and_missing(self) -> None:
        validator, _, _ = _validator({"close": vec(0.75), "near": vec(0.6)})
        questions = [
            VerificationQuestion(question="q", expected_answer="target", context="c") for _ in range(3)
        ]
        result = await validator.evaluate_understanding_verification(questions, ["close", "near"])
        # (80 + 40 + 0) / 3 = 40
        assert result.score == pytest.approx(40)
        assert result.passed is False
        assert result.hints

    async def test_evaluate_without_questions(self) -> None:
        validator, _, _ = _validator()
        result = await validator.evaluate_understanding_verification([], [])
        assert result.passed is False
        assert result.feedback == "No questions to evaluate."


class TestHints:
    def test_best_match_first(self) -> None:
        hints = generate_hints(0, SearchHit(text="x" * 150, score=0.9))
        assert hints[0] == f'Focus on this section: "...{"x" * 100}..."'
        assert hints[1:] == GENERIC_HINTS

    def test_generic_grows_with_attempts(self) -> None:
        assert generate_hints(0) == GENERIC_HINTS[:1]
        assert generate_hints(5) == GENERIC_HINTS
