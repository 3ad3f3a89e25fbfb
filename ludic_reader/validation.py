"""Answer validation by embedding similarity.

There is no generative model here: every check is cosine similarity between
the reader's text and some ground truth — book metadata, the table of
contents, or the best matching passage retrieved from the book's index.

Score thresholds (cosine, before scaling to 0–100):
  generic verdict    > 0.7 valid, > 0.5 partial, else invalid
  classification     > 0.4
  unity statement    > 0.5  (and 5–100 words, checked before any embedding)
  term definition    > 0.45 against the best of the top-3 passages
  proposition        accepted unless the index verdict is invalid
  argument chain     conclusion not invalid, and at least 2 premises
  critique           > 0.4, only after understanding was verified

Embedder/retriever failures propagate as EmbeddingError; an index that
legitimately has no match is reported as a failed ValidationResult.
"""

from __future__ import annotations

import logging
import random
import re

from ludic_reader.difficulty import round_half_up
from ludic_reader.embeddings import Embedder, compute_similarity
from ludic_reader.index import Retriever
from ludic_reader.models import (
    Book,
    CritiqueType,
    SearchHit,
    TocEntry,
    ValidationResult,
    VerificationQuestion,
    VerificationResult,
)

logger = logging.getLogger(__name__)

CLASSIFICATION_THRESHOLD = 0.4
UNITY_THRESHOLD = 0.5
TERM_THRESHOLD = 0.45
CRITIQUE_THRESHOLD = 0.4
UNITY_MIN_WORDS = 5
UNITY_MAX_WORDS = 100
MIN_PREMISES = 2

VERIFICATION_QUERY = "main idea key concept important definition"
VERIFICATION_PASS_SCORE = 60
CLOZE_MIN_WORD_LENGTH = 6
CLOZE_BLANK = "_______"

GENERIC_HINTS = [
    "Read the text carefully again.",
    "Think about the keywords.",
]

_ALPHA_WORD = re.compile(r"^[a-zA-Z]+$")
_rng = random.Random()


def to_score(similarity: float) -> int:
    """Cosine similarity → 0–100 integer score (negatives floor at 0)."""
    return max(0, min(100, round_half_up(similarity * 100)))


def _feedback_for(verdict: str, score: int) -> str:
    if verdict == "valid":
        return f"Excellent! (Score: {score})"
    if verdict == "partial":
        return f"Close, but needs more detail. (Score: {score})"
    return f"Not quite. Try reading the section again. (Score: {score})"


class AnswerValidator:
    """Validates free-text answers against a book.

    Args:
        embedder:  Embedder used for direct text-vs-reference comparisons.
        retriever: Index collaborator for passage lookups (usually an IndexRegistry).
        rng:       Random source for cloze word selection.
    """

    def __init__(
        self,
        embedder: Embedder,
        retriever: Retriever,
        rng: random.Random | None = None,
    ) -> None:
        self._embedder = embedder
        self._retriever = retriever
        self._rng = rng or _rng

    # ------------------------------------------------------------------
    # Generic
    # ------------------------------------------------------------------

    async def validate_answer(self, user_text: str, reference_text: str) -> ValidationResult:
        sim = await compute_similarity(self._embedder, user_text, reference_text)
        score = to_score(sim.score)
        return ValidationResult(
            valid=sim.verdict == "valid",
            score=score,
            verdict=sim.verdict,
            feedback=_feedback_for(sim.verdict, score),
            matched_concepts=["Key concepts matched"] if sim.score > 0.6 else [],
            missed_concepts=["Key concepts missing"] if sim.score < 0.6 else [],
            hints=["Try to be more specific.", "Relate back to the text."] if sim.score < 0.7 else [],
        )

    # ------------------------------------------------------------------
    # Scouting
    # ------------------------------------------------------------------

    async def validate_book_classification(
        self, user_text: str, book: Book, sample_content: str = ""
    ) -> ValidationResult:
        """Compare the reader's classification with the book's title and description."""
        reference = f"{book.title} {book.description}"
        sim = await compute_similarity(self._embedder, user_text, reference)
        valid = sim.score > CLASSIFICATION_THRESHOLD
        return ValidationResult(
            valid=valid,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback=(
                "Classification accepted." if valid
                else "Ensure your classification matches the book's subject matter."
            ),
            hints=["Consider the main theme and genre of the book."],
        )

    async def validate_unity_statement(
        self, user_text: str, book: Book, toc: list[TocEntry]
    ) -> ValidationResult:
        word_count = len(user_text.split())
        if word_count < UNITY_MIN_WORDS or word_count > UNITY_MAX_WORDS:
            return ValidationResult(
                valid=False,
                score=0,
                verdict="invalid",
                feedback="Length requirement not met (aim for 10-80 words).",
                hints=["Keep it concise but comprehensive."],
            )

        toc_summary = ", ".join(entry.title for entry in toc)
        reference = f"{book.title}. {book.description}. {toc_summary}"
        sim = await compute_similarity(self._embedder, user_text, reference)
        valid = sim.score > UNITY_THRESHOLD
        return ValidationResult(
            valid=valid,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback=(
                "Good summary of the whole." if valid
                else "Your statement doesn't seem to cover the book's full scope."
            ),
            hints=["Include the major parts listed in the Table of Contents."],
        )

    # ------------------------------------------------------------------
    # Hunting
    # ------------------------------------------------------------------

    async def validate_term_definition(
        self, term: str, user_definition: str, book_id: str
    ) -> ValidationResult:
        """Check a definition against the passage where the book uses the term."""
        hits = await self._retriever.search(book_id, term, 3)
        if not hits:
            return ValidationResult(
                valid=False,
                score=0,
                verdict="invalid",
                feedback="Term not found in our index.",
                hints=["Are you sure this term appears in the book?"],
            )

        best = hits[0].text
        sim = await compute_similarity(self._embedder, user_definition, best)
        valid = sim.score > TERM_THRESHOLD
        return ValidationResult(
            valid=valid,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback=(
                "Definition aligns with context." if valid
                else "Your definition doesn't fit how the author uses this term."
            ),
            hints=[f'The term appears in contexts like: "...{best[:50]}..."'],
        )

    # ------------------------------------------------------------------
    # Alchemy
    # ------------------------------------------------------------------

    async def validate_proposition(self, text: str, book_id: str) -> ValidationResult:
        sim, _ = await self._retriever.validate_against_index(book_id, text, 3)
        valid = sim.verdict != "invalid"
        return ValidationResult(
            valid=valid,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback=(
                "Proposition verified in text." if valid
                else "Couldn't find support for this proposition in the text."
            ),
            hints=["Ensure you are paraphrasing an actual sentence from the book."],
        )

    async def validate_argument_chain(
        self,
        premise_ids: list[str],
        propositions: list,
        conclusion: str,
        book_id: str,
    ) -> ValidationResult:
        sim, _ = await self._retriever.validate_against_index(book_id, conclusion, 3)
        if sim.verdict == "invalid":
            return ValidationResult(
                valid=False,
                score=to_score(sim.score),
                verdict="invalid",
                feedback="Conclusion not supported by the text.",
                hints=["The conclusion must be grounded in the book's content."],
            )

        if len(premise_ids) < MIN_PREMISES:
            return ValidationResult(
                valid=False,
                score=0,
                verdict="invalid",
                feedback="An argument needs at least 2 premises.",
                hints=["Add more premises."],
            )

        return ValidationResult(
            valid=True,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback="Argument chain accepted (based on textual support).",
        )

    # ------------------------------------------------------------------
    # Judgment
    # ------------------------------------------------------------------

    async def validate_critique(
        self,
        critique_type: CritiqueType,
        target_argument: str,
        evidence: str,
        understanding_verified: bool,
        book_id: str,
    ) -> ValidationResult:
        if not understanding_verified:
            return ValidationResult(
                valid=False,
                score=0,
                verdict="invalid",
                feedback="You must verify your understanding before critiquing.",
                hints=["Complete the Understanding Verification first."],
            )

        sim, _ = await self._retriever.validate_against_index(book_id, evidence, 3)
        valid = sim.score > CRITIQUE_THRESHOLD
        return ValidationResult(
            valid=valid,
            score=to_score(sim.score),
            verdict=sim.verdict,
            feedback=(
                "Critique recorded." if valid
                else "Your evidence doesn't seem relevant to the book's content."
            ),
            hints=["Cite specific passages or concepts from the book."],
        )

    # ------------------------------------------------------------------
    # Understanding verification (cloze questions)
    # ------------------------------------------------------------------

    async def generate_verification_questions(
        self, count: int, book_id: str
    ) -> list[VerificationQuestion]:
        """Blank out one long alphabetic word per retrieved passage."""
        hits = await self._retriever.search(book_id, VERIFICATION_QUERY, count * 2)
        questions: list[VerificationQuestion] = []
        for hit in hits:
            if len(questions) >= count:
                break
            candidates = [
                w for w in hit.text.split()
                if len(w) >= CLOZE_MIN_WORD_LENGTH and _ALPHA_WORD.match(w)
            ]
            if not candidates:
                continue
            word = self._rng.choice(candidates)
            blanked = re.sub(rf"\b{re.escape(word)}\b", CLOZE_BLANK, hit.text, count=1)
            questions.append(VerificationQuestion(
                question=f'Complete this sentence from the text:\n\n"{blanked}"',
                expected_answer=word,
                context=hit.text,
            ))
        return questions

    async def evaluate_understanding_verification(
        self, questions: list[VerificationQuestion], answers: list[str]
    ) -> VerificationResult:
        if not questions:
            return VerificationResult(
                passed=False,
                score=0,
                threshold=VERIFICATION_PASS_SCORE,
                feedback="No questions to evaluate.",
                hints=["Generate verification questions first."],
            )

        total = 0
        for i, question in enumerate(questions):
            answer = answers[i] if i < len(answers) else ""
            if answer.strip().lower() == question.expected_answer.strip().lower():
                total += 100
                continue
            if not answer.strip():
                continue
            sim = await compute_similarity(self._embedder, answer, question.expected_answer)
            if sim.score > 0.7:
                total += 80
            elif sim.score > 0.5:
                total += 40

        average = total / len(questions)
        passed = average >= VERIFICATION_PASS_SCORE
        return VerificationResult(
            passed=passed,
            score=average,
            threshold=VERIFICATION_PASS_SCORE,
            feedback="Understanding verified." if passed else "Please review the section.",
            hints=[] if passed else ["Pay attention to specific terms used in the text."],
        )


def generate_hints(attempt_count: int, best_match: SearchHit | None = None) -> list[str]:
    """Hints for a failed attempt: the best passage first when one is known."""
    if best_match is not None:
        return [f'Focus on this section: "...{best_match.text[:100]}..."', *GENERIC_HINTS]
    return GENERIC_HINTS[: attempt_count + 1]
