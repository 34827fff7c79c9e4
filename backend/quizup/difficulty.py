"""Adaptive difficulty for quiz grading.

Each submission walks its answers in stored order starting at EASY. Three correct
answers in a row move the level one step up, two incorrect answers in a row move it
one step down, and the level in effect after each answer is recorded on that answer.
"""

from __future__ import annotations

import enum
import math
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel


class Difficulty(str, enum.Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


DIFFICULTY_ORDER: List[Difficulty] = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]

CORRECT_STREAK_TO_ESCALATE = 3
INCORRECT_STREAK_TO_DEESCALATE = 2


class QuestionKey(BaseModel):
    """Answer key for one question: what grading needs to know about it."""

    id: str
    correct_answer: str
    explanation: Optional[str] = None


class QuestionOutcome(BaseModel):
    question_id: str
    user_answer: Optional[str] = None
    is_correct: bool
    correct_answer: str
    explanation: Optional[str] = None
    difficulty: Difficulty


class GradedSubmission(BaseModel):
    correct_count: int
    results: List[QuestionOutcome]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def score(self) -> int:
        return score_percentage(self.correct_count, self.total)


def step_up(level: Difficulty) -> Difficulty:
    idx = DIFFICULTY_ORDER.index(level)
    return DIFFICULTY_ORDER[min(idx + 1, len(DIFFICULTY_ORDER) - 1)]


def step_down(level: Difficulty) -> Difficulty:
    idx = DIFFICULTY_ORDER.index(level)
    return DIFFICULTY_ORDER[max(idx - 1, 0)]


def adjust_difficulty(
    current_difficulty: Difficulty,
    correct_answers_in_row: int,
    incorrect_answers_in_row: int,
) -> Difficulty:
    """Return the difficulty for the next question.

    Escalation is checked first, so it wins if a caller ever passes both streaks
    over their thresholds. Levels clamp at EASY and HARD.
    """
    if correct_answers_in_row >= CORRECT_STREAK_TO_ESCALATE:
        return step_up(current_difficulty)
    if incorrect_answers_in_row >= INCORRECT_STREAK_TO_DEESCALATE:
        return step_down(current_difficulty)
    return current_difficulty


def update_streaks(correct_in_row: int, incorrect_in_row: int, is_correct: bool) -> Tuple[int, int]:
    if is_correct:
        return correct_in_row + 1, 0
    return 0, incorrect_in_row + 1


def grade_answers(
    questions: Sequence[Any],
    answers: Sequence[Optional[str]],
    start: Difficulty = Difficulty.EASY,
) -> GradedSubmission:
    """Grade a submission in order and label each answer with its difficulty.

    `questions` may be ORM rows or QuestionKey objects; only `id`, `correct_answer`
    and `explanation` are read. The caller guarantees `len(answers) == len(questions)`.
    """
    correct_count = 0
    correct_in_row = 0
    incorrect_in_row = 0
    current = start
    results: List[QuestionOutcome] = []
    for question, answer in zip(questions, answers):
        is_correct = question.correct_answer == answer
        if is_correct:
            correct_count += 1
        correct_in_row, incorrect_in_row = update_streaks(correct_in_row, incorrect_in_row, is_correct)
        current = adjust_difficulty(current, correct_in_row, incorrect_in_row)
        results.append(
            QuestionOutcome(
                question_id=question.id,
                user_answer=answer,
                is_correct=is_correct,
                correct_answer=question.correct_answer,
                explanation=getattr(question, "explanation", None),
                difficulty=current,
            )
        )
    return GradedSubmission(correct_count=correct_count, results=results)


def score_percentage(correct: int, total: int) -> int:
    # Half-up rounding, 0 for an empty quiz
    if total <= 0:
        return 0
    return int(math.floor(correct * 100 / total + 0.5))


def get_next_question(
    questions: Iterable[Any],
    current_difficulty: Difficulty,
    answered_questions: Set[str],
) -> Optional[str]:
    """Pick the next question id from a pool of objects with `id` and `difficulty`.

    Prefers the current level, then one step easier, then anything left, keeping the
    pool's order. Returns None once every question has been answered.
    """
    available = [q for q in questions if q.id not in answered_questions]

    for q in available:
        if q.difficulty == current_difficulty:
            return q.id

    easier = Difficulty.MEDIUM if current_difficulty == Difficulty.HARD else Difficulty.EASY
    for q in available:
        if q.difficulty == easier:
            return q.id

    if available:
        return available[0].id
    return None
