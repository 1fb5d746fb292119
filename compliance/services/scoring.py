"""
Scoring engine.

A pure function of the question set and the submitted answers, so that a
result can be re-derived later from the stored inputs.
"""
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence, Tuple, Union

from compliance.models.enums import QuestionKind
from compliance.services.errors import AssessmentNotConfigured, IncompleteSubmission, InvalidAnswer

Answer = Union[str, bool]


@dataclass(frozen=True)
class QuestionSnapshot:
    id: str
    text: str
    kind: QuestionKind
    correct_answer: Answer
    options: Tuple[str, ...] = ()

    @property
    def expected_type(self) -> type:
        return bool if self.kind == QuestionKind.TRUE_FALSE else str


@dataclass(frozen=True)
class QuestionResult:
    question_id: str
    question: str
    user_answer: Answer
    correct: bool
    correct_answer: Answer


@dataclass(frozen=True)
class ScoreResult:
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    results: List[QuestionResult] = field(default_factory=list)


def percentage(correct: int, total: int) -> int:
    """100 * correct / total rounded half up, in integer arithmetic."""
    return (200 * correct + total) // (2 * total)


def _check_type(question: QuestionSnapshot, answer: Any) -> None:
    expected = question.expected_type
    # bool is a subclass of int, never of str, so isinstance is exact here
    if not isinstance(answer, expected):
        raise InvalidAnswer(question.id, expected.__name__)


def score(
    questions: Sequence[QuestionSnapshot],
    answers: Mapping[str, Any],
    pass_percentage: int,
) -> ScoreResult:
    """
    Score a submission.

    Every question must be answered; answers for unknown question ids are
    ignored. Comparison is exact value equality.
    """
    if not questions:
        raise AssessmentNotConfigured("This assessment has no questions and cannot be evaluated")

    missing = [q.id for q in questions if answers.get(q.id) is None]
    if missing:
        raise IncompleteSubmission(len(missing), missing)

    results = []
    correct_count = 0
    for question in questions:
        answer = answers[question.id]
        _check_type(question, answer)
        correct = answer == question.correct_answer
        if correct:
            correct_count += 1
        results.append(QuestionResult(
            question_id=question.id,
            question=question.text,
            user_answer=answer,
            correct=correct,
            correct_answer=question.correct_answer,
        ))

    total = len(questions)
    value = percentage(correct_count, total)
    return ScoreResult(
        score=value,
        passed=value >= pass_percentage,
        correct_count=correct_count,
        total_questions=total,
        results=results,
    )
