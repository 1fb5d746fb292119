"""
Tests for the scoring engine.

Scoring is a pure function: same questions and answers, same result.
"""
import pytest

from compliance.models.enums import QuestionKind
from compliance.services.errors import AssessmentNotConfigured, IncompleteSubmission, InvalidAnswer
from compliance.services.scoring import QuestionSnapshot, percentage, score


class TestScoreCalculation:
    """Score = round(100 * correct / total), pass = score >= threshold."""

    def test_all_correct_scores_100(self, questions, answer_sheet):
        result = score(questions, answer_sheet(4), pass_percentage=70)

        assert result.score == 100
        assert result.passed is True
        assert result.correct_count == 4
        assert result.total_questions == 4

    def test_half_correct_fails_at_70(self, questions, answer_sheet):
        result = score(questions, answer_sheet(2), pass_percentage=70)

        assert result.score == 50
        assert result.passed is False

    def test_threshold_is_inclusive(self, questions, answer_sheet):
        """A score equal to the pass percentage passes."""
        result = score(questions, answer_sheet(3), pass_percentage=75)

        assert result.score == 75
        assert result.passed is True

    def test_percentage_rounds_half_up(self):
        assert percentage(2, 3) == 67
        assert percentage(1, 3) == 33
        assert percentage(1, 8) == 13
        assert percentage(0, 5) == 0
        assert percentage(5, 5) == 100

    def test_scoring_is_deterministic(self, questions, answer_sheet):
        answers = answer_sheet(3)

        assert score(questions, answers, 70) == score(questions, answers, 70)

    def test_per_question_results(self, questions, answer_sheet):
        result = score(questions, answer_sheet(1), pass_percentage=70)

        by_id = {r.question_id: r for r in result.results}
        assert by_id["q1"].correct is True
        assert by_id["q2"].correct is False
        assert by_id["q2"].user_answer is True
        assert by_id["q2"].correct_answer is False
        assert by_id["q3"].question == "Name the site assembly point."

    def test_unknown_question_ids_are_ignored(self, questions, answer_sheet):
        answers = answer_sheet(4)
        answers["q99"] = "anything"

        assert score(questions, answers, 70).score == 100

    def test_comparison_is_exact(self, questions, answer_sheet):
        """No case folding or trimming on short answers."""
        answers = answer_sheet(4)
        answers["q3"] = "Car Park "

        result = score(questions, answers, 70)

        assert result.correct_count == 3


class TestSubmissionValidation:
    """Incomplete or malformed submissions are rejected before scoring."""

    def test_missing_answer_rejected(self, questions, answer_sheet):
        answers = answer_sheet(4)
        del answers["q4"]

        with pytest.raises(IncompleteSubmission) as exc_info:
            score(questions, answers, 70)

        assert exc_info.value.missing == 1
        assert exc_info.value.details["question_ids"] == ["q4"]

    def test_none_counts_as_unanswered(self, questions, answer_sheet):
        answers = answer_sheet(4)
        answers["q1"] = None
        answers["q3"] = None

        with pytest.raises(IncompleteSubmission) as exc_info:
            score(questions, answers, 70)

        assert exc_info.value.missing == 2

    def test_true_false_requires_boolean(self, questions, answer_sheet):
        answers = answer_sheet(4)
        answers["q2"] = "false"

        with pytest.raises(InvalidAnswer) as exc_info:
            score(questions, answers, 70)

        assert exc_info.value.details == {"question_id": "q2", "expected": "bool"}

    def test_text_question_rejects_boolean(self, questions, answer_sheet):
        answers = answer_sheet(4)
        answers["q3"] = True

        with pytest.raises(InvalidAnswer):
            score(questions, answers, 70)

    def test_empty_question_set_cannot_be_evaluated(self):
        with pytest.raises(AssessmentNotConfigured):
            score([], {}, 70)

    def test_expected_type_follows_kind(self):
        tf = QuestionSnapshot(id="a", text="?", kind=QuestionKind.TRUE_FALSE, correct_answer=True)
        mc = QuestionSnapshot(id="b", text="?", kind=QuestionKind.MULTIPLE_CHOICE, correct_answer="x", options=("x",))

        assert tf.expected_type is bool
        assert mc.expected_type is str
