"""Tests for score aggregation."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from assessment.core.scoring import ScoreSummary, compute_score, percentage, resolve_scope
from assessment.models import QuestionType

GRADED = datetime(2026, 1, 1, tzinfo=timezone.utc)


@dataclass
class FakeQuestion:
    id: int
    points: float
    question_type: QuestionType = QuestionType.SINGLE_CHOICE


@dataclass
class FakeAnswer:
    question_id: int
    points_earned: float
    graded_at: Optional[datetime] = GRADED


@dataclass
class FakeAttempt:
    id: int = 1
    test_id: int = 1
    selected_questions: Optional[List[int]] = None


class FakeQuestions:
    def __init__(self, questions):
        self.questions = questions

    def list_for_test(self, test_id):
        return self.questions


class FakeAnswers:
    def __init__(self, answers):
        self.answers = answers

    def list_for_attempt(self, attempt_id):
        return self.answers


class TestPercentage:
    @pytest.mark.parametrize(
        "score,total,expected",
        [
            (25, 40, 63),  # 62.5 rounds half up
            (1, 8, 13),  # 12.5
            (1, 3, 33),
            (2, 3, 67),
            (40, 40, 100),
            (0, 40, 0),
        ],
    )
    def test_rounds_half_up(self, score, total, expected):
        assert percentage(score, total) == expected

    def test_zero_total_is_zero(self):
        assert percentage(0, 0) == 0
        assert percentage(5, 0) == 0


class TestResolveScope:
    def test_no_subset_uses_every_question(self):
        questions = [FakeQuestion(1, 1), FakeQuestion(2, 1)]
        assert resolve_scope(FakeAttempt(), questions) == questions

    def test_subset_filters_questions(self):
        questions = [FakeQuestion(1, 1), FakeQuestion(2, 1), FakeQuestion(3, 1)]
        scope = resolve_scope(FakeAttempt(selected_questions=[3, 1]), questions)
        assert [q.id for q in scope] == [1, 3]

    def test_subset_matching_nothing_falls_back_to_all(self, caplog):
        questions = [FakeQuestion(1, 1), FakeQuestion(2, 1)]
        with caplog.at_level(logging.WARNING, logger="assessment.core.scoring"):
            scope = resolve_scope(FakeAttempt(selected_questions=[99]), questions)

        assert scope == questions
        assert "matches no questions" in caplog.text

    def test_legacy_json_subset_is_understood(self):
        questions = [FakeQuestion(1, 1), FakeQuestion(2, 1)]
        scope = resolve_scope(FakeAttempt(selected_questions="[2]"), questions)
        assert [q.id for q in scope] == [2]


class TestComputeScore:
    def test_mixed_attempt_scenario(self):
        """10 + 0 + 15 of 40 points is 25 points, 63%."""
        questions = [
            FakeQuestion(1, 10),
            FakeQuestion(2, 15, QuestionType.FREE_TEXT),
            FakeQuestion(3, 15, QuestionType.CODE),
        ]
        answers = [
            FakeAnswer(1, 10),
            FakeAnswer(2, 0, graded_at=None),
            FakeAnswer(3, 15),
        ]

        summary = compute_score(FakeAttempt(), FakeAnswers(answers), FakeQuestions(questions))

        assert summary == ScoreSummary(
            score=25.0,
            total_points=40.0,
            percentage=63,
            answered_count=3,
            graded_count=2,
            pending_count=1,
            question_count=3,
        )
        assert summary.passes(60)
        assert not summary.passes(70)

    def test_answers_outside_subset_are_ignored(self):
        questions = [FakeQuestion(1, 5), FakeQuestion(2, 5), FakeQuestion(3, 5)]
        answers = [FakeAnswer(1, 5), FakeAnswer(2, 5), FakeAnswer(3, 5)]

        summary = compute_score(
            FakeAttempt(selected_questions=[1, 2]),
            FakeAnswers(answers),
            FakeQuestions(questions),
        )

        assert summary.score == 10.0
        assert summary.total_points == 10.0
        assert summary.percentage == 100

    def test_points_are_capped_at_question_points(self):
        questions = [FakeQuestion(1, 2)]
        summary = compute_score(
            FakeAttempt(), FakeAnswers([FakeAnswer(1, 7)]), FakeQuestions(questions)
        )
        assert summary.score == 2.0
        assert summary.score <= summary.total_points

    def test_no_questions_scores_zero(self):
        summary = compute_score(FakeAttempt(), FakeAnswers([]), FakeQuestions([]))
        assert summary.score == 0
        assert summary.total_points == 0
        assert summary.percentage == 0

    def test_ungraded_single_choice_is_not_pending(self):
        questions = [FakeQuestion(1, 1)]
        summary = compute_score(
            FakeAttempt(),
            FakeAnswers([FakeAnswer(1, 0, graded_at=None)]),
            FakeQuestions(questions),
        )
        assert summary.pending_count == 0
