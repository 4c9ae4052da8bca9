"""
Tests for integrity violation recording.
"""
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from assessment.core.exceptions import NotFoundError, PersistenceError
from assessment.models import TestAttempt, TestViolation
from assessment.repositories import Repositories, counter_for_violation
from assessment.services.attempt_service import AttemptService
from assessment.services.violation_tracker import (
    ViolationReport,
    ViolationTracker,
    normalize_details,
    record_violation_in_background,
    record_violations_in_background,
)


@pytest.fixture
def repos(db_session):
    return Repositories.from_session(db_session)


@pytest.fixture
def attempt(repos, student, mixed_test):
    return AttemptService(repos).start(mixed_test.id, student.id).attempt


@pytest.mark.parametrize(
    "violation_type,column",
    [
        ("window_switch", "window_switches"),
        ("tab_switch", "window_switches"),
        ("screenshot_attempt", "screenshot_attempts"),
        ("phone_call", "phone_calls"),
        ("copy_paste", "other_violations"),
        ("other", "other_violations"),
        ("something_new", "other_violations"),
    ],
)
def test_counter_mapping(violation_type, column):
    assert counter_for_violation(violation_type) == column


@pytest.mark.parametrize(
    "details,expected",
    [
        (None, None),
        ("left the window", {"message": "left the window"}),
        ({"duration": 3}, {"duration": 3}),
        (5, {"value": 5}),
    ],
)
def test_normalize_details(details, expected):
    assert normalize_details(details) == expected


class TestRecord:
    def test_increments_counters_and_appends_event(self, db_session, repos, attempt):
        tracker = ViolationTracker(repos)
        tracker.record(attempt.id, "tab_switch", "switched to tab 2")
        tracker.record(attempt.id, "window_switch")
        tracker.record(attempt.id, "phone_call", {"seconds": 40})

        summary = tracker.summary(attempt.id)
        assert summary.total_violations == 3
        assert summary.window_switches == 2
        assert summary.phone_calls == 1
        assert summary.screenshot_attempts == 0
        assert summary.other_violations == 0
        assert [v.violation_type for v in summary.violations] == [
            "tab_switch",
            "window_switch",
            "phone_call",
        ]
        assert summary.violations[0].details == {"message": "switched to tab 2"}

    def test_total_equals_sum_of_counters(self, repos, attempt):
        tracker = ViolationTracker(repos)
        for violation_type in ["screenshot_attempt", "copy_paste", "other", "tab_switch"]:
            tracker.record(attempt.id, violation_type)

        s = tracker.summary(attempt.id)
        assert s.total_violations == (
            s.window_switches + s.screenshot_attempts + s.phone_calls + s.other_violations
        )

    def test_client_timestamp_is_kept(self, repos, attempt):
        when = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
        violation = ViolationTracker(repos).record(attempt.id, "other", timestamp=when)
        assert violation.created_at.replace(tzinfo=timezone.utc) == when

    def test_unknown_attempt(self, repos):
        with pytest.raises(NotFoundError):
            ViolationTracker(repos).record(999, "tab_switch")

    def test_recorded_after_submission(self, repos, student, attempt):
        AttemptService(repos).submit(attempt.id, student.id)
        ViolationTracker(repos).record(attempt.id, "screenshot_attempt")
        assert ViolationTracker(repos).summary(attempt.id).screenshot_attempts == 1

    def test_failure_rolls_back_counters(self, db_session, repos, attempt):
        repos.violations.add = MagicMock(side_effect=PersistenceError("x", ValueError("y")))

        with pytest.raises(PersistenceError):
            ViolationTracker(repos).record(attempt.id, "tab_switch")

        db_session.expire_all()
        assert db_session.get(TestAttempt, attempt.id).total_violations == 0


class TestBackgroundRecording:
    def test_records_in_own_session(self, db_session, attempt, session_factory):
        record_violation_in_background(
            attempt.id, "window_switch", "blur", session_factory=session_factory
        )

        db_session.expire_all()
        stored = db_session.get(TestAttempt, attempt.id)
        assert stored.window_switches == 1
        assert db_session.query(TestViolation).count() == 1

    def test_failure_is_logged_not_raised(self, db_session, session_factory, caplog):
        with caplog.at_level(logging.WARNING, logger="assessment.services.violation_tracker"):
            record_violation_in_background(999, "tab_switch", session_factory=session_factory)

        assert "Failed to record violation" in caplog.text
        assert "attempt_id=999" in caplog.text
        assert db_session.query(TestViolation).count() == 0


class TestRecordMany:
    def test_records_batch_across_attempts(self, db_session, repos, attempt, other_student, mixed_test):
        other = AttemptService(repos).start(mixed_test.id, other_student.id).attempt
        tracker = ViolationTracker(repos)

        stored = tracker.record_many(
            [
                ViolationReport(attempt.id, "tab_switch", "blur"),
                ViolationReport(attempt.id, "phone_call"),
                ViolationReport(other.id, "screenshot_attempt", {"count": 2}),
            ]
        )

        assert len(stored) == 3
        assert tracker.summary(attempt.id).total_violations == 2
        assert tracker.summary(attempt.id).window_switches == 1
        assert tracker.summary(other.id).screenshot_attempts == 1
        assert stored[0].details == {"message": "blur"}

    def test_unknown_attempt_rolls_back_whole_batch(self, db_session, repos, attempt):
        with pytest.raises(NotFoundError):
            ViolationTracker(repos).record_many(
                [ViolationReport(attempt.id, "tab_switch"), ViolationReport(999, "other")]
            )

        db_session.expire_all()
        assert db_session.get(TestAttempt, attempt.id).total_violations == 0
        assert db_session.query(TestViolation).count() == 0

    def test_background_batch(self, db_session, attempt, session_factory):
        record_violations_in_background(
            [ViolationReport(attempt.id, "window_switch"), ViolationReport(attempt.id, "copy_paste")],
            session_factory=session_factory,
        )

        db_session.expire_all()
        stored = db_session.get(TestAttempt, attempt.id)
        assert stored.window_switches == 1
        assert stored.other_violations == 1

    def test_background_batch_failure_is_logged(self, db_session, attempt, session_factory, caplog):
        with caplog.at_level(logging.WARNING, logger="assessment.services.violation_tracker"):
            record_violations_in_background(
                [ViolationReport(attempt.id, "tab_switch"), ViolationReport(999, "other")],
                session_factory=session_factory,
            )

        assert "Failed to record violations" in caplog.text
        assert "999" in caplog.text
        assert db_session.query(TestViolation).count() == 0
