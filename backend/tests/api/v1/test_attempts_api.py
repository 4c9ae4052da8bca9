"""
Tests for the attempt endpoints.
"""
import pytest

from assessment.core.config import settings
from assessment.models import Certificate, QuestionType, TestAttempt, TestViolation
from tests.conftest import headers_for, make_test, questions_by_type, requires_isolation

DOUBLER = "n = int(input())\nprint(n * 2)\n"


def _start(client, headers, test_id, **extra):
    return client.post(
        "/v1/attempts/start", json={"test_id": test_id, **extra}, headers=headers
    )


def _answer(client, headers, attempt_id, question_id, **fields):
    return client.post(
        "/v1/attempts/answer",
        json={"attempt_id": attempt_id, "question_id": question_id, **fields},
        headers=headers,
    )


class TestStartAttempt:
    def test_requires_authentication(self, client, mixed_test):
        response = client.post("/v1/attempts/start", json={"test_id": mixed_test.id})
        assert response.status_code in (401, 403)

    def test_rejects_invalid_token(self, client, mixed_test):
        response = _start(
            client, {"Authorization": "Bearer not-a-token"}, mixed_test.id
        )
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_creates_then_resumes(self, client, auth_headers, mixed_test):
        first = _start(client, auth_headers, mixed_test.id, platform="web", browser="chrome")
        assert first.status_code == 201
        body = first.json()
        assert body["created"] is True
        assert body["attempt"]["status"] == "in_progress"
        assert body["attempt"]["total_points"] == 40
        assert len(body["questions"]) == 3
        assert all("correct_answer" not in q for q in body["questions"])

        second = _start(client, auth_headers, mixed_test.id)
        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["attempt"]["id"] == body["attempt"]["id"]

    def test_unknown_test(self, client, auth_headers):
        response = _start(client, auth_headers, 9999)
        assert response.status_code == 404
        assert response.json() == {"detail": "Test not found."}

    def test_platform_restriction(self, client, auth_headers, db_session):
        test = make_test(
            db_session,
            platform_restriction="mobile",
            questions=[dict(question_type=QuestionType.FREE_TEXT, points=1)],
        )
        response = _start(client, auth_headers, test.id, platform="web")
        assert response.status_code == 403
        assert "MOBILE" in response.json()["detail"]

        assert _start(client, auth_headers, test.id, platform="android").status_code == 201

    def test_max_attempts(self, client, auth_headers, db_session):
        test = make_test(
            db_session,
            max_attempts=1,
            questions=[dict(question_type=QuestionType.FREE_TEXT, points=1)],
        )
        attempt_id = _start(client, auth_headers, test.id).json()["attempt"]["id"]
        client.post("/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers)

        response = _start(client, auth_headers, test.id)
        assert response.status_code == 403
        assert "maximum number of attempts" in response.json()["detail"]

    def test_subset_questions_are_returned(self, client, auth_headers, db_session):
        test = make_test(
            db_session,
            questions_to_ask=2,
            questions=[dict(question_type=QuestionType.FREE_TEXT, points=1) for _ in range(4)],
        )
        body = _start(client, auth_headers, test.id).json()

        selected = body["attempt"]["selected_questions"]
        assert len(selected) == 2
        assert sorted(q["id"] for q in body["questions"]) == sorted(selected)

    def test_validation_error_shape(self, client, auth_headers):
        response = client.post("/v1/attempts/start", json={}, headers=auth_headers)
        assert response.status_code == 422
        error = response.json()["detail"][0]
        assert error["loc"] == ["body", "test_id"]
        assert "msg" in error and "type" in error


class TestAttemptScenario:
    def test_full_attempt_scores_and_issues_certificate(
        self, client, auth_headers, db_session, mixed_test
    ):
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        single = _answer(
            client, auth_headers, attempt_id, questions[QuestionType.SINGLE_CHOICE].id, answer="4"
        )
        assert single.status_code == 200
        assert single.json()["answer"]["is_correct"] is True
        assert single.json()["answer"]["points_earned"] == 10

        free = _answer(
            client, auth_headers, attempt_id, questions[QuestionType.FREE_TEXT].id, answer="essay"
        )
        assert free.json()["answer"]["graded_at"] is None

        code = _answer(
            client,
            auth_headers,
            attempt_id,
            questions[QuestionType.CODE].id,
            code_submission=DOUBLER,
            language="python",
        )
        assert code.status_code == 200
        assert code.json()["judging_scheduled"] is False

        judged = client.post(
            "/v1/attempts/mark-code-correct",
            json={
                "attempt_id": attempt_id,
                "question_id": questions[QuestionType.CODE].id,
                "passed_count": 2,
                "total_test_cases": 2,
            },
            headers=auth_headers,
        )
        assert judged.status_code == 200
        assert judged.json()["points_earned"] == 15

        submitted = client.post(
            "/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers
        )
        assert submitted.status_code == 200
        result = submitted.json()["result"]
        assert result["score"] == 25
        assert result["total_points"] == 40
        assert result["percentage"] == 63
        assert result["pending_count"] == 1
        assert submitted.json()["attempt"]["status"] == "submitted"

        # Certificate evaluation runs as a background task after submit
        db_session.expire_all()
        assert db_session.query(Certificate).filter_by(attempt_id=attempt_id).count() == 1

        mine = client.get("/v1/certificates/mine", headers=auth_headers)
        assert [c["attempt_id"] for c in mine.json()] == [attempt_id]

    def test_resubmit_is_conflict(self, client, auth_headers, mixed_test):
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        client.post("/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers)

        again = client.post(
            "/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers
        )
        assert again.status_code == 409
        assert "already submitted" in again.json()["detail"]

    def test_answer_after_submit_is_conflict(self, client, auth_headers, mixed_test):
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        client.post("/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers)

        response = _answer(
            client, auth_headers, attempt_id, questions[QuestionType.SINGLE_CHOICE].id, answer="4"
        )
        assert response.status_code == 409

    def test_missing_single_choice_answer(self, client, auth_headers, mixed_test):
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        response = _answer(
            client, auth_headers, attempt_id, questions[QuestionType.SINGLE_CHOICE].id
        )
        assert response.status_code == 400

    def test_other_students_attempt(self, client, auth_headers, other_headers, mixed_test):
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        answer = _answer(
            client, other_headers, attempt_id, questions[QuestionType.SINGLE_CHOICE].id, answer="4"
        )
        submit = client.post(
            "/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=other_headers
        )
        assert answer.status_code == 404
        assert submit.status_code == 404

    @requires_isolation
    def test_code_answer_is_judged_in_background(
        self, client, auth_headers, mixed_test, monkeypatch
    ):
        monkeypatch.setattr(settings, "SANDBOX_AUTO_JUDGE", True)
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        response = _answer(
            client,
            auth_headers,
            attempt_id,
            questions[QuestionType.CODE].id,
            code_submission=DOUBLER,
        )
        assert response.json()["judging_scheduled"] is True

        review = client.get(f"/v1/attempts/{attempt_id}/review", headers=auth_headers)
        code_item = next(
            item for item in review.json()["items"] if item["question_type"] == "code"
        )
        assert code_item["answer"]["points_earned"] == 15
        assert len(code_item["answer"]["test_results"]) == 2
        assert review.json()["result"]["score"] == 15


class TestReview:
    def test_review_recomputes_score(self, client, auth_headers, teacher_headers, mixed_test):
        questions = questions_by_type(mixed_test)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        _answer(client, auth_headers, attempt_id, questions[QuestionType.CODE].id, code_submission="x")
        client.post("/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=auth_headers)

        # Late grading by a teacher
        client.post(
            "/v1/attempts/mark-code-correct",
            json={
                "attempt_id": attempt_id,
                "question_id": questions[QuestionType.CODE].id,
                "passed_count": 1,
                "total_test_cases": 2,
            },
            headers=teacher_headers,
        )

        review = client.get(f"/v1/attempts/{attempt_id}/review", headers=auth_headers)
        assert review.status_code == 200
        body = review.json()
        assert body["result"]["score"] == 7.5
        assert body["attempt"]["score"] == 0
        assert len(body["items"]) == 3
        single = next(i for i in body["items"] if i["question_type"] == "single_choice")
        assert single["correct_answer"] == "4"
        assert single["answer"] is None

    def test_hidden_review(self, client, auth_headers, teacher_headers, db_session):
        test = make_test(
            db_session,
            show_review_to_students=False,
            questions=[dict(question_type=QuestionType.FREE_TEXT, points=1)],
        )
        attempt_id = _start(client, auth_headers, test.id).json()["attempt"]["id"]

        assert client.get(f"/v1/attempts/{attempt_id}/review", headers=auth_headers).status_code == 403
        assert client.get(f"/v1/attempts/{attempt_id}/review", headers=teacher_headers).status_code == 200

    def test_unknown_attempt(self, client, auth_headers):
        assert client.get("/v1/attempts/999/review", headers=auth_headers).status_code == 404


class TestViolations:
    def test_violation_is_accepted_and_recorded(
        self, client, auth_headers, teacher_headers, db_session, mixed_test
    ):
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        for violation_type in ("tab_switch", "window_switch", "phone_call"):
            response = client.post(
                f"/v1/attempts/{attempt_id}/violation",
                json={"violation_type": violation_type, "details": "left the page"},
                headers=auth_headers,
            )
            assert response.status_code == 202
            assert response.json() == {"accepted": True, "attempt_id": attempt_id}

        summary = client.get(f"/v1/attempts/{attempt_id}/violations", headers=teacher_headers)
        assert summary.status_code == 200
        body = summary.json()
        assert body["total_violations"] == 3
        assert body["window_switches"] == 2
        assert body["phone_calls"] == 1
        assert body["violations"][0]["details"] == {"message": "left the page"}

    def test_unknown_violation_type(self, client, auth_headers, mixed_test):
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        response = client.post(
            f"/v1/attempts/{attempt_id}/violation",
            json={"violation_type": "teleportation"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_foreign_attempt(self, client, auth_headers, other_headers, db_session, mixed_test):
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        response = client.post(
            f"/v1/attempts/{attempt_id}/violation",
            json={"violation_type": "tab_switch"},
            headers=other_headers,
        )
        assert response.status_code == 404
        assert db_session.query(TestViolation).count() == 0

    def test_recording_failure_still_answers_202(
        self, client, auth_headers, db_session, mixed_test, monkeypatch
    ):
        from assessment.services import violation_tracker

        def broken(*args, **kwargs):
            raise RuntimeError("database is on fire")

        monkeypatch.setattr(violation_tracker.ViolationTracker, "record", broken)
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

        response = client.post(
            f"/v1/attempts/{attempt_id}/violation",
            json={"violation_type": "tab_switch"},
            headers=auth_headers,
        )
        assert response.status_code == 202
        db_session.expire_all()
        assert db_session.get(TestAttempt, attempt_id).total_violations == 0

    def test_violations_listing_is_staff_only(self, client, auth_headers, mixed_test):
        attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]
        response = client.get(f"/v1/attempts/{attempt_id}/violations", headers=auth_headers)
        assert response.status_code == 403


@pytest.mark.parametrize("passed,total", [(3, 2), (None, None)])
def test_mark_code_correct_edge_counts(client, auth_headers, mixed_test, passed, total):
    questions = questions_by_type(mixed_test)
    attempt_id = _start(client, auth_headers, mixed_test.id).json()["attempt"]["id"]

    response = client.post(
        "/v1/attempts/mark-code-correct",
        json={
            "attempt_id": attempt_id,
            "question_id": questions[QuestionType.CODE].id,
            "passed_count": passed,
            "total_test_cases": total,
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["points_earned"] == 15


@pytest.fixture
def owned_test(db_session, teacher):
    question = dict(
        question_type=QuestionType.SINGLE_CHOICE, options=["a", "b"], correct_answer="a", points=2
    )
    return make_test(
        db_session,
        created_by=teacher.id,
        passing_score=50,
        questions=[dict(question), dict(question)],
    )


def _take(client, headers, test_id, correct, submit=True):
    started = _start(client, headers, test_id).json()
    attempt_id = started["attempt"]["id"]
    for index, question in enumerate(started["questions"]):
        _answer(client, headers, attempt_id, question["id"], answer="a" if index < correct else "b")
    if submit:
        client.post("/v1/attempts/submit", json={"attempt_id": attempt_id}, headers=headers)
    return attempt_id


class TestStudentAttempts:
    def test_lists_own_attempts(self, client, auth_headers, student, owned_test):
        first = _take(client, auth_headers, owned_test.id, correct=1)
        second = _take(client, auth_headers, owned_test.id, correct=2)

        response = client.get(
            f"/v1/attempts/student/{student.id}/test/{owned_test.id}", headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_attempts"] == 2
        assert body["best_percentage"] == 100
        assert [a["attempt"]["id"] for a in body["attempts"]] == [second, first]
        assert [a["attempt_number"] for a in body["attempts"]] == [2, 1]
        assert body["attempts"][1]["result"]["percentage"] == 50

    def test_other_student_is_forbidden(self, client, other_headers, student, owned_test):
        response = client.get(
            f"/v1/attempts/student/{student.id}/test/{owned_test.id}", headers=other_headers
        )
        assert response.status_code == 403

    def test_teacher_of_another_test_is_forbidden(
        self, client, auth_headers, student, other_teacher, owned_test
    ):
        _take(client, auth_headers, owned_test.id, correct=1)
        response = client.get(
            f"/v1/attempts/student/{student.id}/test/{owned_test.id}",
            headers=headers_for(other_teacher),
        )
        assert response.status_code == 403

    def test_unknown_test(self, client, auth_headers, student):
        response = client.get(f"/v1/attempts/student/{student.id}/test/999", headers=auth_headers)
        assert response.status_code == 404


class TestAttemptDetail:
    def test_detail_with_violations(self, client, auth_headers, teacher_headers, owned_test):
        attempt_id = _take(client, auth_headers, owned_test.id, correct=1, submit=False)
        client.post(
            f"/v1/attempts/{attempt_id}/violation",
            json={"violation_type": "tab_switch"},
            headers=auth_headers,
        )

        for headers in (auth_headers, teacher_headers):
            response = client.get(f"/v1/attempts/detail/{attempt_id}", headers=headers)
            assert response.status_code == 200
            body = response.json()
            assert body["attempt_number"] == 1
            assert body["result"]["score"] == 2
            assert body["violation_count"] == 1
            assert body["violations"][0]["violation_type"] == "tab_switch"

    def test_foreign_student_gets_404(self, client, auth_headers, other_headers, owned_test):
        attempt_id = _take(client, auth_headers, owned_test.id, correct=0)
        response = client.get(f"/v1/attempts/detail/{attempt_id}", headers=other_headers)
        assert response.status_code == 404


class TestLiveAttempts:
    def test_monitor(self, client, auth_headers, other_headers, teacher_headers, owned_test):
        _take(client, auth_headers, owned_test.id, correct=2)
        live_id = _take(client, other_headers, owned_test.id, correct=0, submit=False)

        response = client.get(
            "/v1/attempts/live", params={"test_id": owned_test.id}, headers=teacher_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["live_count"] == 1
        assert body["completed_count"] == 1
        assert body["total_count"] == 2
        assert body["attempts"][0]["attempt"]["id"] == live_id
        assert body["attempts"][0]["student_email"] == "other@example.com"

    def test_students_are_forbidden(self, client, auth_headers, owned_test):
        response = client.get(
            "/v1/attempts/live", params={"test_id": owned_test.id}, headers=auth_headers
        )
        assert response.status_code == 403

    def test_test_id_is_required(self, client, teacher_headers):
        assert client.get("/v1/attempts/live", headers=teacher_headers).status_code == 422


class TestTestReport:
    def test_report(self, client, auth_headers, other_headers, teacher_headers, owned_test):
        _take(client, auth_headers, owned_test.id, correct=1)
        _take(client, other_headers, owned_test.id, correct=0)

        response = client.get(f"/v1/attempts/report/{owned_test.id}", headers=teacher_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["is_creator"] is True
        assert body["passing_score"] == 50
        assert len(body["attempts"]) == 2
        stats = body["statistics"]
        assert stats["submitted_count"] == 2
        assert stats["pass_count"] == 1
        assert stats["fail_count"] == 1
        assert stats["average_percentage"] == 25.0

    def test_admin_sees_any_report(self, client, admin, owned_test):
        response = client.get(f"/v1/attempts/report/{owned_test.id}", headers=headers_for(admin))
        assert response.status_code == 200
        assert response.json()["is_creator"] is False

    def test_other_teacher_is_forbidden(self, client, other_teacher, owned_test):
        response = client.get(
            f"/v1/attempts/report/{owned_test.id}", headers=headers_for(other_teacher)
        )
        assert response.status_code == 403
