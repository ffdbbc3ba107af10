"""Acceptance: HTTP surface of the exam service."""

from datetime import timedelta

from village_exam.models import AttemptStatus
from village_exam.utils import utcnow


def _create_attempt(client, exam, user, order):
    return client.post(
        "/attempts",
        json={
            "exam_id": exam.id,
            "user_id": user.id,
            "student_name": user.full_name,
            "total_questions": exam.total_questions,
            "shuffled_question_order": order,
        },
    )


class TestAuth:
    def test_login_me_logout(self, client, student_user, login):
        profile = login(client, "asha@example.com", "student123")
        assert profile["id"] == student_user.id
        assert profile["standard"] == "7th"
        assert "password_hash" not in profile

        assert client.get("/auth/me").json()["email"] == "asha@example.com"

        client.get("/auth/logout")
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_REQUIRED"

    def test_wrong_password(self, client, student_user):
        response = client.post("/auth/login", json={"email": "asha@example.com", "password": "nope"})
        assert response.status_code == 401


class TestAttemptRoutes:
    def test_create_then_duplicate_is_rejected(self, client, student_user, exam, exam_question_ids, login):
        login(client, "asha@example.com", "student123")
        order = exam_question_ids(exam.id)

        first = _create_attempt(client, exam, student_user, order)
        assert first.status_code == 201
        body = first.json()
        assert body["status"] == AttemptStatus.NOT_STARTED
        assert body["remaining_time_seconds"] == 1800
        assert body["shuffled_question_order"] == order

        second = _create_attempt(client, exam, student_user, order)
        assert second.status_code == 409
        assert second.json()["code"] == "ACTIVE_ATTEMPT_EXISTS"

    def test_foreign_question_ids_are_rejected(self, client, student_user, exam, make_exam, exam_question_ids, login):
        login(client, "asha@example.com", "student123")
        other = make_exam()
        response = _create_attempt(client, exam, student_user, exam_question_ids(other.id))
        assert response.status_code == 400

    def test_cannot_act_as_another_student(self, client, student_user, other_student, exam, exam_question_ids, login):
        login(client, "asha@example.com", "student123")
        response = _create_attempt(client, exam, other_student, exam_question_ids(exam.id))
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_status_never_moves_backwards(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user, status=AttemptStatus.IN_PROGRESS)

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"status": AttemptStatus.NOT_STARTED}},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    def test_submitted_attempt_is_frozen(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=60)

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"remaining_time_seconds": 100}},
        )
        assert response.status_code == 409

    def test_question_order_is_immutable(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)
        reordered = list(reversed(attempt.shuffled_question_order))

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"shuffled_question_order": reordered}},
        )
        assert response.status_code == 409

    def test_scores_only_with_submission(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"score": 100}},
        )
        assert response.status_code == 409

    def test_submitted_scores_come_from_saved_answers(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)
        first = attempt.shuffled_question_order[0]
        client.post(
            "/rpc/save_exam_answer",
            json={"attempt_id": attempt.id, "question_id": first, "selected_option": "A", "user_id": student_user.id},
        )

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={
                "user_id": student_user.id,
                "fields": {
                    "status": AttemptStatus.SUBMITTED,
                    "score": 100,
                    "correct_answers": 5,
                    "wrong_answers": 0,
                    "unanswered": 0,
                },
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert (body["score"], body["correct_answers"], body["wrong_answers"], body["unanswered"]) == (20, 1, 0, 4)

    def test_student_cannot_grant_own_reattempt(
        self, client, student_user, exam, make_attempt, exam_question_ids, login
    ):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={
                "user_id": student_user.id,
                "fields": {"status": AttemptStatus.SUBMITTED, "score": 100, "can_reattempt": True},
            },
        )
        assert response.status_code == 403
        assert response.json()["code"] == "ADMIN_REQUIRED"

        client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"status": AttemptStatus.SUBMITTED}},
        )
        created = _create_attempt(client, exam, student_user, exam_question_ids(exam.id))
        assert created.status_code == 403
        assert created.json()["code"] == "ALREADY_COMPLETED"

    def test_pledge_cannot_be_withdrawn(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user, integrity_pledge_accepted=True)

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"integrity_pledge_accepted": False}},
        )
        assert response.status_code == 409

        response = client.patch(
            f"/attempts/{attempt.id}",
            json={"user_id": student_user.id, "fields": {"integrity_pledge_accepted": True}},
        )
        assert response.status_code == 200

    def test_start_snapshot_is_written_once(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user, start_snapshot_url="data:image/jpeg;base64,AA==")

        for snapshot in ["data:image/jpeg;base64,BB==", None]:
            response = client.patch(
                f"/attempts/{attempt.id}",
                json={"user_id": student_user.id, "fields": {"start_snapshot_url": snapshot}},
            )
            assert response.status_code == 409

        response = client.get("/attempts/latest", params={"exam_id": exam.id, "user_id": student_user.id})
        assert response.json()["start_snapshot_url"] == "data:image/jpeg;base64,AA=="

    def test_latest_attempt_is_null_without_attempts(self, client, student_user, exam, login):
        login(client, "asha@example.com", "student123")
        response = client.get("/attempts/latest", params={"exam_id": exam.id, "user_id": student_user.id})
        assert response.status_code == 200
        assert response.json() is None


class TestSaveExamAnswer:
    def test_upsert_and_server_side_correctness(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)
        first_question = attempt.shuffled_question_order[0]

        def save(option):
            return client.post(
                "/rpc/save_exam_answer",
                json={
                    "attempt_id": attempt.id,
                    "question_id": first_question,
                    "selected_option": option,
                    "time_taken_seconds": 5,
                    "user_id": student_user.id,
                },
            )

        assert save("B").json()["is_correct"] is False
        response = save("a")
        assert response.status_code == 200
        assert response.json()["selected_option"] == "A"
        assert response.json()["is_correct"] is True

        answers = client.get(f"/attempts/{attempt.id}/answers", params={"user_id": student_user.id}).json()
        assert len(answers) == 1

    def test_client_supplied_is_correct_is_ignored(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)
        response = client.post(
            "/rpc/save_exam_answer",
            json={
                "attempt_id": attempt.id,
                "question_id": attempt.shuffled_question_order[0],
                "selected_option": "D",
                "is_correct": True,
            },
        )
        assert response.json()["is_correct"] is False

    def test_rejected_when_not_in_progress(self, client, student_user, exam, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=0)
        response = client.post(
            "/rpc/save_exam_answer",
            json={"attempt_id": attempt.id, "question_id": attempt.shuffled_question_order[0], "selected_option": "A"},
        )
        assert response.status_code == 409

    def test_rejected_for_question_outside_the_set(self, client, student_user, exam, make_exam, exam_question_ids, make_attempt, login):
        login(client, "asha@example.com", "student123")
        attempt = make_attempt(exam, student_user)
        foreign = exam_question_ids(make_exam().id)[0]
        response = client.post(
            "/rpc/save_exam_answer",
            json={"attempt_id": attempt.id, "question_id": foreign, "selected_option": "A"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ANSWER_REJECTED"

    def test_other_students_attempt(self, client, student_user, other_student, exam, make_attempt, login):
        attempt = make_attempt(exam, other_student)
        login(client, "asha@example.com", "student123")
        response = client.post(
            "/rpc/save_exam_answer",
            json={"attempt_id": attempt.id, "question_id": attempt.shuffled_question_order[0], "selected_option": "A"},
        )
        assert response.status_code == 403


class TestResetExamAttempt:
    def test_admin_reset_allows_reattempt(self, client, admin_user, student_user, exam, make_attempt, exam_question_ids, login):
        attempt = make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=20)
        login(client, "admin@example.com", "admin123")

        response = client.post(
            "/rpc/reset_exam_attempt", json={"admin_user_id": admin_user.id, "attempt_id": attempt.id}
        )
        assert response.status_code == 200
        assert response.json()["can_reattempt"] is True

        login(client, "asha@example.com", "student123")
        created = _create_attempt(client, exam, student_user, exam_question_ids(exam.id))
        assert created.status_code == 201

    def test_student_cannot_reset(self, client, student_user, exam, make_attempt, login):
        attempt = make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=20)
        login(client, "asha@example.com", "student123")
        response = client.post(
            "/rpc/reset_exam_attempt", json={"admin_user_id": student_user.id, "attempt_id": attempt.id}
        )
        assert response.status_code == 403
        assert response.json()["code"] == "ADMIN_REQUIRED"

    def test_only_submitted_attempts(self, client, admin_user, student_user, exam, make_attempt, login):
        attempt = make_attempt(exam, student_user)
        login(client, "admin@example.com", "admin123")
        response = client.post(
            "/rpc/reset_exam_attempt", json={"admin_user_id": admin_user.id, "attempt_id": attempt.id}
        )
        assert response.status_code == 409

    def test_without_reset_completed_exam_stays_closed(self, client, student_user, exam, make_attempt, exam_question_ids, login):
        make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=20)
        login(client, "asha@example.com", "student123")
        response = _create_attempt(client, exam, student_user, exam_question_ids(exam.id))
        assert response.status_code == 403
        assert response.json()["code"] == "ALREADY_COMPLETED"


class TestStudentViews:
    def test_dashboard_states(self, client, student_user, exam, make_exam, make_attempt, login):
        upcoming = make_exam(status="scheduled", starts_in=timedelta(days=1), ends_in=timedelta(days=2))
        make_exam(from_standard="9th", to_standard="10th")
        make_exam(status="draft")
        done = make_exam()
        make_attempt(done, student_user, status=AttemptStatus.SUBMITTED, score=80)
        login(client, "asha@example.com", "student123")

        cards = {card["exam"]["id"]: card for card in client.get("/exams/student").json()}

        assert set(cards) == {exam.id, upcoming.id, done.id}
        assert cards[exam.id]["state"] == "active"
        assert cards[exam.id]["can_start"] is True
        assert cards[upcoming.id]["state"] == "upcoming"
        assert cards[upcoming.id]["can_start"] is False
        assert cards[done.id]["state"] == "completed"
        assert cards[done.id]["latest_attempt"]["score"] == 80

    def test_results_with_review(self, client, student_user, exam, make_attempt, login):
        attempt = make_attempt(
            exam,
            student_user,
            status=AttemptStatus.SUBMITTED,
            score=60,
            correct_answers=3,
            wrong_answers=1,
            unanswered=1,
            end_time=utcnow(),
        )
        login(client, "asha@example.com", "student123")

        response = client.get(f"/exams/{exam.id}/results/{attempt.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["passed"] is True
        assert body["pass_marks"] == 35
        assert [item["question_id"] for item in body["review"]] == attempt.shuffled_question_order
        assert body["review"][0]["selected_option"] is None
        assert body["review"][0]["explanation"] == "Explanation 1"

    def test_results_hidden_until_submitted(self, client, student_user, exam, make_attempt, login):
        attempt = make_attempt(exam, student_user)
        login(client, "asha@example.com", "student123")
        assert client.get(f"/exams/{exam.id}/results/{attempt.id}").status_code == 409

    def test_results_of_another_student(self, client, student_user, other_student, exam, make_attempt, login):
        attempt = make_attempt(exam, other_student, status=AttemptStatus.SUBMITTED, score=90)
        login(client, "asha@example.com", "student123")
        assert client.get(f"/exams/{exam.id}/results/{attempt.id}").status_code == 403

    def test_requires_login(self, client, exam):
        assert client.get(f"/exams/{exam.id}").status_code == 401


class TestAdminRoutes:
    def _payload(self, **overrides):
        now = utcnow()
        exam = {
            "title": "<b>Science</b> Quiz",
            "subject": "Science",
            "total_questions": 10,
            "duration_minutes": 20,
            "scheduled_at": (now + timedelta(days=1)).isoformat(),
            "ends_at": (now + timedelta(days=2)).isoformat(),
            "status": "scheduled",
            "pass_marks": 40,
            "from_standard": "6th",
            "to_standard": "8th",
        }
        exam.update(overrides)
        return exam

    def test_create_and_update_exam(self, client, admin_user, login):
        login(client, "admin@example.com", "admin123")

        created = client.post("/admin/exams", json={"exam": self._payload()})
        assert created.status_code == 200
        body = created.json()
        assert body["title"] == "Science Quiz"

        updated = client.post(
            "/admin/exams", json={"exam_id": body["id"], "exam": self._payload(title="Science Final")}
        )
        assert updated.json()["id"] == body["id"]
        assert updated.json()["title"] == "Science Final"

    def test_invalid_exam_payload(self, client, admin_user, login):
        login(client, "admin@example.com", "admin123")
        now = utcnow()
        payload = self._payload(
            title="",
            ends_at=now.isoformat(),
            scheduled_at=(now + timedelta(hours=1)).isoformat(),
            status="open",
            duration_minutes=0,
            pass_marks=120,
        )

        response = client.post("/admin/exams", json={"exam": payload})

        assert response.status_code == 400
        errors = response.json()["errors"]
        assert set(errors) == {"title", "ends_at", "status", "duration_minutes", "pass_marks"}

    def test_students_cannot_save_exams(self, client, student_user, login):
        login(client, "asha@example.com", "student123")
        response = client.post("/admin/exams", json={"exam": self._payload()})
        assert response.status_code == 403

    def test_add_question_validation(self, client, admin_user, exam, login):
        login(client, "admin@example.com", "admin123")
        question = {
            "question": "Capital of Maharashtra?",
            "option_a": "Mumbai",
            "option_b": "Pune",
            "option_c": "Nagpur",
            "option_d": "Nashik",
            "correct_option": "a",
        }

        created = client.post(f"/admin/exams/{exam.id}/questions", json=question)
        assert created.status_code == 201
        assert created.json()["correct_option"] == "A"

        duplicate = client.post(
            f"/admin/exams/{exam.id}/questions", json={**question, "option_b": "mumbai"}
        )
        assert duplicate.status_code == 400
        assert "options" in duplicate.json()["errors"]

        bad_key = client.post(f"/admin/exams/{exam.id}/questions", json={**question, "correct_option": "E"})
        assert "correct_option" in bad_key.json()["errors"]

    def test_attempt_report(self, client, admin_user, student_user, exam, make_attempt, login):
        make_attempt(exam, student_user, status=AttemptStatus.SUBMITTED, score=70)
        login(client, "admin@example.com", "admin123")
        rows = client.get(f"/admin/exams/{exam.id}/attempts").json()
        assert [row["score"] for row in rows] == [70]
