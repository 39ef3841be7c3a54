from datetime import timedelta

from sqlalchemy import select

from evalify.core.cache import quiz_results_key
from evalify.core.config import settings
from evalify.core.timeutil import utcnow
from evalify.models.academics import CourseStudent, Lab
from evalify.models.question import Question, QuestionType
from evalify.models.quiz import LabQuiz, QuizQuestion, QuizSection
from evalify.models.response import EvaluationStatus, QuizResponse, SubmissionStatus
from evalify.models.user import UserRole
from evalify.services.exam import auto_submit_overdue
from evalify.services.question_data import wrap


def _student_and_quiz(make_user, make_quiz, **kwargs):
    faculty = make_user(UserRole.FACULTY)
    student = make_user(UserRole.STUDENT)
    quiz = make_quiz(creator=faculty, students=[student], **kwargs)
    return student, quiz


def _question_ids(db, quiz):
    from evalify.services.quizzes import load_quiz_questions

    return [str(r.question.id) for r in load_quiz_questions(db, quiz.id)]


def test_assigned_quiz_is_listed_as_active(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    r = client.get("/exam/quizzes", headers=headers_for(student))
    assert r.status_code == 200
    items = r.json()["items"]
    assert [(i["id"], i["status"]) for i in items] == [(str(quiz.id), "ACTIVE")]

    r = client.get("/exam/quizzes", params={"status": "UPCOMING"}, headers=headers_for(student))
    assert r.json()["items"] == []


def test_unpublished_or_unassigned_quiz_is_hidden(client, make_user, make_quiz, headers_for):
    faculty = make_user(UserRole.FACULTY)
    student = make_user(UserRole.STUDENT)
    stranger = make_user(UserRole.STUDENT)
    draft = make_quiz(creator=faculty, students=[student], publish_quiz=False)
    quiz = make_quiz(creator=faculty, students=[student])

    assert client.get(f"/exam/quizzes/{draft.id}", headers=headers_for(student)).status_code == 404
    assert client.get(f"/exam/quizzes/{quiz.id}", headers=headers_for(stranger)).status_code == 404


def test_course_enrolment_makes_quiz_visible(client, db, make_user, make_course, make_quiz, headers_for):
    faculty = make_user(UserRole.FACULTY)
    student = make_user(UserRole.STUDENT)
    course = make_course(instructor=faculty)
    db.add(CourseStudent(course_id=course.id, student_id=student.id))
    db.commit()
    quiz = make_quiz(creator=faculty, course=course)

    r = client.get(f"/exam/quizzes/{quiz.id}", headers=headers_for(student))
    assert r.status_code == 200
    assert r.json()["courses"][0]["code"] == course.code
    assert r.json()["has_password"] is False


def test_start_creates_response_and_resumes(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz, duration_minutes=30)
    headers = headers_for(student)

    r = client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    assert r.status_code == 200
    state = r.json()
    assert state["submission_status"] == "NOT_SUBMITTED"
    assert state["evaluation_status"] == "NOT_EVALUATED"
    # Capped by the duration, not by the quiz window end.
    assert 29 * 60 <= state["remaining_seconds"] <= 30 * 60

    again = client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers).json()
    assert again["start_time"] == state["start_time"]
    assert again["end_time"] == state["end_time"]


def test_response_end_is_capped_by_quiz_end(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz, ends_in=timedelta(minutes=10), duration_minutes=60)
    state = client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers_for(student)).json()
    assert state["remaining_seconds"] <= 10 * 60


def test_start_outside_window_is_forbidden(client, make_user, make_quiz, headers_for):
    student, upcoming = _student_and_quiz(make_user, make_quiz, starts_in=timedelta(hours=1), ends_in=timedelta(hours=2))
    r = client.post(f"/exam/quizzes/{upcoming.id}/start", json={}, headers=headers_for(student))
    assert r.status_code == 403


def test_start_requires_password(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz, password="s3cret")
    headers = headers_for(student)

    assert client.get(f"/exam/quizzes/{quiz.id}", headers=headers).json()["has_password"] is True
    assert client.post(f"/exam/quizzes/{quiz.id}/start", json={"password": "nope"}, headers=headers).status_code == 403
    assert client.post(f"/exam/quizzes/{quiz.id}/start", json={"password": "s3cret"}, headers=headers).status_code == 200


def test_lab_restricted_quiz_checks_client_subnet(client, db, make_user, make_quiz, headers_for, monkeypatch):
    monkeypatch.setattr(settings, "trust_proxy_headers", True)
    student, quiz = _student_and_quiz(make_user, make_quiz)
    lab = Lab(name="Lab A1", block="A", ip_subnet="10.20.0.0/16")
    db.add(lab)
    db.flush()
    db.add(LabQuiz(lab_id=lab.id, quiz_id=quiz.id))
    db.commit()

    headers = headers_for(student)
    r = client.post(
        f"/exam/quizzes/{quiz.id}/start",
        json={},
        headers={**headers, "X-Forwarded-For": "192.168.1.5"},
    )
    assert r.status_code == 403

    r = client.post(
        f"/exam/quizzes/{quiz.id}/start",
        json={},
        headers={**headers, "X-Forwarded-For": "10.20.3.4, 172.16.0.1"},
    )
    assert r.status_code == 200

    db.expire_all()
    resp = db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz.id))
    assert resp.ip == ["10.20.3.4"]


def test_exam_questions_hide_solutions(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)

    assert client.get(f"/exam/quizzes/{quiz.id}/questions", headers=headers).status_code == 404

    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    items = client.get(f"/exam/quizzes/{quiz.id}/questions", headers=headers).json()["items"]
    assert [i["type"] for i in items] == ["MCQ", "TRUE_FALSE"]
    for item in items:
        assert "solution" not in item
        assert item["section_id"] is None
    assert all("isCorrect" not in o for o in items[0]["question_data"]["options"])


def test_save_answers_merges_and_rejects_unknown(client, db, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    mcq_id, tf_id = _question_ids(db, quiz)

    r = client.put(f"/exam/quizzes/{quiz.id}/answers", json={"answers": {mcq_id: {"studentAnswer": "a"}}}, headers=headers)
    assert r.status_code == 200
    r = client.put(f"/exam/quizzes/{quiz.id}/answers", json={"answers": {tf_id: {"studentAnswer": False}}}, headers=headers)
    assert r.json()["response"] == {mcq_id: {"studentAnswer": "a"}, tf_id: {"studentAnswer": False}}

    r = client.put(
        f"/exam/quizzes/{quiz.id}/answers",
        json={"answers": {str(quiz.id): {"studentAnswer": "x"}}},
        headers=headers,
    )
    assert r.status_code == 400


def test_violations_are_counted(client, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)

    client.post(f"/exam/quizzes/{quiz.id}/violations", headers=headers)
    r = client.post(f"/exam/quizzes/{quiz.id}/violations", headers=headers)
    assert r.json() == {"ok": True, "violations": 2}


def test_submit_is_idempotent_and_locks_response(client, db, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    mcq_id, _ = _question_ids(db, quiz)

    first = client.post(f"/exam/quizzes/{quiz.id}/submit", headers=headers).json()
    assert first["submission_status"] == "SUBMITTED"
    assert first["remaining_seconds"] == 0
    second = client.post(f"/exam/quizzes/{quiz.id}/submit", headers=headers).json()
    assert second["submission_time"] == first["submission_time"]

    r = client.put(f"/exam/quizzes/{quiz.id}/answers", json={"answers": {mcq_id: {"studentAnswer": "b"}}}, headers=headers)
    assert r.status_code == 403
    assert client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers).status_code == 403

    items = client.get("/exam/quizzes", headers=headers).json()["items"]
    assert items[0]["status"] == "COMPLETED"


def _overdue_response(db, quiz, student):
    now = utcnow()
    resp = QuizResponse(
        quiz_id=quiz.id,
        student_id=student.id,
        start_time=now - timedelta(minutes=40),
        end_time=now - timedelta(minutes=10),
        response={},
        ip=[],
        violations=0,
    )
    db.add(resp)
    db.commit()
    return resp


def test_auto_submit_endpoint_closes_overdue_response(client, make_user, make_quiz, headers_for, db):
    student, quiz = _student_and_quiz(make_user, make_quiz, auto_submit=True)
    _overdue_response(db, quiz, student)

    r = client.post(f"/exam/quizzes/{quiz.id}/auto-submit", headers=headers_for(student))
    assert r.status_code == 200
    assert r.json()["submission_status"] == "AUTO_SUBMITTED"


def test_auto_submit_endpoint_ignores_quiz_without_flag(client, make_user, make_quiz, headers_for, db):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    _overdue_response(db, quiz, student)

    r = client.post(f"/exam/quizzes/{quiz.id}/auto-submit", headers=headers_for(student))
    assert r.json()["submission_status"] == "NOT_SUBMITTED"


def test_auto_submit_overdue_sweep(db, make_user, make_quiz):
    faculty = make_user(UserRole.FACULTY)
    late = make_user(UserRole.STUDENT)
    manual = make_user(UserRole.STUDENT)
    auto_quiz = make_quiz(creator=faculty, students=[late], auto_submit=True)
    plain_quiz = make_quiz(creator=faculty, students=[manual])
    _overdue_response(db, auto_quiz, late)
    _overdue_response(db, plain_quiz, manual)

    assert auto_submit_overdue(db) >= 1

    db.expire_all()
    statuses = {
        r.quiz_id: r.submission_status
        for r in db.scalars(select(QuizResponse).where(QuizResponse.quiz_id.in_([auto_quiz.id, plain_quiz.id]))).all()
    }
    assert statuses[auto_quiz.id] == SubmissionStatus.AUTO_SUBMITTED
    assert statuses[plain_quiz.id] == SubmissionStatus.NOT_SUBMITTED


def test_result_requires_publication_and_evaluation(client, db, make_user, make_quiz, headers_for):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    client.post(f"/exam/quizzes/{quiz.id}/submit", headers=headers)

    assert client.get(f"/exam/quizzes/{quiz.id}/result", headers=headers).status_code == 403

    quiz.publish_result = True
    db.add(quiz)
    db.commit()
    assert client.get(f"/exam/quizzes/{quiz.id}/result", headers=headers).status_code == 403

    db.expire_all()
    resp = db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz.id))
    mcq_id, tf_id = _question_ids(db, quiz)
    resp.evaluation_status = EvaluationStatus.EVALUATED
    resp.score = 2.0
    resp.total_score = 3.0
    resp.evaluation_results = {
        mcq_id: {"score": 2.0, "status": "CORRECT", "remarks": None},
        tf_id: {"score": 0.0, "status": "UNANSWERED", "remarks": None},
    }
    db.add(resp)
    db.commit()

    r = client.get(f"/exam/quizzes/{quiz.id}/result", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert (body["score"], body["total_score"]) == (2.0, 3.0)
    assert [i["status"] for i in body["items"]] == ["CORRECT", "UNANSWERED"]


def _add_section_of_mcqs(db, quiz, creator, count=4):
    section = QuizSection(quiz_id=quiz.id, name="Part B", order_index=0)
    db.add(section)
    db.flush()
    for i in range(count):
        q = Question(
            type=QuestionType.MCQ,
            question=f"Pick option {i}",
            marks=1.0,
            negative_marks=0.0,
            question_data=wrap(
                {"options": [{"id": f"o{j}", "optionText": f"Option {j}", "orderIndex": j} for j in range(5)]}
            ),
            solution=wrap({"correctOptions": [{"id": f"o{i}", "isCorrect": True}]}),
            created_by_id=creator.id,
        )
        db.add(q)
        db.flush()
        db.add(QuizQuestion(quiz_id=quiz.id, question_id=q.id, section_id=section.id, order_index=i))
    db.commit()
    return section


def test_shuffled_exam_order_is_stable_per_student(client, db, make_user, make_quiz, headers_for):
    faculty = make_user(UserRole.FACULTY)
    student = make_user(UserRole.STUDENT)
    quiz = make_quiz(creator=faculty, students=[student], shuffle_questions=True, shuffle_options=True)
    section = _add_section_of_mcqs(db, quiz, faculty)
    headers = headers_for(student)
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)

    def snapshot():
        items = client.get(f"/exam/quizzes/{quiz.id}/questions", headers=headers).json()["items"]
        out = []
        for i in items:
            options = i.get("question_data", {}).get("options", [])
            out.append((i["id"], i["section_id"], [o["id"] for o in options]))
        return out

    first = snapshot()
    assert snapshot() == first

    # Unsectioned questions come first and each section stays contiguous.
    assert [s for _, s, _ in first] == [None, None] + [str(section.id)] * 4
    for _, sid, options in first:
        if sid is not None:
            assert sorted(options) == [f"o{j}" for j in range(5)]

    # Resuming keeps the same response, so option order survives.
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    assert snapshot() == first


def test_submission_changes_drop_cached_results(client, db, make_user, make_quiz, headers_for, redis_store):
    student, quiz = _student_and_quiz(make_user, make_quiz)
    headers = headers_for(student)
    key = quiz_results_key(quiz.id)

    redis_store.set(key, "{}")
    client.post(f"/exam/quizzes/{quiz.id}/start", json={}, headers=headers)
    assert redis_store.get(key) is None

    redis_store.set(key, "{}")
    client.post(f"/exam/quizzes/{quiz.id}/submit", headers=headers)
    assert redis_store.get(key) is None

    late, auto_quiz = _student_and_quiz(make_user, make_quiz, auto_submit=True)
    _overdue_response(db, auto_quiz, late)
    auto_key = quiz_results_key(auto_quiz.id)
    redis_store.set(auto_key, "{}")
    auto_submit_overdue(db)
    assert redis_store.get(auto_key) is None
