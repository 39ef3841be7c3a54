import json
from datetime import timedelta

from sqlalchemy import select

import evalify.routers.results as results_router
from evalify.core.cache import quiz_results_key
from evalify.core.config import settings
from evalify.core.timeutil import utcnow
from evalify.models.question import Question, QuestionType
from evalify.models.quiz import QuizEvaluationSettings, QuizQuestion
from evalify.models.response import EvaluationStatus, QuizReport, QuizResponse, SubmissionStatus
from evalify.models.user import UserRole
from evalify.services import evaluation, ollama
from evalify.services.evaluation import evaluate_quiz
from evalify.services.evaluation_jobs import evaluate_quiz_job
from evalify.services.question_data import wrap
from evalify.services.quizzes import load_quiz_questions


def _respond(db, quiz, student, answers: dict, status=SubmissionStatus.SUBMITTED) -> QuizResponse:
    now = utcnow()
    resp = QuizResponse(
        quiz_id=quiz.id,
        student_id=student.id,
        start_time=now - timedelta(minutes=20),
        end_time=now + timedelta(minutes=10),
        submission_time=now if status != SubmissionStatus.NOT_SUBMITTED else None,
        submission_status=status,
        response=answers,
        ip=["10.0.0.5"],
        violations=0,
    )
    db.add(resp)
    db.commit()
    return resp


def _graded_quiz(db, make_user, make_quiz):
    """Quiz with one perfect, one wrong and one unsubmitted response."""
    faculty = make_user(UserRole.FACULTY)
    good = make_user(UserRole.STUDENT, name="Alice")
    bad = make_user(UserRole.STUDENT, name="Bob")
    idle = make_user(UserRole.STUDENT, name="Carol")
    quiz = make_quiz(creator=faculty, students=[good, bad, idle])
    mcq_id, tf_id = [str(r.question.id) for r in load_quiz_questions(db, quiz.id)]

    _respond(db, quiz, good, {mcq_id: {"studentAnswer": "a"}, tf_id: {"studentAnswer": False}})
    _respond(db, quiz, bad, {mcq_id: {"studentAnswer": "b"}, tf_id: {"studentAnswer": "true"}})
    _respond(db, quiz, idle, {mcq_id: {"studentAnswer": "a"}}, status=SubmissionStatus.NOT_SUBMITTED)
    return faculty, quiz, (good, bad, idle), (mcq_id, tf_id)


def _response_of(db, quiz, student) -> QuizResponse:
    db.expire_all()
    return db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz.id, QuizResponse.student_id == student.id))


def test_evaluate_quiz_scores_submitted_responses(db, make_user, make_quiz):
    _, quiz, (good, bad, idle), (mcq_id, tf_id) = _graded_quiz(db, make_user, make_quiz)

    summary = evaluate_quiz(db, quiz.id)
    assert summary == {"evaluated": 2, "failed": 0, "total": 2}

    g = _response_of(db, quiz, good)
    assert (g.score, g.total_score, g.evaluation_status) == (3.0, 3.0, EvaluationStatus.EVALUATED)
    assert g.evaluation_results[mcq_id]["status"] == "CORRECT"

    b = _response_of(db, quiz, bad)
    assert b.score == 0.0
    assert b.evaluation_results[tf_id]["status"] == "INCORRECT"

    assert _response_of(db, quiz, idle).evaluation_status == EvaluationStatus.NOT_EVALUATED

    report = db.scalar(select(QuizReport).where(QuizReport.quiz_id == quiz.id))
    assert report.total_students == 2
    assert report.avg_score == 1.5
    assert report.mark_distribution == {"excellent": 1, "good": 0, "average": 0, "poor": 1}


def test_evaluation_job_runs_in_own_session(db, make_user, make_quiz):
    _, quiz, (good, _, _), _ = _graded_quiz(db, make_user, make_quiz)

    out = evaluate_quiz_job(quiz_id=str(quiz.id))
    assert out["ok"] is True
    assert out["evaluated"] == 2
    assert _response_of(db, quiz, good).score == 3.0


def test_evaluation_job_missing_quiz():
    out = evaluate_quiz_job(quiz_id="00000000-0000-0000-0000-000000000000")
    assert out == {"ok": False, "error": "quiz not found"}


def test_failing_response_is_marked_failed(db, make_user, make_quiz, monkeypatch):
    _, quiz, (good, bad, _), (mcq_id, _) = _graded_quiz(db, make_user, make_quiz)
    real = evaluation.evaluate_response

    def flaky(*, questions, response_map, scheme, previous=None):
        if response_map[mcq_id]["studentAnswer"] == "b":
            raise AttributeError("'list' object has no attribute 'get'")
        return real(questions=questions, response_map=response_map, scheme=scheme, previous=previous)

    monkeypatch.setattr(evaluation, "evaluate_response", flaky)

    assert evaluate_quiz(db, quiz.id) == {"evaluated": 1, "failed": 1, "total": 2}
    assert _response_of(db, quiz, good).evaluation_status == EvaluationStatus.EVALUATED
    assert _response_of(db, quiz, bad).evaluation_status == EvaluationStatus.FAILED

    report = db.scalar(select(QuizReport).where(QuizReport.quiz_id == quiz.id))
    assert report.total_students == 1


class _ArrayReply:
    def __call__(self, *args, **kwargs):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def post(self, url, json=None):
        return self

    def raise_for_status(self):
        return None

    def json(self):
        return ["unexpected", "array"]


def test_unusable_grader_reply_leaves_descriptive_pending(db, make_user, make_quiz, monkeypatch):
    faculty, quiz, (good, _, _), _ = _graded_quiz(db, make_user, make_quiz)
    essay = Question(
        type=QuestionType.DESCRIPTIVE,
        question="Explain congestion control.",
        marks=5.0,
        negative_marks=0.0,
        question_data=wrap({}),
        solution=wrap({"modelAnswer": "Sender backs off on loss."}),
        created_by_id=faculty.id,
    )
    db.add(essay)
    db.flush()
    db.add(QuizQuestion(quiz_id=quiz.id, question_id=essay.id, order_index=2))
    db.get(QuizEvaluationSettings, quiz.id).llm_evaluation_enabled = True
    g = _response_of(db, quiz, good)
    g.response = {**g.response, str(essay.id): {"studentAnswer": "Slow start and backoff."}}
    db.add(g)
    db.commit()

    monkeypatch.setattr(settings, "ollama_enabled", True)
    monkeypatch.setattr(ollama.httpx, "Client", _ArrayReply())

    assert evaluate_quiz(db, quiz.id)["failed"] == 0
    g = _response_of(db, quiz, good)
    assert g.evaluation_status == EvaluationStatus.EVALUATED
    assert g.evaluation_results[str(essay.id)]["status"] == "PENDING"
    assert g.total_score == 8.0


def test_evaluate_endpoint_enqueues_job(client, make_user, make_quiz, headers_for, monkeypatch):
    faculty = make_user(UserRole.FACULTY)
    quiz = make_quiz(creator=faculty)
    enqueued = []

    class _Job:
        id = "job-1"

    class _Queue:
        def enqueue(self, func, **kwargs):
            enqueued.append((func, kwargs))
            return _Job()

    monkeypatch.setattr(results_router, "get_queue", lambda name=None: _Queue())

    r = client.post(f"/quizzes/{quiz.id}/evaluate", headers=headers_for(faculty))
    assert r.status_code == 200
    assert r.json() == {"ok": True, "job_id": "job-1"}
    func, kwargs = enqueued[0]
    assert func is evaluate_quiz_job
    assert kwargs["quiz_id"] == str(quiz.id)
    assert kwargs["meta"]["quiz_id"] == str(quiz.id)


def test_evaluate_endpoint_requires_quiz_access(client, make_user, make_quiz, headers_for):
    quiz = make_quiz(creator=make_user(UserRole.FACULTY))
    other = make_user(UserRole.FACULTY)
    assert client.post(f"/quizzes/{quiz.id}/evaluate", headers=headers_for(other)).status_code == 403


def test_job_status_checks_quiz(client, make_user, make_quiz, headers_for, monkeypatch):
    faculty = make_user(UserRole.FACULTY)
    quiz = make_quiz(creator=faculty)

    class _Job:
        id = "job-9"
        is_finished = True
        is_failed = False

        def __init__(self, quiz_id):
            self.meta = {"quiz_id": quiz_id, "stage": "done"}

        def get_status(self):
            return "finished"

        def return_value(self):
            return {"ok": True, "evaluated": 0}

    monkeypatch.setattr(results_router, "fetch_job", lambda job_id: _Job(str(quiz.id)))
    r = client.get(f"/quizzes/{quiz.id}/evaluate/jobs/job-9", headers=headers_for(faculty))
    assert r.status_code == 200
    assert r.json()["status"] == "finished"
    assert r.json()["result"] == {"ok": True, "evaluated": 0}

    monkeypatch.setattr(results_router, "fetch_job", lambda job_id: _Job("someone-else"))
    assert client.get(f"/quizzes/{quiz.id}/evaluate/jobs/job-9", headers=headers_for(faculty)).status_code == 404


def test_results_are_cached_until_changed(client, db, make_user, make_quiz, headers_for, redis_store):
    faculty, quiz, (good, bad, _), (mcq_id, _) = _graded_quiz(db, make_user, make_quiz)
    evaluate_quiz(db, quiz.id)
    headers = headers_for(faculty)

    body = client.get(f"/quizzes/{quiz.id}/results", headers=headers).json()
    assert [i["name"] for i in body["items"]] == ["Alice", "Bob", "Carol"]
    assert body["report"]["total_students"] == 2
    assert json.loads(redis_store.get(quiz_results_key(quiz.id)))["quiz_id"] == str(quiz.id)

    b = _response_of(db, quiz, bad)
    b.score = 99.0
    db.add(b)
    db.commit()
    cached = client.get(f"/quizzes/{quiz.id}/results", headers=headers).json()
    assert next(i for i in cached["items"] if i["name"] == "Bob")["score"] == 0.0

    r = client.patch(
        f"/quizzes/{quiz.id}/results/students/{bad.id}/questions/{mcq_id}",
        json={"score": 1.5, "remarks": "method was right"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["score"] == 1.5
    assert r.json()["result"]["status"] == "MANUAL"
    assert redis_store.get(quiz_results_key(quiz.id)) is None

    fresh = client.get(f"/quizzes/{quiz.id}/results", headers=headers).json()
    assert next(i for i in fresh["items"] if i["name"] == "Bob")["score"] == 1.5


def test_manual_score_survives_reevaluation(client, db, make_user, make_quiz, headers_for):
    faculty, quiz, (_, bad, _), (mcq_id, _) = _graded_quiz(db, make_user, make_quiz)
    evaluate_quiz(db, quiz.id)
    headers = headers_for(faculty)

    r = client.patch(
        f"/quizzes/{quiz.id}/results/students/{bad.id}/questions/{mcq_id}",
        json={"score": 5},
        headers=headers,
    )
    assert r.status_code == 400

    client.patch(
        f"/quizzes/{quiz.id}/results/students/{bad.id}/questions/{mcq_id}",
        json={"score": 2},
        headers=headers,
    )
    evaluate_quiz(db, quiz.id)
    b = _response_of(db, quiz, bad)
    assert b.evaluation_results[mcq_id]["status"] == "MANUAL"
    assert b.score == 2.0


def test_student_and_question_breakdown(client, db, make_user, make_quiz, headers_for):
    faculty, quiz, (good, _, _), (mcq_id, _) = _graded_quiz(db, make_user, make_quiz)
    evaluate_quiz(db, quiz.id)
    headers = headers_for(faculty)

    detail = client.get(f"/quizzes/{quiz.id}/results/students/{good.id}", headers=headers).json()
    assert detail["score"] == 3.0
    first = detail["questions"][0]
    assert first["student_answer"] == "a"
    assert first["result"]["status"] == "CORRECT"
    assert "solution" in first

    per_question = client.get(f"/quizzes/{quiz.id}/results/questions/{mcq_id}", headers=headers).json()
    assert [i["student_answer"] for i in per_question["items"]] == ["a", "b", "a"]

    report = client.get(f"/quizzes/{quiz.id}/report", headers=headers).json()
    assert report["total_students"] == 2
    assert report["question_stats"][0]["correct"] == 1


def test_delete_response_refreshes_report(client, db, make_user, make_quiz, headers_for):
    faculty, quiz, (good, _, _), _ = _graded_quiz(db, make_user, make_quiz)
    evaluate_quiz(db, quiz.id)
    headers = headers_for(faculty)

    assert client.delete(f"/quizzes/{quiz.id}/results/students/{good.id}", headers=headers).status_code == 200
    assert client.get(f"/quizzes/{quiz.id}/results/students/{good.id}", headers=headers).status_code == 404
    assert client.get(f"/quizzes/{quiz.id}/report", headers=headers).json()["total_students"] == 1
