from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from evalify.core.cache import cache_delete, cache_get_json, cache_set_json, quiz_results_key
from evalify.core.config import settings
from evalify.core.ids import parse_uuid
from evalify.core.queue import fetch_job, get_queue
from evalify.core.security import STAFF_ROLES, require_roles
from evalify.core.timeutil import naive_utc
from evalify.db.session import get_db
from evalify.models.response import QuizReport, QuizResponse
from evalify.models.user import User
from evalify.routers.quizzes import get_managed_quiz
from evalify.schemas.result import EvaluateResponse, ManualScoreRequest
from evalify.services.evaluation import apply_manual_score, student_answer
from evalify.services.evaluation_jobs import evaluate_quiz_job
from evalify.services.question_data import staff_view
from evalify.services.quizzes import load_quiz_questions
from evalify.services.statistics import refresh_report, report_payload

router = APIRouter(prefix="/quizzes", tags=["results"])

log = logging.getLogger(__name__)

_staff = require_roles(*STAFF_ROLES)


def _iso(value) -> str | None:
    return naive_utc(value).isoformat() if value else None


def _response_row(resp: QuizResponse, student: User) -> dict:
    return {
        "response_id": str(resp.id),
        "student_id": str(student.id),
        "name": student.name,
        "email": student.email,
        "profile_id": student.profile_id,
        "score": resp.score,
        "total_score": resp.total_score,
        "submission_status": resp.submission_status.value,
        "evaluation_status": resp.evaluation_status.value,
        "violations": int(resp.violations or 0),
        "start_time": _iso(resp.start_time),
        "submission_time": _iso(resp.submission_time),
        "ip": list(resp.ip or []),
    }


def _get_response(db: Session, quiz_id, student_id: str) -> QuizResponse:
    sid = parse_uuid(student_id, field="student id")
    resp = db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz_id, QuizResponse.student_id == sid))
    if resp is None:
        raise HTTPException(status_code=404, detail="response not found")
    return resp


@router.post("/{quiz_id}/evaluate", response_model=EvaluateResponse)
def evaluate(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    try:
        job = get_queue(str(settings.rq_queue_evaluation)).enqueue(
            evaluate_quiz_job,
            quiz_id=str(quiz.id),
            job_timeout=60 * 30,
            result_ttl=60 * 60 * 24,
            failure_ttl=60 * 60 * 24,
            meta={"stage": "queued", "quiz_id": str(quiz.id), "requested_by": str(user.id)},
        )
    except redis.RedisError as e:
        log.warning("evaluation enqueue failed quiz_id=%s", quiz.id, exc_info=True)
        raise HTTPException(status_code=503, detail="evaluation queue unavailable") from e
    log.info("evaluation enqueued quiz_id=%s job_id=%s", quiz.id, job.id)
    return {"ok": True, "job_id": str(job.id)}


@router.get("/{quiz_id}/evaluate/jobs/{job_id}")
def evaluation_job_status(
    quiz_id: str,
    job_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    job = fetch_job(job_id)
    if job is None or str((job.meta or {}).get("quiz_id") or "") != str(quiz.id):
        raise HTTPException(status_code=404, detail="job not found")

    status = job.get_status()
    out = {
        "job_id": str(job.id),
        "status": str(getattr(status, "value", status)),
        "meta": dict(job.meta or {}),
        "result": None,
        "error": None,
    }
    if job.is_finished:
        out["result"] = job.return_value()
    elif job.is_failed:
        out["error"] = "evaluation failed"
    return out


@router.get("/{quiz_id}/report")
def get_report(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    return report_payload(db.scalar(select(QuizReport).where(QuizReport.quiz_id == quiz.id)))


@router.get("/{quiz_id}/results")
def get_results(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    key = quiz_results_key(quiz.id)
    cached = cache_get_json(key)
    if cached is not None:
        return cached

    rows = db.execute(
        select(QuizResponse, User)
        .join(User, User.id == QuizResponse.student_id)
        .where(QuizResponse.quiz_id == quiz.id)
        .order_by(User.name)
    ).all()
    payload = {
        "quiz_id": str(quiz.id),
        "report": report_payload(db.scalar(select(QuizReport).where(QuizReport.quiz_id == quiz.id))),
        "items": [_response_row(resp, student) for resp, student in rows],
    }
    cache_set_json(key, payload, ttl_seconds=int(settings.results_cache_ttl_seconds))
    return payload


@router.get("/{quiz_id}/results/students/{student_id}")
def get_student_result(
    quiz_id: str,
    student_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    resp = _get_response(db, quiz.id, student_id)
    student = db.get(User, resp.student_id)
    results = resp.evaluation_results or {}

    questions = []
    for r in load_quiz_questions(db, quiz.id):
        view = staff_view(r.question)
        view["section_id"] = str(r.link.section_id) if r.link.section_id else None
        view["student_answer"] = student_answer(resp.response, r.question.id)
        view["result"] = results.get(str(r.question.id))
        questions.append(view)

    out = _response_row(resp, student)
    out["remarks"] = resp.remarks
    out["questions"] = questions
    return out


@router.get("/{quiz_id}/results/questions/{question_id}")
def get_question_results(
    quiz_id: str,
    question_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    qid = parse_uuid(question_id, field="question id")
    row = next((r for r in load_quiz_questions(db, quiz.id) if r.question.id == qid), None)
    if row is None:
        raise HTTPException(status_code=404, detail="question not found in quiz")

    rows = db.execute(
        select(QuizResponse, User)
        .join(User, User.id == QuizResponse.student_id)
        .where(QuizResponse.quiz_id == quiz.id)
        .order_by(User.name)
    ).all()
    return {
        "question": staff_view(row.question),
        "items": [
            {
                "student_id": str(student.id),
                "name": student.name,
                "profile_id": student.profile_id,
                "student_answer": student_answer(resp.response, qid),
                "result": (resp.evaluation_results or {}).get(str(qid)),
            }
            for resp, student in rows
        ],
    }


@router.patch("/{quiz_id}/results/students/{student_id}/questions/{question_id}")
def override_score(
    quiz_id: str,
    student_id: str,
    question_id: str,
    body: ManualScoreRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    resp = _get_response(db, quiz.id, student_id)
    qid = parse_uuid(question_id, field="question id")
    row = next((r for r in load_quiz_questions(db, quiz.id) if r.question.id == qid), None)
    if row is None:
        raise HTTPException(status_code=404, detail="question not found in quiz")

    try:
        resp = apply_manual_score(db, response=resp, question=row.question, score=body.score, remarks=body.remarks)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    log.info("manual score quiz_id=%s student_id=%s question_id=%s by=%s", quiz.id, resp.student_id, qid, user.id)
    return {
        "ok": True,
        "score": resp.score,
        "total_score": resp.total_score,
        "result": (resp.evaluation_results or {}).get(str(qid)),
    }


@router.delete("/{quiz_id}/results/students/{student_id}")
def delete_response(
    quiz_id: str,
    student_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    resp = _get_response(db, quiz.id, student_id)
    db.delete(resp)
    db.flush()
    refresh_report(db, quiz.id)
    db.commit()
    cache_delete(quiz_results_key(quiz.id))
    log.info("response deleted quiz_id=%s student_id=%s by=%s", quiz.id, student_id, user.id)
    return {"ok": True}
