from __future__ import annotations

import logging
import random
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evalify.core import net
from evalify.core.cache import cache_delete, quiz_results_key
from evalify.core.ids import parse_uuid
from evalify.core.security import require_roles
from evalify.core.timeutil import naive_utc, utcnow
from evalify.db.session import get_db
from evalify.models.academics import Course, Lab
from evalify.models.quiz import CourseQuiz, LabQuiz, Quiz, QuizSection
from evalify.models.response import EvaluationStatus, QuizResponse, SubmissionStatus
from evalify.models.user import User, UserRole
from evalify.schemas.exam import ResponseState, SaveAnswersRequest, StartQuizRequest
from evalify.services.evaluation import student_answer
from evalify.services.exam import QuizStatus, compute_status, is_submitted, remaining_seconds, visible_quiz_ids
from evalify.services.question_data import student_view
from evalify.services.quizzes import QuizQuestionRow, load_quiz_questions

router = APIRouter(prefix="/exam", tags=["exam"])

log = logging.getLogger(__name__)

_student = require_roles(UserRole.STUDENT)


def _visible_quiz(db: Session, user: User, quiz_id: str) -> Quiz:
    qid = parse_uuid(quiz_id, field="quiz id")
    quiz = db.get(Quiz, qid)
    if quiz is None or not quiz.publish_quiz or qid not in visible_quiz_ids(db, user.id):
        raise HTTPException(status_code=404, detail="quiz not found")
    return quiz


def _own_response(db: Session, user: User, quiz: Quiz) -> QuizResponse | None:
    return db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz.id, QuizResponse.student_id == user.id))


def _require_response(db: Session, user: User, quiz: Quiz) -> QuizResponse:
    resp = _own_response(db, user, quiz)
    if resp is None:
        raise HTTPException(status_code=404, detail="quiz not started")
    return resp


def _require_in_progress(resp: QuizResponse) -> None:
    if is_submitted(resp):
        raise HTTPException(status_code=403, detail="quiz already submitted")
    if utcnow() > naive_utc(resp.end_time):
        raise HTTPException(status_code=403, detail="time is up")


def _state(resp: QuizResponse) -> dict:
    return {
        "quiz_id": str(resp.quiz_id),
        "start_time": naive_utc(resp.start_time).isoformat(),
        "end_time": naive_utc(resp.end_time).isoformat(),
        "submission_time": naive_utc(resp.submission_time).isoformat() if resp.submission_time else None,
        "submission_status": resp.submission_status.value,
        "evaluation_status": resp.evaluation_status.value,
        "remaining_seconds": remaining_seconds(resp),
        "violations": int(resp.violations or 0),
        "response": resp.response or {},
    }


def _quiz_card(quiz: Quiz, resp: QuizResponse | None, now) -> dict:
    return {
        "id": str(quiz.id),
        "name": quiz.name,
        "description": quiz.description,
        "start_time": naive_utc(quiz.start_time).isoformat(),
        "end_time": naive_utc(quiz.end_time).isoformat(),
        "duration_minutes": quiz.duration_minutes,
        "status": compute_status(quiz, resp, now).value,
        "publish_result": bool(quiz.publish_result),
    }


def _exam_order(quiz: Quiz, resp: QuizResponse, rows: list[QuizQuestionRow]) -> list[QuizQuestionRow]:
    if not quiz.shuffle_questions:
        return rows
    # Shuffle within each section so section grouping survives.
    rng = random.Random(f"{quiz.id}:{resp.student_id}")
    groups: dict[object, list[QuizQuestionRow]] = {}
    for r in rows:
        groups.setdefault(r.link.section_id, []).append(r)
    out: list[QuizQuestionRow] = []
    for key in groups:
        chunk = groups[key]
        rng.shuffle(chunk)
        out.extend(chunk)
    return out


@router.get("/quizzes")
def list_my_quizzes(
    status: QuizStatus | None = None,
    course_id: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    ids = visible_quiz_ids(db, user.id)
    if not ids:
        return {"items": []}

    stmt = select(Quiz).where(Quiz.id.in_(ids), Quiz.publish_quiz.is_(True))
    if course_id:
        cid = parse_uuid(course_id, field="course id")
        stmt = stmt.where(Quiz.id.in_(select(CourseQuiz.quiz_id).where(CourseQuiz.course_id == cid)))
    quizzes = db.scalars(stmt.order_by(Quiz.start_time)).all()

    responses = {
        r.quiz_id: r
        for r in db.scalars(
            select(QuizResponse).where(QuizResponse.student_id == user.id, QuizResponse.quiz_id.in_(ids))
        ).all()
    }
    now = utcnow()
    items = [_quiz_card(q, responses.get(q.id), now) for q in quizzes]
    if status is not None:
        items = [i for i in items if i["status"] == status.value]
    return {"items": items}


@router.get("/quizzes/{quiz_id}")
def get_quiz_info(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _own_response(db, user, quiz)
    out = _quiz_card(quiz, resp, utcnow())
    out.update(
        {
            "instructions": quiz.instructions,
            "has_password": bool(quiz.password),
            "full_screen": bool(quiz.full_screen),
            "linear_quiz": bool(quiz.linear_quiz),
            "calculator": bool(quiz.calculator),
            "auto_submit": bool(quiz.auto_submit),
            "kiosk_mode": bool(quiz.kiosk_mode),
            "courses": [
                {"id": str(c.id), "code": c.code, "name": c.name}
                for c in db.scalars(
                    select(Course).join(CourseQuiz, CourseQuiz.course_id == Course.id).where(CourseQuiz.quiz_id == quiz.id)
                ).all()
            ],
        }
    )
    return out


@router.post("/quizzes/{quiz_id}/start", response_model=ResponseState)
def start_quiz(
    request: Request,
    quiz_id: str,
    body: StartQuizRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    now = utcnow()
    if now < naive_utc(quiz.start_time) or now >= naive_utc(quiz.end_time):
        raise HTTPException(status_code=403, detail="quiz is not active")

    if quiz.password and str(body.password or "") != quiz.password:
        raise HTTPException(status_code=403, detail="invalid quiz password")

    ip = net.client_ip(request)
    subnets = db.scalars(
        select(Lab.ip_subnet).join(LabQuiz, LabQuiz.lab_id == Lab.id).where(LabQuiz.quiz_id == quiz.id)
    ).all()
    if subnets and not net.is_client_in_lab_subnets(ip, subnets):
        log.info("quiz start outside lab quiz_id=%s user_id=%s ip=%s", quiz.id, user.id, ip)
        raise HTTPException(status_code=403, detail="not allowed from this network")

    resp = _own_response(db, user, quiz)
    if resp is not None:
        if is_submitted(resp):
            raise HTTPException(status_code=403, detail="quiz already submitted")
        if ip and ip not in (resp.ip or []):
            resp.ip = [*(resp.ip or []), ip]
            db.add(resp)
            db.commit()
        return _state(resp)

    resp = QuizResponse(
        quiz_id=quiz.id,
        student_id=user.id,
        start_time=now,
        end_time=min(naive_utc(quiz.end_time), now + timedelta(minutes=int(quiz.duration_minutes))),
        ip=[ip] if ip else [],
        response={},
        violations=0,
        submission_status=SubmissionStatus.NOT_SUBMITTED,
        evaluation_status=EvaluationStatus.NOT_EVALUATED,
    )
    db.add(resp)
    try:
        db.commit()
    except IntegrityError:
        # A parallel start created the row first.
        db.rollback()
        resp = _require_response(db, user, quiz)
    else:
        cache_delete(quiz_results_key(quiz.id))
    return _state(resp)


@router.get("/quizzes/{quiz_id}/response", response_model=ResponseState)
def get_my_response(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    return _state(_require_response(db, user, quiz))


@router.get("/quizzes/{quiz_id}/questions")
def get_exam_questions(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    _require_in_progress(resp)

    seed = str(resp.id) if quiz.shuffle_options else None
    items = []
    for r in _exam_order(quiz, resp, load_quiz_questions(db, quiz.id)):
        view = student_view(r.question, shuffle_seed=seed)
        view["section_id"] = str(r.link.section_id) if r.link.section_id else None
        items.append(view)
    return {"items": items}


@router.get("/quizzes/{quiz_id}/sections")
def get_exam_sections(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    _require_in_progress(resp)
    sections = db.scalars(
        select(QuizSection).where(QuizSection.quiz_id == quiz.id).order_by(QuizSection.order_index)
    ).all()
    return {"items": [{"id": str(s.id), "name": s.name, "order_index": s.order_index} for s in sections]}


@router.put("/quizzes/{quiz_id}/answers", response_model=ResponseState)
def save_answers(
    quiz_id: str,
    body: SaveAnswersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    _require_in_progress(resp)

    known = {str(r.question.id) for r in load_quiz_questions(db, quiz.id)}
    unknown = [k for k in body.answers if k not in known]
    if unknown:
        raise HTTPException(status_code=400, detail="unknown question id")

    merged = dict(resp.response or {})
    merged.update(body.answers)
    resp.response = merged
    db.add(resp)
    db.commit()
    return _state(resp)


@router.post("/quizzes/{quiz_id}/violations")
def record_violation(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    _require_in_progress(resp)
    resp.violations = int(resp.violations or 0) + 1
    db.add(resp)
    db.commit()
    log.info("proctoring violation quiz_id=%s user_id=%s count=%s", quiz.id, user.id, resp.violations)
    return {"ok": True, "violations": resp.violations}


@router.post("/quizzes/{quiz_id}/submit", response_model=ResponseState)
def submit_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    if not is_submitted(resp):
        resp.submission_status = SubmissionStatus.SUBMITTED
        resp.submission_time = utcnow()
        db.add(resp)
        db.commit()
        cache_delete(quiz_results_key(quiz.id))
    return _state(resp)


@router.post("/quizzes/{quiz_id}/auto-submit", response_model=ResponseState)
def auto_submit_check(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    now = utcnow()
    if quiz.auto_submit and not is_submitted(resp) and now > naive_utc(resp.end_time):
        resp.submission_status = SubmissionStatus.AUTO_SUBMITTED
        resp.submission_time = now
        db.add(resp)
        db.commit()
        cache_delete(quiz_results_key(quiz.id))
    return _state(resp)


@router.get("/quizzes/{quiz_id}/result")
def get_my_result(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_student),
):
    quiz = _visible_quiz(db, user, quiz_id)
    resp = _require_response(db, user, quiz)
    if not quiz.publish_result:
        raise HTTPException(status_code=403, detail="results are not published")
    if resp.evaluation_status != EvaluationStatus.EVALUATED:
        raise HTTPException(status_code=403, detail="result is not available yet")

    results = resp.evaluation_results or {}
    items = []
    for r in load_quiz_questions(db, quiz.id):
        q = r.question
        res = results.get(str(q.id)) or {}
        items.append(
            {
                "question_id": str(q.id),
                "type": q.type.value,
                "question": q.question,
                "marks": float(q.marks),
                "student_answer": student_answer(resp.response, q.id),
                "score": res.get("score"),
                "status": res.get("status"),
                "remarks": res.get("remarks"),
                "explanation": q.explanation,
            }
        )
    return {
        "quiz_id": str(quiz.id),
        "score": resp.score,
        "total_score": resp.total_score,
        "items": items,
    }
