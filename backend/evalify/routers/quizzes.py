from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from evalify.core.ids import parse_uuid, parse_uuids
from evalify.core.security import STAFF_ROLES, require_roles
from evalify.core.timeutil import naive_utc
from evalify.db.session import get_db
from evalify.models.academics import Batch, Course, Lab
from evalify.models.bank import Bank, BankAccessLevel
from evalify.models.question import BankQuestion, Question
from evalify.models.quiz import (
    CourseQuiz,
    LabQuiz,
    Quiz,
    QuizBatch,
    QuizEvaluationSettings,
    QuizQuestion,
    QuizQuizTag,
    QuizSection,
    QuizTag,
    StudentQuiz,
)
from evalify.models.user import User, UserRole
from evalify.schemas.bank import QuestionUpdateRequest
from evalify.schemas.quiz import (
    AddFromBankRequest,
    AddFromBankResponse,
    EvaluationSettingsPayload,
    MoveQuestionRequest,
    PublishRequest,
    QuizCreateRequest,
    QuizQuestionCreateRequest,
    QuizUpdateRequest,
    ReorderRequest,
    SectionCreateRequest,
)
from evalify.services.banks import require_access
from evalify.services.question_data import staff_view, validate_question, wrap
from evalify.services.quizzes import (
    accessible_quiz_filter,
    can_manage_course,
    can_manage_quiz,
    delete_quiz,
    drop_orphan_question,
    load_quiz_questions,
    next_order_index,
)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

_staff = require_roles(*STAFF_ROLES)

_FLAGS = (
    "full_screen",
    "shuffle_questions",
    "shuffle_options",
    "linear_quiz",
    "calculator",
    "auto_submit",
    "publish_result",
    "kiosk_mode",
)


def get_managed_quiz(db: Session, user: User, quiz_id: str) -> Quiz:
    quiz = db.get(Quiz, parse_uuid(quiz_id, field="quiz id"))
    if quiz is None:
        raise HTTPException(status_code=404, detail="quiz not found")
    if not can_manage_quiz(db, user, quiz):
        raise HTTPException(status_code=403, detail="forbidden")
    return quiz


def _ids(db: Session, model, quiz_id: uuid.UUID, column) -> list[str]:
    return [str(x) for x in db.scalars(select(column).where(model.quiz_id == quiz_id)).all()]


def _tag_names(db: Session, quiz_id: uuid.UUID) -> list[str]:
    return list(
        db.scalars(
            select(QuizTag.name).join(QuizQuizTag, QuizQuizTag.tag_id == QuizTag.id).where(QuizQuizTag.quiz_id == quiz_id)
        ).all()
    )


def _settings_public(es: QuizEvaluationSettings | None) -> dict:
    if es is None:
        return EvaluationSettingsPayload().model_dump()
    return {k: getattr(es, k) for k in EvaluationSettingsPayload.model_fields}


def _quiz_summary(q: Quiz, *, question_count: int = 0) -> dict:
    out = {
        "id": str(q.id),
        "name": q.name,
        "description": q.description,
        "start_time": naive_utc(q.start_time).isoformat(),
        "end_time": naive_utc(q.end_time).isoformat(),
        "duration_minutes": q.duration_minutes,
        "publish_quiz": bool(q.publish_quiz),
        "has_password": bool(q.password),
        "created_by_id": str(q.created_by_id),
        "question_count": question_count,
    }
    for flag in _FLAGS:
        out[flag] = bool(getattr(q, flag))
    return out


def _quiz_detail(db: Session, q: Quiz) -> dict:
    count = int(db.scalar(select(func.count(QuizQuestion.id)).where(QuizQuestion.quiz_id == q.id)) or 0)
    out = _quiz_summary(q, question_count=count)
    out["instructions"] = q.instructions
    out["password"] = q.password
    out["course_ids"] = _ids(db, CourseQuiz, q.id, CourseQuiz.course_id)
    out["student_ids"] = _ids(db, StudentQuiz, q.id, StudentQuiz.student_id)
    out["lab_ids"] = _ids(db, LabQuiz, q.id, LabQuiz.lab_id)
    out["batch_ids"] = _ids(db, QuizBatch, q.id, QuizBatch.batch_id)
    out["tags"] = _tag_names(db, q.id)
    out["evaluation_settings"] = _settings_public(db.get(QuizEvaluationSettings, q.id))
    return out


def _check_settings(payload: EvaluationSettingsPayload) -> None:
    if payload.mcq_global_negative_mark is not None and payload.mcq_global_negative_percent is not None:
        raise HTTPException(status_code=400, detail="negative mark and negative percent are mutually exclusive")


def _check_window(start, end) -> None:
    if naive_utc(start) >= naive_utc(end):
        raise HTTPException(status_code=400, detail="start time must be before end time")


def _existing_ids(db: Session, model, raw: list[str], *, field: str) -> list[uuid.UUID]:
    ids = parse_uuids(raw, field=f"{field} id")
    if not ids:
        return []
    found = set(db.scalars(select(model.id).where(model.id.in_(ids))).all())
    if len(found) != len(ids):
        raise HTTPException(status_code=404, detail=f"{field} not found")
    return ids


def _replace_courses(db: Session, user: User, quiz: Quiz, raw: list[str]) -> None:
    ids = _existing_ids(db, Course, raw, field="course")
    if not ids:
        raise HTTPException(status_code=400, detail="at least one course is required")
    if not all(can_manage_course(db, user, cid) for cid in ids):
        raise HTTPException(status_code=403, detail="not allowed to create quizzes for this course")
    db.execute(delete(CourseQuiz).where(CourseQuiz.quiz_id == quiz.id))
    db.add_all([CourseQuiz(course_id=cid, quiz_id=quiz.id) for cid in ids])


def _replace_students(db: Session, quiz: Quiz, raw: list[str]) -> None:
    ids = parse_uuids(raw, field="student id")
    if ids:
        students = db.scalars(select(User).where(User.id.in_(ids))).all()
        if len(students) != len(ids):
            raise HTTPException(status_code=404, detail="student not found")
        if any(s.role != UserRole.STUDENT for s in students):
            raise HTTPException(status_code=400, detail="only students can be assigned to a quiz")
    db.execute(delete(StudentQuiz).where(StudentQuiz.quiz_id == quiz.id))
    db.add_all([StudentQuiz(student_id=sid, quiz_id=quiz.id) for sid in ids])


def _replace_labs(db: Session, quiz: Quiz, raw: list[str]) -> None:
    ids = _existing_ids(db, Lab, raw, field="lab")
    db.execute(delete(LabQuiz).where(LabQuiz.quiz_id == quiz.id))
    db.add_all([LabQuiz(lab_id=lid, quiz_id=quiz.id) for lid in ids])


def _replace_batches(db: Session, quiz: Quiz, raw: list[str]) -> None:
    ids = _existing_ids(db, Batch, raw, field="batch")
    db.execute(delete(QuizBatch).where(QuizBatch.quiz_id == quiz.id))
    db.add_all([QuizBatch(batch_id=bid, quiz_id=quiz.id) for bid in ids])


def _replace_tags(db: Session, quiz: Quiz, names: list[str]) -> None:
    wanted: list[str] = []
    for name in names:
        n = str(name or "").strip()
        if n and n.lower() not in {w.lower() for w in wanted}:
            wanted.append(n)

    db.execute(delete(QuizQuizTag).where(QuizQuizTag.quiz_id == quiz.id))
    for name in wanted:
        tag = db.scalar(select(QuizTag).where(func.lower(QuizTag.name) == name.lower()))
        if tag is None:
            tag = QuizTag(name=name)
            db.add(tag)
            db.flush()
        db.add(QuizQuizTag(quiz_id=quiz.id, tag_id=tag.id))


# Quizzes


@router.get("")
def list_quizzes(
    course_id: str | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    stmt = select(Quiz)
    if user.role != UserRole.ADMIN:
        stmt = stmt.where(accessible_quiz_filter(db, user))
    if course_id:
        cid = parse_uuid(course_id, field="course id")
        stmt = stmt.where(Quiz.id.in_(select(CourseQuiz.quiz_id).where(CourseQuiz.course_id == cid)))
    if search and search.strip():
        stmt = stmt.where(Quiz.name.ilike(f"%{search.strip()}%"))
    quizzes = db.scalars(stmt.order_by(Quiz.start_time.desc())).all()

    ids = [q.id for q in quizzes]
    counts = dict(
        db.execute(
            select(QuizQuestion.quiz_id, func.count(QuizQuestion.id))
            .where(QuizQuestion.quiz_id.in_(ids))
            .group_by(QuizQuestion.quiz_id)
        ).all()
    ) if ids else {}
    return {"items": [_quiz_summary(q, question_count=int(counts.get(q.id, 0))) for q in quizzes]}


@router.post("")
def create_quiz(
    body: QuizCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    _check_window(body.start_time, body.end_time)
    if body.evaluation_settings is not None:
        _check_settings(body.evaluation_settings)

    quiz = Quiz(
        name=body.name.strip(),
        description=body.description,
        instructions=body.instructions,
        start_time=naive_utc(body.start_time),
        end_time=naive_utc(body.end_time),
        duration_minutes=body.duration_minutes,
        password=body.password or None,
        created_by_id=user.id,
        **{flag: getattr(body, flag) for flag in _FLAGS},
    )
    db.add(quiz)
    db.flush()

    _replace_courses(db, user, quiz, body.course_ids)
    _replace_students(db, quiz, body.student_ids)
    _replace_labs(db, quiz, body.lab_ids)
    _replace_batches(db, quiz, body.batch_ids)
    _replace_tags(db, quiz, body.tags)

    es = body.evaluation_settings or EvaluationSettingsPayload()
    db.add(QuizEvaluationSettings(id=quiz.id, **es.model_dump()))
    db.commit()
    return {"id": str(quiz.id)}


@router.get("/tags")
def list_tags(
    q: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(_staff),
):
    stmt = select(QuizTag)
    if q and q.strip():
        stmt = stmt.where(QuizTag.name.ilike(f"%{q.strip()}%"))
    rows = db.scalars(stmt.order_by(QuizTag.name).limit(limit)).all()
    return {"items": [{"id": str(t.id), "name": t.name} for t in rows]}


@router.get("/{quiz_id}")
def get_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    return _quiz_detail(db, get_managed_quiz(db, user, quiz_id))


@router.patch("/{quiz_id}")
def update_quiz(
    quiz_id: str,
    body: QuizUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    fields = body.model_dump(exclude_unset=True)

    start = fields.get("start_time") or quiz.start_time
    end = fields.get("end_time") or quiz.end_time
    _check_window(start, end)
    quiz.start_time = naive_utc(start)
    quiz.end_time = naive_utc(end)

    for key in ("name", "description", "instructions", "duration_minutes", *_FLAGS):
        if key in fields and fields[key] is not None:
            setattr(quiz, key, fields[key].strip() if key == "name" else fields[key])
    if "password" in fields:
        quiz.password = fields["password"] or None
    db.add(quiz)

    if body.course_ids is not None:
        _replace_courses(db, user, quiz, body.course_ids)
    if body.student_ids is not None:
        _replace_students(db, quiz, body.student_ids)
    if body.lab_ids is not None:
        _replace_labs(db, quiz, body.lab_ids)
    if body.batch_ids is not None:
        _replace_batches(db, quiz, body.batch_ids)
    if body.tags is not None:
        _replace_tags(db, quiz, body.tags)

    db.commit()
    return _quiz_detail(db, quiz)


@router.delete("/{quiz_id}")
def remove_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    delete_quiz(db, quiz)
    db.commit()
    return {"ok": True}


@router.post("/{quiz_id}/publish")
def publish_quiz(
    quiz_id: str,
    body: PublishRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    if body.publish:
        has_questions = db.scalar(select(QuizQuestion.id).where(QuizQuestion.quiz_id == quiz.id).limit(1))
        if has_questions is None:
            raise HTTPException(status_code=400, detail="quiz has no questions")
    quiz.publish_quiz = bool(body.publish)
    db.add(quiz)
    db.commit()
    return {"ok": True, "publish_quiz": quiz.publish_quiz}


@router.post("/{quiz_id}/publish-result")
def publish_result(
    quiz_id: str,
    body: PublishRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    quiz.publish_result = bool(body.publish)
    db.add(quiz)
    db.commit()
    return {"ok": True, "publish_result": quiz.publish_result}


@router.get("/{quiz_id}/evaluation-settings")
def get_evaluation_settings(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    return _settings_public(db.get(QuizEvaluationSettings, quiz.id))


@router.put("/{quiz_id}/evaluation-settings")
def update_evaluation_settings(
    quiz_id: str,
    body: EvaluationSettingsPayload,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    _check_settings(body)
    es = db.get(QuizEvaluationSettings, quiz.id)
    if es is None:
        es = QuizEvaluationSettings(id=quiz.id)
    for key, value in body.model_dump().items():
        setattr(es, key, value)
    db.add(es)
    db.commit()
    return _settings_public(es)


# Sections


def _get_section(db: Session, quiz: Quiz, section_id: str) -> QuizSection:
    section = db.get(QuizSection, parse_uuid(section_id, field="section id"))
    if section is None or section.quiz_id != quiz.id:
        raise HTTPException(status_code=404, detail="section not found")
    return section


def _optional_section(db: Session, quiz: Quiz, section_id: str | None) -> uuid.UUID | None:
    if not section_id:
        return None
    return _get_section(db, quiz, section_id).id


@router.get("/{quiz_id}/sections")
def list_sections(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    sections = db.scalars(
        select(QuizSection).where(QuizSection.quiz_id == quiz.id).order_by(QuizSection.order_index)
    ).all()
    counts = dict(
        db.execute(
            select(QuizQuestion.section_id, func.count(QuizQuestion.id))
            .where(QuizQuestion.quiz_id == quiz.id)
            .group_by(QuizQuestion.section_id)
        ).all()
    )
    return {
        "items": [
            {"id": str(s.id), "name": s.name, "order_index": s.order_index, "question_count": int(counts.get(s.id, 0))}
            for s in sections
        ]
    }


@router.post("/{quiz_id}/sections")
def create_section(
    quiz_id: str,
    body: SectionCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    current = db.scalar(select(func.max(QuizSection.order_index)).where(QuizSection.quiz_id == quiz.id))
    section = QuizSection(quiz_id=quiz.id, name=body.name.strip(), order_index=0 if current is None else int(current) + 1)
    db.add(section)
    db.commit()
    return {"id": str(section.id), "order_index": section.order_index}


@router.put("/{quiz_id}/sections/reorder")
def reorder_sections(
    quiz_id: str,
    body: ReorderRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    sections = {s.id: s for s in db.scalars(select(QuizSection).where(QuizSection.quiz_id == quiz.id)).all()}
    updates = [(parse_uuid(item.id, field="section id"), item.order_index) for item in body.items]
    if any(sid not in sections for sid, _ in updates):
        raise HTTPException(status_code=400, detail="section does not belong to this quiz")
    for sid, order in updates:
        sections[sid].order_index = order
    db.commit()
    return {"ok": True}


@router.patch("/{quiz_id}/sections/{section_id}")
def rename_section(
    quiz_id: str,
    section_id: str,
    body: SectionCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    section = _get_section(db, quiz, section_id)
    section.name = body.name.strip()
    db.add(section)
    db.commit()
    return {"ok": True}


@router.delete("/{quiz_id}/sections/{section_id}")
def delete_section(
    quiz_id: str,
    section_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    section = _get_section(db, quiz, section_id)
    db.execute(update(QuizQuestion).where(QuizQuestion.section_id == section.id).values(section_id=None))
    db.delete(section)
    db.commit()
    return {"ok": True}


# Questions


def _quiz_question_payload(link: QuizQuestion, q: Question) -> dict:
    out = staff_view(q)
    out["quiz_question_id"] = str(link.id)
    out["section_id"] = str(link.section_id) if link.section_id else None
    out["bank_question_id"] = str(link.bank_question_id) if link.bank_question_id else None
    out["order_index"] = int(link.order_index or 0)
    return out


def _get_link(db: Session, quiz: Quiz, question_id: str) -> QuizQuestion:
    qid = parse_uuid(question_id, field="question id")
    link = db.scalar(select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id, QuizQuestion.question_id == qid))
    if link is None:
        raise HTTPException(status_code=404, detail="question not found in quiz")
    return link


def _validate_or_400(**kwargs) -> None:
    try:
        validate_question(**kwargs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/{quiz_id}/questions")
def list_quiz_questions(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    rows = load_quiz_questions(db, quiz.id)
    return {
        "items": [_quiz_question_payload(r.link, r.question) for r in rows],
        "total_marks": round(sum(float(r.question.marks) for r in rows), 4),
    }


@router.post("/{quiz_id}/questions")
def create_quiz_question(
    quiz_id: str,
    body: QuizQuestionCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    section_id = _optional_section(db, quiz, body.section_id)
    _validate_or_400(
        qtype=body.type,
        question=body.question,
        marks=body.marks,
        negative_marks=body.negative_marks,
        question_data=body.question_data,
        solution=body.solution,
    )

    q = Question(
        type=body.type,
        question=body.question,
        marks=float(body.marks),
        negative_marks=float(body.negative_marks),
        difficulty=body.difficulty,
        course_outcome=body.course_outcome,
        bloom_level=body.bloom_level,
        question_data=wrap(body.question_data),
        solution=wrap(body.solution),
        explanation=body.explanation,
        created_by_id=user.id,
    )
    db.add(q)
    db.flush()
    link = QuizQuestion(
        quiz_id=quiz.id,
        question_id=q.id,
        section_id=section_id,
        order_index=next_order_index(db, quiz.id, section_id),
    )
    db.add(link)
    db.commit()
    return _quiz_question_payload(link, q)


@router.post("/{quiz_id}/questions/from-bank", response_model=AddFromBankResponse)
def add_questions_from_bank(
    quiz_id: str,
    body: AddFromBankRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    section_id = _optional_section(db, quiz, body.section_id)

    ids = parse_uuids(body.bank_question_ids, field="bank question id")
    links = db.scalars(select(BankQuestion).where(BankQuestion.id.in_(ids))).all()
    if len(links) != len(ids):
        raise HTTPException(status_code=404, detail="bank question not found")

    checked: set[uuid.UUID] = set()
    for bq in links:
        if bq.bank_id in checked:
            continue
        bank = db.get(Bank, bq.bank_id)
        require_access(db, user, bank, BankAccessLevel.READ)
        checked.add(bq.bank_id)

    present = set(
        db.scalars(
            select(QuizQuestion.bank_question_id).where(
                QuizQuestion.quiz_id == quiz.id, QuizQuestion.bank_question_id.in_(ids)
            )
        ).all()
    )
    by_id = {bq.id: bq for bq in links}
    fresh = [by_id[i] for i in ids if i not in present]
    if not fresh:
        raise HTTPException(status_code=400, detail="all selected questions are already in the quiz")

    order = next_order_index(db, quiz.id, section_id)
    for bq in fresh:
        db.add(
            QuizQuestion(
                quiz_id=quiz.id,
                question_id=bq.question_id,
                section_id=section_id,
                bank_question_id=bq.id,
                order_index=order,
            )
        )
        order += 1
    db.commit()
    return {"ok": True, "added": len(fresh), "skipped": len(ids) - len(fresh)}


@router.put("/{quiz_id}/questions/reorder")
def reorder_questions(
    quiz_id: str,
    body: ReorderRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    links = {l.question_id: l for l in db.scalars(select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id)).all()}
    updates = [(parse_uuid(item.id, field="question id"), item.order_index) for item in body.items]
    if any(qid not in links for qid, _ in updates):
        raise HTTPException(status_code=400, detail="question does not belong to this quiz")
    for qid, order in updates:
        links[qid].order_index = order
    db.commit()
    return {"ok": True}


@router.patch("/{quiz_id}/questions/{question_id}")
def update_quiz_question(
    quiz_id: str,
    question_id: str,
    body: QuestionUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    link = _get_link(db, quiz, question_id)
    q = db.get(Question, link.question_id)

    fields = body.model_dump(exclude_unset=True)
    merged = {
        "question": fields.get("question") or q.question,
        "marks": fields["marks"] if fields.get("marks") is not None else q.marks,
        "negative_marks": fields["negative_marks"] if fields.get("negative_marks") is not None else q.negative_marks,
        "question_data": fields["question_data"] if "question_data" in fields else q.question_data,
        "solution": fields["solution"] if "solution" in fields else q.solution,
    }
    _validate_or_400(qtype=q.type, **merged)

    q.question = merged["question"]
    q.marks = float(merged["marks"])
    q.negative_marks = float(merged["negative_marks"] or 0)
    q.question_data = wrap(merged["question_data"])
    q.solution = wrap(merged["solution"])
    for key in ("difficulty", "course_outcome", "bloom_level", "explanation"):
        if key in fields:
            setattr(q, key, fields[key])
    db.add(q)
    db.commit()
    return _quiz_question_payload(link, q)


@router.delete("/{quiz_id}/questions/{question_id}")
def remove_quiz_question(
    quiz_id: str,
    question_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    link = _get_link(db, quiz, question_id)
    qid = link.question_id
    db.delete(link)
    db.flush()
    drop_orphan_question(db, qid)
    db.commit()
    return {"ok": True}


@router.post("/{quiz_id}/questions/{question_id}/move")
def move_quiz_question(
    quiz_id: str,
    question_id: str,
    body: MoveQuestionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    quiz = get_managed_quiz(db, user, quiz_id)
    link = _get_link(db, quiz, question_id)
    target = _optional_section(db, quiz, body.section_id)

    group = select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id, QuizQuestion.id != link.id)
    if target is None:
        group = group.where(QuizQuestion.section_id.is_(None))
    else:
        group = group.where(QuizQuestion.section_id == target)
    for other in db.scalars(group.where(QuizQuestion.order_index >= body.order_index)).all():
        other.order_index = int(other.order_index or 0) + 1

    link.section_id = target
    link.order_index = body.order_index
    db.commit()
    return _quiz_question_payload(link, db.get(Question, link.question_id))

