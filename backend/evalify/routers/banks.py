from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evalify.core.ids import parse_uuid, parse_uuids
from evalify.core.security import STAFF_ROLES, require_roles
from evalify.db.session import get_db
from evalify.models.bank import Bank, BankAccessLevel, BankUser, Topic
from evalify.models.question import BankQuestion, Difficulty, Question, QuestionType, TopicQuestion
from evalify.models.user import User, UserRole, UserStatus
from evalify.schemas.bank import (
    AccessLevelUpdateRequest,
    BankCreateRequest,
    BankPublic,
    BanksListResponse,
    BankUpdateRequest,
    QuestionCreateRequest,
    QuestionUpdateRequest,
    ShareRequest,
    TopicRequest,
)
from evalify.services.banks import bank_topic_ids, delete_bank, detach_bank_question, require_access
from evalify.services.question_data import staff_view, validate_question, wrap

router = APIRouter(prefix="/banks", tags=["banks"])

_staff = require_roles(*STAFF_ROLES)


def _get_bank(db: Session, bank_id: str) -> Bank:
    bank = db.get(Bank, parse_uuid(bank_id, field="bank id"))
    if bank is None:
        raise HTTPException(status_code=404, detail="bank not found")
    return bank


def _counts(db: Session, model, column, ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not ids:
        return {}
    rows = db.execute(select(column, func.count(model.id)).where(column.in_(ids)).group_by(column)).all()
    return {k: int(v) for k, v in rows}


# Banks


@router.get("", response_model=BanksListResponse)
def list_banks(
    search: str | None = None,
    semester: int | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    shared = select(BankUser.bank_id).where(BankUser.user_id == user.id)
    stmt = select(Bank).where(or_(Bank.created_by_id == user.id, Bank.id.in_(shared)))
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Bank.name.ilike(like), Bank.course_code.ilike(like)))
    if semester is not None:
        stmt = stmt.where(Bank.semester == semester)

    total = int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
    banks = db.scalars(stmt.order_by(Bank.created_at.desc()).offset(offset).limit(limit)).all()

    ids = [b.id for b in banks]
    levels = dict(
        db.execute(select(BankUser.bank_id, BankUser.access_level).where(BankUser.user_id == user.id, BankUser.bank_id.in_(ids))).all()
    ) if ids else {}
    shared_counts = _counts(db, BankUser, BankUser.bank_id, ids)
    question_counts = _counts(db, BankQuestion, BankQuestion.bank_id, ids)
    topic_counts = _counts(db, Topic, Topic.bank_id, ids)

    items = []
    for b in banks:
        level = BankAccessLevel.OWNER if b.created_by_id == user.id else levels.get(b.id, BankAccessLevel.READ)
        items.append(
            {
                "id": str(b.id),
                "name": b.name,
                "course_code": b.course_code,
                "semester": b.semester,
                "created_by_id": str(b.created_by_id),
                "access_level": level.value,
                "shared_count": shared_counts.get(b.id, 0),
                "question_count": question_counts.get(b.id, 0),
                "topic_count": topic_counts.get(b.id, 0),
                "created_at": b.created_at.isoformat() if b.created_at else None,
            }
        )
    return {"items": items, "total": total}


@router.post("")
def create_bank(
    body: BankCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = Bank(
        name=body.name.strip(),
        course_code=(body.course_code or "").strip().upper() or None,
        semester=body.semester,
        created_by_id=user.id,
    )
    db.add(bank)
    db.commit()
    return {"id": str(bank.id)}


# Declared ahead of /{bank_id} so "users" is not parsed as a bank id.
@router.get("/users/search")
def search_shareable_users(
    q: str = Query(default="", max_length=200),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    stmt = (
        select(User)
        .where(User.role.in_(STAFF_ROLES))
        .where(User.status == UserStatus.ACTIVE)
        .where(User.id != user.id)
    )
    if q.strip():
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like)))
    rows = db.scalars(stmt.order_by(User.name).limit(limit)).all()
    return {"items": [{"id": str(u.id), "name": u.name, "email": u.email, "role": u.role.value} for u in rows]}


@router.get("/{bank_id}", response_model=BankPublic)
def get_bank(
    bank_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    level = require_access(db, user, bank, BankAccessLevel.READ)
    return {
        "id": str(bank.id),
        "name": bank.name,
        "course_code": bank.course_code,
        "semester": bank.semester,
        "created_by_id": str(bank.created_by_id),
        "access_level": level.value,
        "shared_count": _counts(db, BankUser, BankUser.bank_id, [bank.id]).get(bank.id, 0),
        "question_count": _counts(db, BankQuestion, BankQuestion.bank_id, [bank.id]).get(bank.id, 0),
        "topic_count": _counts(db, Topic, Topic.bank_id, [bank.id]).get(bank.id, 0),
        "created_at": bank.created_at.isoformat() if bank.created_at else None,
    }


@router.patch("/{bank_id}")
def update_bank(
    bank_id: str,
    body: BankUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    fields = body.model_dump(exclude_unset=True)
    if fields.get("name"):
        bank.name = fields["name"].strip()
    if "course_code" in fields:
        bank.course_code = (fields["course_code"] or "").strip().upper() or None
    if "semester" in fields:
        bank.semester = fields["semester"]
    db.add(bank)
    db.commit()
    return {"ok": True}


@router.delete("/{bank_id}")
def remove_bank(
    bank_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.OWNER)
    delete_bank(db, bank)
    db.commit()
    return {"ok": True}


# Sharing


@router.get("/{bank_id}/shared")
def list_shared_users(
    bank_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.OWNER)
    rows = db.execute(
        select(User, BankUser.access_level)
        .join(BankUser, BankUser.user_id == User.id)
        .where(BankUser.bank_id == bank.id)
        .order_by(User.name)
    ).all()
    return {
        "items": [
            {"id": str(u.id), "name": u.name, "email": u.email, "access_level": level.value} for u, level in rows
        ]
    }


@router.post("/{bank_id}/shared")
def share_bank(
    bank_id: str,
    body: ShareRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.OWNER)
    if body.access_level == BankAccessLevel.OWNER:
        raise HTTPException(status_code=400, detail="ownership cannot be shared")

    target_id = parse_uuid(body.user_id, field="user id")
    target = db.get(User, target_id)
    if target is None:
        raise HTTPException(status_code=404, detail="user not found")
    if target.role not in STAFF_ROLES and target.role != UserRole.ADMIN:
        raise HTTPException(status_code=400, detail="banks can only be shared with staff")

    if target.id == bank.created_by_id:
        return {"ok": True, "shared": False}
    existing = db.scalar(select(BankUser.id).where(BankUser.bank_id == bank.id, BankUser.user_id == target.id))
    if existing is not None:
        return {"ok": True, "shared": False}

    db.add(BankUser(bank_id=bank.id, user_id=target.id, access_level=body.access_level))
    try:
        db.commit()
    except IntegrityError:
        # Concurrent share of the same pair.
        db.rollback()
        return {"ok": True, "shared": False}
    return {"ok": True, "shared": True}


@router.patch("/{bank_id}/shared/{user_id}")
def update_share(
    bank_id: str,
    user_id: str,
    body: AccessLevelUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.OWNER)
    if body.access_level == BankAccessLevel.OWNER:
        raise HTTPException(status_code=400, detail="ownership cannot be shared")
    link = db.scalar(
        select(BankUser).where(BankUser.bank_id == bank.id, BankUser.user_id == parse_uuid(user_id, field="user id"))
    )
    if link is None:
        raise HTTPException(status_code=404, detail="bank is not shared with this user")
    link.access_level = body.access_level
    db.add(link)
    db.commit()
    return {"ok": True}


@router.delete("/{bank_id}/shared/{user_id}")
def unshare_bank(
    bank_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.OWNER)
    res = db.execute(
        delete(BankUser).where(BankUser.bank_id == bank.id, BankUser.user_id == parse_uuid(user_id, field="user id"))
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="bank is not shared with this user")
    db.commit()
    return {"ok": True}


# Topics


@router.get("/{bank_id}/topics")
def list_topics(
    bank_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.READ)
    topics = db.scalars(select(Topic).where(Topic.bank_id == bank.id).order_by(Topic.name)).all()
    counts = _counts(db, TopicQuestion, TopicQuestion.topic_id, [t.id for t in topics])
    return {"items": [{"id": str(t.id), "name": t.name, "question_count": counts.get(t.id, 0)} for t in topics]}


@router.post("/{bank_id}/topics")
def create_topic(
    bank_id: str,
    body: TopicRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    topic = Topic(name=body.name.strip(), bank_id=bank.id)
    db.add(topic)
    db.commit()
    return {"id": str(topic.id)}


def _get_topic(db: Session, bank: Bank, topic_id: str) -> Topic:
    topic = db.get(Topic, parse_uuid(topic_id, field="topic id"))
    if topic is None or topic.bank_id != bank.id:
        raise HTTPException(status_code=404, detail="topic not found")
    return topic


@router.patch("/{bank_id}/topics/{topic_id}")
def rename_topic(
    bank_id: str,
    topic_id: str,
    body: TopicRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    topic = _get_topic(db, bank, topic_id)
    topic.name = body.name.strip()
    db.add(topic)
    db.commit()
    return {"ok": True}


@router.delete("/{bank_id}/topics/{topic_id}")
def delete_topic(
    bank_id: str,
    topic_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    topic = _get_topic(db, bank, topic_id)
    db.execute(delete(TopicQuestion).where(TopicQuestion.topic_id == topic.id))
    db.delete(topic)
    db.commit()
    return {"ok": True}


# Questions


def _question_topics(db: Session, bank_id: uuid.UUID, question_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[str]]:
    if not question_ids:
        return {}
    rows = db.execute(
        select(TopicQuestion.question_id, TopicQuestion.topic_id)
        .join(Topic, Topic.id == TopicQuestion.topic_id)
        .where(Topic.bank_id == bank_id, TopicQuestion.question_id.in_(question_ids))
    ).all()
    out: dict[uuid.UUID, list[str]] = {}
    for qid, tid in rows:
        out.setdefault(qid, []).append(str(tid))
    return out


def _bank_question_payload(link: BankQuestion, q: Question, topic_ids: list[str]) -> dict:
    out = staff_view(q)
    out["bank_question_id"] = str(link.id)
    out["order_index"] = int(link.order_index or 0)
    out["topic_ids"] = topic_ids
    return out


def _validate_or_400(**kwargs) -> None:
    try:
        validate_question(**kwargs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _get_bank_question(db: Session, bank: Bank, question_id: str) -> tuple[BankQuestion, Question]:
    qid = parse_uuid(question_id, field="question id")
    row = db.execute(
        select(BankQuestion, Question)
        .join(Question, Question.id == BankQuestion.question_id)
        .where(BankQuestion.bank_id == bank.id, BankQuestion.question_id == qid)
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="question not found")
    return row[0], row[1]


@router.get("/{bank_id}/questions")
def list_questions(
    bank_id: str,
    type: QuestionType | None = None,
    difficulty: Difficulty | None = None,
    topic_id: str | None = None,
    search: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.READ)

    stmt = (
        select(BankQuestion, Question)
        .join(Question, Question.id == BankQuestion.question_id)
        .where(BankQuestion.bank_id == bank.id)
    )
    if type is not None:
        stmt = stmt.where(Question.type == type)
    if difficulty is not None:
        stmt = stmt.where(Question.difficulty == difficulty)
    if topic_id:
        tid = parse_uuid(topic_id, field="topic id")
        stmt = stmt.where(Question.id.in_(select(TopicQuestion.question_id).where(TopicQuestion.topic_id == tid)))
    if search and search.strip():
        stmt = stmt.where(Question.question.ilike(f"%{search.strip()}%"))

    total = int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
    rows = db.execute(stmt.order_by(BankQuestion.order_index, Question.created_at).offset(offset).limit(limit)).all()
    topics = _question_topics(db, bank.id, [q.id for _, q in rows])
    return {
        "items": [_bank_question_payload(link, q, topics.get(q.id, [])) for link, q in rows],
        "total": total,
    }


@router.post("/{bank_id}/questions")
def create_question(
    bank_id: str,
    body: QuestionCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    _validate_or_400(
        qtype=body.type,
        question=body.question,
        marks=body.marks,
        negative_marks=body.negative_marks,
        question_data=body.question_data,
        solution=body.solution,
    )
    topic_ids = bank_topic_ids(db, bank.id, parse_uuids(body.topic_ids, field="topic id"))

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

    current = db.scalar(select(func.max(BankQuestion.order_index)).where(BankQuestion.bank_id == bank.id))
    link = BankQuestion(bank_id=bank.id, question_id=q.id, order_index=0 if current is None else int(current) + 1)
    db.add(link)
    for tid in topic_ids:
        db.add(TopicQuestion(topic_id=tid, question_id=q.id))
    db.commit()
    return {"id": str(q.id), "bank_question_id": str(link.id)}


@router.get("/{bank_id}/questions/{question_id}")
def get_question(
    bank_id: str,
    question_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.READ)
    link, q = _get_bank_question(db, bank, question_id)
    return _bank_question_payload(link, q, _question_topics(db, bank.id, [q.id]).get(q.id, []))


@router.patch("/{bank_id}/questions/{question_id}")
def update_question(
    bank_id: str,
    question_id: str,
    body: QuestionUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    link, q = _get_bank_question(db, bank, question_id)

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

    if body.topic_ids is not None:
        topic_ids = bank_topic_ids(db, bank.id, parse_uuids(body.topic_ids, field="topic id"))
        bank_topics = select(Topic.id).where(Topic.bank_id == bank.id)
        db.execute(
            delete(TopicQuestion).where(TopicQuestion.question_id == q.id).where(TopicQuestion.topic_id.in_(bank_topics))
        )
        for tid in topic_ids:
            db.add(TopicQuestion(topic_id=tid, question_id=q.id))

    db.commit()
    return _bank_question_payload(link, q, _question_topics(db, bank.id, [q.id]).get(q.id, []))


@router.delete("/{bank_id}/questions/{question_id}")
def delete_question(
    bank_id: str,
    question_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(_staff),
):
    bank = _get_bank(db, bank_id)
    require_access(db, user, bank, BankAccessLevel.WRITE)
    link, _ = _get_bank_question(db, bank, question_id)
    detach_bank_question(db, link)
    db.commit()
    return {"ok": True}
