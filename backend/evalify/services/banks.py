from __future__ import annotations

import uuid

from fastapi import HTTPException
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from evalify.models.bank import Bank, BankAccessLevel, BankUser, Topic
from evalify.models.question import BankQuestion, TopicQuestion
from evalify.models.quiz import QuizQuestion
from evalify.models.user import User, UserRole
from evalify.services.quizzes import drop_orphan_question


_RANK = {BankAccessLevel.READ: 1, BankAccessLevel.WRITE: 2, BankAccessLevel.OWNER: 3}


def access_level(db: Session, user: User, bank: Bank) -> BankAccessLevel | None:
    if bank.created_by_id == user.id or user.role == UserRole.ADMIN:
        return BankAccessLevel.OWNER
    return db.scalar(select(BankUser.access_level).where(BankUser.bank_id == bank.id, BankUser.user_id == user.id))


def require_access(db: Session, user: User, bank: Bank, needed: BankAccessLevel) -> BankAccessLevel:
    """Return the caller's level on the bank, or raise 404/403.

    Banks the caller cannot see at all are reported as missing.
    """
    level = access_level(db, user, bank)
    if level is None:
        raise HTTPException(status_code=404, detail="bank not found")
    if _RANK[level] < _RANK[needed]:
        raise HTTPException(status_code=403, detail="insufficient bank access")
    return level


def detach_bank_question(db: Session, link: BankQuestion) -> None:
    """Drop a question from a bank; the question row survives while a quiz or another bank uses it."""
    topic_ids = select(Topic.id).where(Topic.bank_id == link.bank_id)
    db.execute(
        delete(TopicQuestion)
        .where(TopicQuestion.question_id == link.question_id)
        .where(TopicQuestion.topic_id.in_(topic_ids))
    )
    db.execute(update(QuizQuestion).where(QuizQuestion.bank_question_id == link.id).values(bank_question_id=None))

    question_id = link.question_id
    db.delete(link)
    db.flush()

    drop_orphan_question(db, question_id)


def delete_bank(db: Session, bank: Bank) -> None:
    links = db.scalars(select(BankQuestion).where(BankQuestion.bank_id == bank.id)).all()
    for link in links:
        detach_bank_question(db, link)
    db.execute(delete(Topic).where(Topic.bank_id == bank.id))
    db.execute(delete(BankUser).where(BankUser.bank_id == bank.id))
    db.delete(bank)


def bank_topic_ids(db: Session, bank_id: uuid.UUID, raw_ids: list[uuid.UUID]) -> list[uuid.UUID]:
    if not raw_ids:
        return []
    found = set(db.scalars(select(Topic.id).where(Topic.bank_id == bank_id, Topic.id.in_(raw_ids))).all())
    if len(found) != len(set(raw_ids)):
        raise HTTPException(status_code=400, detail="topic does not belong to this bank")
    return list(raw_ids)
