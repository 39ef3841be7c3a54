from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from evalify.models.academics import Course, CourseInstructor, SemesterManager
from evalify.models.question import BankQuestion, Question, TopicQuestion
from evalify.models.quiz import (
    CourseQuiz,
    LabQuiz,
    Quiz,
    QuizBatch,
    QuizEvaluationSettings,
    QuizQuestion,
    QuizQuizTag,
    QuizSection,
    StudentQuiz,
)
from evalify.models.response import QuizReport, QuizResponse
from evalify.models.user import User, UserRole


@dataclass
class QuizQuestionRow:
    link: QuizQuestion
    question: Question
    section_order: int | None


def can_manage_course(db: Session, user: User, course_id: uuid.UUID) -> bool:
    """Instructors of the course and managers of its semester may build quizzes for it."""
    if user.role == UserRole.ADMIN:
        return True

    instructs = db.scalar(
        select(CourseInstructor.id).where(
            CourseInstructor.course_id == course_id,
            CourseInstructor.instructor_id == user.id,
        )
    )
    if instructs is not None:
        return True

    manages = db.scalar(
        select(SemesterManager.id)
        .join(Course, Course.semester_id == SemesterManager.semester_id)
        .where(Course.id == course_id, SemesterManager.user_id == user.id)
    )
    return manages is not None


def manageable_course_ids(db: Session, user: User) -> set[uuid.UUID]:
    instructed = db.scalars(select(CourseInstructor.course_id).where(CourseInstructor.instructor_id == user.id)).all()
    managed = db.scalars(
        select(Course.id)
        .join(SemesterManager, SemesterManager.semester_id == Course.semester_id)
        .where(SemesterManager.user_id == user.id)
    ).all()
    return set(instructed) | set(managed)


def can_manage_quiz(db: Session, user: User, quiz: Quiz) -> bool:
    if user.role == UserRole.ADMIN or quiz.created_by_id == user.id:
        return True
    course_ids = db.scalars(select(CourseQuiz.course_id).where(CourseQuiz.quiz_id == quiz.id)).all()
    return any(can_manage_course(db, user, cid) for cid in course_ids)


def accessible_quiz_filter(db: Session, user: User):
    """WHERE clause selecting quizzes the staff user may manage."""
    course_ids = manageable_course_ids(db, user)
    linked = select(CourseQuiz.quiz_id).where(CourseQuiz.course_id.in_(course_ids)) if course_ids else None
    if linked is None:
        return Quiz.created_by_id == user.id
    return or_(Quiz.created_by_id == user.id, Quiz.id.in_(linked))


def load_quiz_questions(db: Session, quiz_id: uuid.UUID) -> list[QuizQuestionRow]:
    """Quiz questions in exam order: sections by their order (unsectioned first), then question order."""
    rows = db.execute(
        select(QuizQuestion, Question, QuizSection.order_index)
        .join(Question, Question.id == QuizQuestion.question_id)
        .outerjoin(QuizSection, QuizSection.id == QuizQuestion.section_id)
        .where(QuizQuestion.quiz_id == quiz_id)
    ).all()

    items = [QuizQuestionRow(link=link, question=q, section_order=sec_order) for link, q, sec_order in rows]
    items.sort(
        key=lambda r: (
            -1 if r.section_order is None else int(r.section_order),
            str(r.link.section_id or ""),
            int(r.link.order_index or 0),
            str(r.link.id),
        )
    )
    return items


def next_order_index(db: Session, quiz_id: uuid.UUID, section_id: uuid.UUID | None) -> int:
    stmt = select(func.max(QuizQuestion.order_index)).where(QuizQuestion.quiz_id == quiz_id)
    if section_id is None:
        stmt = stmt.where(QuizQuestion.section_id.is_(None))
    else:
        stmt = stmt.where(QuizQuestion.section_id == section_id)
    current = db.scalar(stmt)
    return 0 if current is None else int(current) + 1


def drop_orphan_question(db: Session, question_id: uuid.UUID) -> None:
    """Delete a question row once neither a bank nor a quiz refers to it."""
    in_quiz = db.scalar(select(QuizQuestion.id).where(QuizQuestion.question_id == question_id).limit(1))
    in_bank = db.scalar(select(BankQuestion.id).where(BankQuestion.question_id == question_id).limit(1))
    if in_quiz is None and in_bank is None:
        db.execute(delete(TopicQuestion).where(TopicQuestion.question_id == question_id))
        db.execute(delete(Question).where(Question.id == question_id))


def delete_quiz(db: Session, quiz: Quiz) -> None:
    question_ids = set(db.scalars(select(QuizQuestion.question_id).where(QuizQuestion.quiz_id == quiz.id)).all())

    db.execute(delete(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id))
    db.execute(delete(QuizSection).where(QuizSection.quiz_id == quiz.id))
    for link in (CourseQuiz, StudentQuiz, LabQuiz, QuizBatch, QuizQuizTag, QuizResponse, QuizReport):
        db.execute(delete(link).where(link.quiz_id == quiz.id))
    db.execute(delete(QuizEvaluationSettings).where(QuizEvaluationSettings.id == quiz.id))
    db.delete(quiz)
    db.flush()

    for qid in question_ids:
        drop_orphan_question(db, qid)
