from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from evalify.core.cache import cache_delete, quiz_results_key
from evalify.core.timeutil import naive_utc, utcnow
from evalify.models.academics import BatchStudent, CourseStudent
from evalify.models.quiz import CourseQuiz, Quiz, QuizBatch, StudentQuiz
from evalify.models.response import QuizResponse, SubmissionStatus


class QuizStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    UPCOMING = "UPCOMING"
    MISSED = "MISSED"
    COMPLETED = "COMPLETED"


def is_submitted(response: QuizResponse | None) -> bool:
    return response is not None and response.submission_status in (
        SubmissionStatus.SUBMITTED,
        SubmissionStatus.AUTO_SUBMITTED,
    )


def compute_status(quiz: Quiz, response: QuizResponse | None, now: datetime | None = None) -> QuizStatus:
    now = now or utcnow()
    if is_submitted(response):
        return QuizStatus.COMPLETED
    if now < naive_utc(quiz.start_time):
        return QuizStatus.UPCOMING
    if now > naive_utc(quiz.end_time):
        return QuizStatus.MISSED
    return QuizStatus.ACTIVE


def remaining_seconds(response: QuizResponse, now: datetime | None = None) -> int:
    now = now or utcnow()
    if is_submitted(response):
        return 0
    return max(0, int((naive_utc(response.end_time) - now).total_seconds()))


def visible_quiz_ids(db: Session, student_id: uuid.UUID) -> set[uuid.UUID]:
    """Quizzes assigned to the student directly, through a batch, or through a course enrolment."""
    direct = db.scalars(select(StudentQuiz.quiz_id).where(StudentQuiz.student_id == student_id)).all()
    via_batch = db.scalars(
        select(QuizBatch.quiz_id)
        .join(BatchStudent, BatchStudent.batch_id == QuizBatch.batch_id)
        .where(BatchStudent.student_id == student_id)
    ).all()
    via_course = db.scalars(
        select(CourseQuiz.quiz_id)
        .join(CourseStudent, CourseStudent.course_id == CourseQuiz.course_id)
        .where(CourseStudent.student_id == student_id)
    ).all()
    return set(direct) | set(via_batch) | set(via_course)


def auto_submit_overdue(db: Session, now: datetime | None = None) -> int:
    """Close every unsubmitted response past its deadline on quizzes with auto-submit enabled."""
    now = now or utcnow()
    auto_quiz_ids = select(Quiz.id).where(Quiz.auto_submit.is_(True))
    overdue = (
        QuizResponse.submission_status == SubmissionStatus.NOT_SUBMITTED,
        QuizResponse.end_time < now,
        QuizResponse.quiz_id.in_(auto_quiz_ids),
    )
    touched = set(db.scalars(select(QuizResponse.quiz_id).where(*overdue).distinct()).all())
    result = db.execute(
        update(QuizResponse)
        .where(*overdue)
        .values(submission_status=SubmissionStatus.AUTO_SUBMITTED, submission_time=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    for quiz_id in touched:
        cache_delete(quiz_results_key(quiz_id))
    return int(result.rowcount or 0)
