import sys
import time
import uuid
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from evalify.db.base import Base
from evalify.db import session as session_module

# Import models so that they are registered in Base.metadata before create_all.
import evalify.models  # noqa: F401
from evalify.core.security import create_access_token, hash_password
from evalify.core.timeutil import utcnow
from evalify.models.academics import Course, CourseInstructor, CourseType, Department, Semester
from evalify.models.question import Question, QuestionType
from evalify.models.quiz import CourseQuiz, Quiz, QuizEvaluationSettings, QuizQuestion, StudentQuiz
from evalify.models.user import User, UserRole, UserStatus
from evalify.services.question_data import wrap


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        return 1 if self._data.pop(key, None) is not None else 0

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def clear(self):
        self._data.clear()


# Configure test DB (SQLite in-memory) at import time so every module resolving
# evalify.db.session.SessionLocal gets the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting, results cache, auto-submit lock).
mem_redis = _MemoryRedis()

import evalify.core.redis_client as redis_client_module
import evalify.core.rate_limit as rate_limit_module
import evalify.core.cache as cache_module
import evalify.services.auto_submit_jobs as auto_submit_jobs_module
import evalify.routers.health as health_router_module

for _module in (redis_client_module, rate_limit_module, cache_module, auto_submit_jobs_module, health_router_module):
    _module.get_redis = lambda: mem_redis

from evalify.main import create_app


@pytest.fixture(autouse=True)
def _clear_redis():
    mem_redis.clear()
    yield
    mem_redis.clear()


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def redis_store():
    return mem_redis


@pytest.fixture()
def make_user(db):
    def _make(role: UserRole = UserRole.STUDENT, *, password: str = "testpass123", status: UserStatus = UserStatus.ACTIVE, name: str | None = None) -> User:
        tag = uuid.uuid4().hex[:8]
        user = User(
            name=name or f"{role.value.lower()}_{tag}",
            email=f"{role.value.lower()}_{tag}@evalify.edu",
            profile_id=f"P{tag.upper()}",
            role=role,
            status=status,
            password_hash=hash_password(password),
            must_change_password=False,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def headers_for():
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user_id=str(user.id), role=user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def make_course(db):
    def _make(*, instructor: User | None = None) -> Course:
        tag = uuid.uuid4().hex[:8]
        dept = Department(name=f"Dept {tag}")
        db.add(dept)
        db.flush()
        sem = Semester(name="S1", year=2026, department_id=dept.id)
        db.add(sem)
        db.flush()
        course = Course(name=f"Course {tag}", code=f"C{tag.upper()}", type=CourseType.CORE, semester_id=sem.id)
        db.add(course)
        db.flush()
        if instructor is not None:
            db.add(CourseInstructor(course_id=course.id, instructor_id=instructor.id))
        db.commit()
        db.refresh(course)
        return course

    return _make


def mcq_payload(marks: float = 2.0) -> dict:
    return {
        "type": "MCQ",
        "question": "What is 2 + 2?",
        "marks": marks,
        "question_data": {
            "options": [
                {"id": "a", "optionText": "3", "orderIndex": 0},
                {"id": "b", "optionText": "4", "orderIndex": 1},
                {"id": "c", "optionText": "5", "orderIndex": 2},
            ]
        },
        "solution": {"correctOptions": [{"id": "b", "isCorrect": True}]},
    }


@pytest.fixture()
def mcq():
    return mcq_payload


@pytest.fixture()
def make_quiz(db):
    """Published quiz with one MCQ and one TRUE_FALSE question, assigned to the given students."""

    def _make(
        *,
        creator: User,
        students: list[User] = (),
        course: Course | None = None,
        starts_in: timedelta = timedelta(minutes=-5),
        ends_in: timedelta = timedelta(hours=1),
        duration_minutes: int = 30,
        **flags,
    ) -> Quiz:
        now = utcnow()
        quiz = Quiz(
            name=f"Quiz {uuid.uuid4().hex[:6]}",
            start_time=now + starts_in,
            end_time=now + ends_in,
            duration_minutes=duration_minutes,
            created_by_id=creator.id,
            publish_quiz=flags.pop("publish_quiz", True),
            **flags,
        )
        db.add(quiz)
        db.flush()
        db.add(QuizEvaluationSettings(id=quiz.id))

        q1 = Question(
            type=QuestionType.MCQ,
            question="Capital of France?",
            marks=2.0,
            negative_marks=0.0,
            question_data=wrap(
                {
                    "options": [
                        {"id": "a", "optionText": "Paris", "orderIndex": 0},
                        {"id": "b", "optionText": "Rome", "orderIndex": 1},
                    ]
                }
            ),
            solution=wrap({"correctOptions": [{"id": "a", "isCorrect": True}]}),
            created_by_id=creator.id,
        )
        q2 = Question(
            type=QuestionType.TRUE_FALSE,
            question="The earth is flat.",
            marks=1.0,
            negative_marks=0.0,
            question_data=wrap({}),
            solution=wrap({"trueFalseAnswer": False}),
            created_by_id=creator.id,
        )
        db.add_all([q1, q2])
        db.flush()
        db.add_all(
            [
                QuizQuestion(quiz_id=quiz.id, question_id=q1.id, order_index=0),
                QuizQuestion(quiz_id=quiz.id, question_id=q2.id, order_index=1),
            ]
        )
        if course is not None:
            db.add(CourseQuiz(course_id=course.id, quiz_id=quiz.id))
        for s in students:
            db.add(StudentQuiz(student_id=s.id, quiz_id=quiz.id))
        db.commit()
        db.refresh(quiz)
        return quiz

    return _make
