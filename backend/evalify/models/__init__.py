from evalify.models.user import User, UserRole, UserStatus
from evalify.models.academics import (
    Batch,
    BatchManager,
    BatchStudent,
    Course,
    CourseBatch,
    CourseInstructor,
    CourseStudent,
    CourseType,
    Department,
    Lab,
    Semester,
    SemesterManager,
)
from evalify.models.bank import Bank, BankAccessLevel, BankUser, Topic
from evalify.models.question import BankQuestion, Question, QuestionType, TopicQuestion
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
from evalify.models.response import EvaluationStatus, QuizReport, QuizResponse, SubmissionStatus
from evalify.models.security_audit import SecurityAuditEvent

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Department",
    "Semester",
    "SemesterManager",
    "Batch",
    "BatchStudent",
    "BatchManager",
    "Course",
    "CourseType",
    "CourseInstructor",
    "CourseStudent",
    "CourseBatch",
    "Lab",
    "Bank",
    "BankAccessLevel",
    "BankUser",
    "Topic",
    "Question",
    "QuestionType",
    "BankQuestion",
    "TopicQuestion",
    "Quiz",
    "QuizSection",
    "QuizQuestion",
    "QuizTag",
    "QuizQuizTag",
    "CourseQuiz",
    "StudentQuiz",
    "LabQuiz",
    "QuizBatch",
    "QuizEvaluationSettings",
    "QuizResponse",
    "QuizReport",
    "SubmissionStatus",
    "EvaluationStatus",
    "SecurityAuditEvent",
]
