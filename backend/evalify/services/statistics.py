from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from evalify.models.question import Question
from evalify.models.response import EvaluationStatus, QuizReport, QuizResponse, SubmissionStatus
from evalify.services.quizzes import load_quiz_questions


_TAG_RE = re.compile(r"<[^>]+>")


def _plain(text: str | None, limit: int = 200) -> str:
    s = _TAG_RE.sub(" ", str(text or ""))
    s = " ".join(s.split())
    return s[:limit]


def mark_bucket(score: float, total_marks: float) -> str:
    pct = (float(score) / float(total_marks) * 100.0) if total_marks > 0 else 0.0
    if pct >= 80:
        return "excellent"
    if pct >= 60:
        return "good"
    if pct >= 40:
        return "average"
    return "poor"


def compute_report(questions: list[Question], responses: list[QuizResponse]) -> dict[str, Any]:
    """Aggregate scores over evaluated responses.

    A question counts as correct for a student only when they earned its full marks.
    """
    total_marks = sum(float(q.marks) for q in questions)
    scores = [float(r.score or 0.0) for r in responses]
    n = len(responses)

    question_stats = []
    for q in questions:
        qid = str(q.id)
        full = float(q.marks)
        correct = 0
        incorrect = 0
        obtained = 0.0
        for r in responses:
            got = float(((r.evaluation_results or {}).get(qid) or {}).get("score") or 0.0)
            if abs(got - full) < 1e-9:
                correct += 1
            else:
                incorrect += 1
            obtained += got
        question_stats.append(
            {
                "question_id": qid,
                "question_text": _plain(q.question),
                "type": q.type.value,
                "correct": correct,
                "incorrect": incorrect,
                "total_attempts": correct + incorrect,
                "avg_marks": round(obtained / n, 4) if n else 0.0,
                "max_marks": full,
            }
        )

    distribution = {"excellent": 0, "good": 0, "average": 0, "poor": 0}
    for s in scores:
        distribution[mark_bucket(s, total_marks)] += 1

    return {
        "avg_score": round(sum(scores) / n, 4) if n else 0.0,
        "max_score": max(scores) if scores else 0.0,
        "min_score": min(scores) if scores else 0.0,
        "total_score": round(sum(scores), 4),
        "total_students": n,
        "total_marks": total_marks,
        "question_stats": question_stats,
        "mark_distribution": distribution,
    }


def refresh_report(db: Session, quiz_id: uuid.UUID) -> QuizReport:
    questions = [row.question for row in load_quiz_questions(db, quiz_id)]
    responses = db.scalars(
        select(QuizResponse).where(
            QuizResponse.quiz_id == quiz_id,
            QuizResponse.evaluation_status == EvaluationStatus.EVALUATED,
            QuizResponse.submission_status.in_((SubmissionStatus.SUBMITTED, SubmissionStatus.AUTO_SUBMITTED)),
        )
    ).all()
    data = compute_report(questions, list(responses))

    report = db.scalar(select(QuizReport).where(QuizReport.quiz_id == quiz_id))
    if report is None:
        report = QuizReport(quiz_id=quiz_id)
    report.avg_score = data["avg_score"]
    report.max_score = data["max_score"]
    report.min_score = data["min_score"]
    report.total_score = data["total_score"]
    report.total_students = data["total_students"]
    report.question_stats = data["question_stats"]
    report.mark_distribution = data["mark_distribution"]
    report.evaluated_at = datetime.utcnow()
    db.add(report)
    db.flush()
    return report


def report_payload(report: QuizReport | None) -> dict[str, Any]:
    if report is None:
        return {
            "avg_score": 0.0,
            "max_score": 0.0,
            "min_score": 0.0,
            "total_score": 0.0,
            "total_students": 0,
            "question_stats": [],
            "mark_distribution": {"excellent": 0, "good": 0, "average": 0, "poor": 0},
            "evaluated_at": None,
        }
    return {
        "avg_score": float(report.avg_score or 0.0),
        "max_score": float(report.max_score or 0.0),
        "min_score": float(report.min_score or 0.0),
        "total_score": float(report.total_score or 0.0),
        "total_students": int(report.total_students or 0),
        "question_stats": list(report.question_stats or []),
        "mark_distribution": dict(report.mark_distribution or {}),
        "evaluated_at": report.evaluated_at.isoformat() if report.evaluated_at else None,
    }
