from __future__ import annotations

import logging
import uuid
from datetime import datetime

from rq import get_current_job

from evalify.db import session as db_session
from evalify.models.quiz import Quiz
from evalify.services.evaluation import evaluate_quiz


log = logging.getLogger(__name__)


def _save_meta(**fields) -> None:
    job = get_current_job()
    if job is None:
        return
    meta = dict(job.meta or {})
    meta.update(fields)
    job.meta = meta
    job.save_meta()


def evaluate_quiz_job(*, quiz_id: str) -> dict:
    """Score every submitted response of a quiz and rebuild its report."""
    qid = uuid.UUID(str(quiz_id))
    started = datetime.utcnow()
    _save_meta(stage="evaluating", quiz_id=str(qid), started_at=started.isoformat())

    def _progress(done: int, total: int) -> None:
        if done == total or done % 25 == 0:
            _save_meta(done=done, total=total)

    with db_session.SessionLocal() as db:
        if db.get(Quiz, qid) is None:
            _save_meta(stage="failed", error="quiz not found")
            return {"ok": False, "error": "quiz not found"}
        summary = evaluate_quiz(db, qid, on_progress=_progress)

    out = {"ok": True, "quiz_id": str(qid), **summary}
    _save_meta(stage="done", finished_at=datetime.utcnow().isoformat(), **summary)
    log.info(
        "evaluate_quiz_job: quiz_id=%s evaluated=%s failed=%s duration_s=%.2f",
        qid,
        summary["evaluated"],
        summary["failed"],
        (datetime.utcnow() - started).total_seconds(),
    )
    return out
