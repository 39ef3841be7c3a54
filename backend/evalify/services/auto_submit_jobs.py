from __future__ import annotations

import logging

import redis

from evalify.core.config import settings
from evalify.core.queue import get_queue
from evalify.core.redis_client import get_redis
from evalify.db import session as db_session
from evalify.services.exam import auto_submit_overdue


log = logging.getLogger(__name__)

AUTO_SUBMIT_LOCK_KEY = "locks:auto_submit"


def auto_submit_job() -> dict:
    with db_session.SessionLocal() as db:
        submitted = auto_submit_overdue(db)
    if submitted:
        log.info("auto_submit_job: submitted=%s", submitted)
    return {"submitted": submitted}


def enqueue_auto_submit() -> dict:
    """Enqueue one auto-submit run unless another caller did so within the interval."""
    interval_seconds = max(30, int(settings.auto_submit_interval_seconds))
    lock_ttl = max(15, interval_seconds - 5)

    r = get_redis()
    acquired = r.set(AUTO_SUBMIT_LOCK_KEY, "1", nx=True, ex=int(lock_ttl))
    if not acquired:
        return {"ok": True, "enqueued": False, "reason": "locked"}

    try:
        q = get_queue(str(settings.rq_queue_default))
        job = q.enqueue(
            auto_submit_job,
            job_timeout=60 * 5,
            result_ttl=60 * 60,
            failure_ttl=60 * 60,
        )
    except redis.RedisError:
        r.delete(AUTO_SUBMIT_LOCK_KEY)
        raise
    return {"ok": True, "enqueued": True, "job_id": str(job.id)}
