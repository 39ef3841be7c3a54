from __future__ import annotations

import logging

import redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from evalify.core.config import settings


log = logging.getLogger(__name__)


def _rq_connection() -> redis.Redis:
    # RQ stores pickled payloads, so this connection must not decode responses.
    return redis.Redis.from_url(settings.redis_url)


def get_queue(name: str | None = None) -> Queue:
    eff = str(name or "").strip() or str(settings.rq_queue_default)
    return Queue(name=eff, connection=_rq_connection())


def worker_queue_names() -> list[str]:
    return [str(settings.rq_queue_evaluation), str(settings.rq_queue_default)]


def fetch_job(job_id: str) -> Job | None:
    try:
        return Job.fetch(job_id, connection=_rq_connection())
    except NoSuchJobError:
        return None
    except redis.RedisError:
        log.warning("rq job lookup failed job_id=%s", job_id, exc_info=True)
        return None
