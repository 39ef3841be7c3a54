import hmac

import redis
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from evalify.core.config import settings
from evalify.core.redis_client import get_redis
from evalify.db import session as db_session
from evalify.services.auto_submit_jobs import enqueue_auto_submit
from evalify.services.ollama import ollama_healthcheck
from evalify.services.storage import get_s3_client

router = APIRouter(tags=["health"])


def _require_cron_secret(request: Request) -> None:
    secret = str(settings.cron_secret or "").strip()
    if not secret:
        raise HTTPException(status_code=404, detail="not found")

    provided = str(request.headers.get("x-cron-secret") or "").strip()
    if not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=403, detail="forbidden")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready():
    try:
        with db_session.SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        get_redis().ping()
    except redis.RedisError as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e

    try:
        get_s3_client().head_bucket(Bucket=settings.s3_bucket)
    except (BotoCoreError, ClientError) as e:
        raise HTTPException(status_code=503, detail="s3 not ready") from e

    return {"status": "ready"}


@router.get("/health/ollama")
def ollama():
    ok, reason = ollama_healthcheck()
    return {"ok": ok, "reason": reason, "model": settings.ollama_model if ok else None}


@router.post("/health/cron/auto-submit")
def cron_auto_submit(request: Request):
    _require_cron_secret(request)
    return enqueue_auto_submit()


@router.post("/health/cron/run-all")
def cron_run_all(request: Request):
    _require_cron_secret(request)

    results: dict[str, object] = {"ok": True, "tasks": {}}
    try:
        results["tasks"]["auto_submit"] = enqueue_auto_submit()
    except redis.RedisError as e:
        results["ok"] = False
        results["tasks"]["auto_submit"] = {"ok": False, "error": str(e)}
    return results
