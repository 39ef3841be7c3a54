from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from evalify.core.config import settings
from evalify.core.ids import parse_uuid
from evalify.core.rate_limit import rate_limit
from evalify.core.security import get_current_user, is_staff
from evalify.core.security_audit_log import audit_log
from evalify.core.timeutil import naive_utc, utcnow
from evalify.db.session import get_db
from evalify.models.question import Question, QuestionType
from evalify.models.quiz import QuizQuestion
from evalify.models.response import QuizResponse
from evalify.models.user import User, UserRole
from evalify.schemas.upload import PresignDownloadResponse, PresignUploadRequest, PresignUploadResponse
from evalify.services.exam import is_submitted
from evalify.services.question_data import unwrap
from evalify.services.storage import UPLOAD_PREFIXES, build_object_key, presign_get, presign_put

router = APIRouter(prefix="/uploads", tags=["uploads"])

log = logging.getLogger(__name__)


def _image_types() -> set[str]:
    return {t.strip().lower() for t in str(settings.upload_image_content_types or "").split(",") if t.strip()}


def _extension(file_name: str) -> str:
    name = str(file_name or "").rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def _check_quiz_file(db: Session, user: User, body: PresignUploadRequest) -> str:
    """Validate a student's answer upload and return the quiz id used to scope the key."""
    if user.role != UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="only students upload answer files")
    if not body.quiz_id or not body.question_id:
        raise HTTPException(status_code=400, detail="quiz_id and question_id are required")

    quiz_id = parse_uuid(body.quiz_id, field="quiz id")
    question_id = parse_uuid(body.question_id, field="question id")

    resp = db.scalar(select(QuizResponse).where(QuizResponse.quiz_id == quiz_id, QuizResponse.student_id == user.id))
    if resp is None or is_submitted(resp) or utcnow() > naive_utc(resp.end_time):
        raise HTTPException(status_code=403, detail="quiz is not in progress")

    question = db.scalar(
        select(Question)
        .join(QuizQuestion, QuizQuestion.question_id == Question.id)
        .where(QuizQuestion.quiz_id == quiz_id, Question.id == question_id)
    )
    if question is None or question.type != QuestionType.FILE_UPLOAD:
        raise HTTPException(status_code=400, detail="question does not accept file uploads")

    config = (unwrap(question.question_data) or {}).get("config") or {}
    allowed = {str(t).strip().lower().lstrip(".") for t in (config.get("allowedFileTypes") or []) if str(t).strip()}
    if allowed and _extension(body.file_name) not in allowed and body.content_type.lower() not in allowed:
        raise HTTPException(status_code=400, detail="file type not allowed")

    max_mb = config.get("maxFileSizeInMB")
    if max_mb is not None and body.size_bytes > float(max_mb) * 1024 * 1024:
        raise HTTPException(status_code=413, detail="file too large")
    return str(quiz_id)


@router.post("/presign", response_model=PresignUploadResponse)
def presign_upload(
    request: Request,
    body: PresignUploadRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="uploads_presign", limit=60, window_seconds=60),
):
    if body.size_bytes > int(settings.upload_max_file_size_mb) * 1024 * 1024:
        raise HTTPException(status_code=413, detail="file too large")

    scope = None
    if body.kind in ("question_image", "profile_image"):
        if body.kind == "question_image" and not is_staff(user):
            raise HTTPException(status_code=403, detail="forbidden")
        if body.content_type.lower() not in _image_types():
            raise HTTPException(status_code=400, detail="only images are allowed")
    else:
        scope = _check_quiz_file(db, user, body)

    object_key = build_object_key(kind=body.kind, owner_id=user.id, file_name=body.file_name, scope=scope)
    try:
        url = presign_put(object_key=object_key, content_type=body.content_type)
    except (BotoCoreError, ClientError) as e:
        log.warning("presign upload failed kind=%s", body.kind, exc_info=True)
        raise HTTPException(status_code=503, detail="storage unavailable") from e

    audit_log(
        db=db,
        request=request,
        event_type="upload_presigned",
        actor_user_id=user.id,
        meta={"kind": body.kind, "object_key": object_key, "size_bytes": body.size_bytes},
    )
    db.commit()
    return {
        "upload_url": url,
        "object_key": object_key,
        "expires_in": int(settings.s3_presign_upload_expires_seconds),
    }


def _owns_key(user: User, object_key: str) -> bool:
    parts = object_key.split("/")
    uid = str(user.id)
    if object_key.startswith(UPLOAD_PREFIXES["profile_image"] + "/"):
        return len(parts) >= 3 and parts[1] == uid
    if object_key.startswith(UPLOAD_PREFIXES["quiz_file"] + "/"):
        return len(parts) >= 4 and parts[2] == uid
    return False


@router.get("/download", response_model=PresignDownloadResponse)
def presign_download(
    object_key: str = Query(min_length=1, max_length=1024),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="uploads_download", limit=120, window_seconds=60),
):
    key = object_key.strip().lstrip("/")
    if ".." in key.split("/"):
        raise HTTPException(status_code=400, detail="invalid object key")
    if not is_staff(user) and not _owns_key(user, key):
        raise HTTPException(status_code=403, detail="forbidden")

    try:
        url = presign_get(object_key=key)
    except (BotoCoreError, ClientError) as e:
        log.warning("presign download failed", exc_info=True)
        raise HTTPException(status_code=503, detail="storage unavailable") from e
    return {"url": url, "expires_in": int(settings.s3_presign_download_expires_seconds)}
