from __future__ import annotations

import logging
import re
import uuid

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from evalify.core.config import settings


log = logging.getLogger(__name__)

UPLOAD_PREFIXES = {
    "question_image": "questions/images",
    "profile_image": "profiles",
    "quiz_file": "quiz-files",
}

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")

_bucket_ready = False


def get_s3_client(*, endpoint_url: str | None = None):
    ep = (endpoint_url or "").strip() or (str(settings.s3_endpoint_url or "").strip() or None)
    return boto3.client(
        "s3",
        endpoint_url=ep,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=settings.s3_region_name,
        config=Config(
            signature_version="s3v4",
            connect_timeout=float(settings.s3_connect_timeout_seconds),
            read_timeout=float(settings.s3_read_timeout_seconds),
            retries={"max_attempts": int(settings.s3_max_attempts), "mode": "standard"},
            max_pool_connections=int(settings.s3_max_pool_connections),
            s3={"addressing_style": str(settings.s3_addressing_style)},
        ),
    )


def _get_presign_client():
    # Presigning is offline; the endpoint only decides which host ends up in the URL.
    pub = (settings.s3_public_endpoint_url or "").strip()
    return get_s3_client(endpoint_url=pub or settings.s3_endpoint_url)


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


def ensure_bucket_exists() -> None:
    global _bucket_ready
    if _bucket_ready:
        return

    s3 = get_s3_client()
    try:
        s3.head_bucket(Bucket=settings.s3_bucket)
    except ClientError:
        if _is_prod():
            raise
        log.info("creating bucket %s", settings.s3_bucket)
        region = str(settings.s3_region_name or "").strip() or "us-east-1"
        is_aws = not str(settings.s3_endpoint_url or "").strip()
        if is_aws and region != "us-east-1":
            s3.create_bucket(Bucket=settings.s3_bucket, CreateBucketConfiguration={"LocationConstraint": region})
        else:
            s3.create_bucket(Bucket=settings.s3_bucket)

    origins = [o.strip() for o in str(settings.cors_allow_origins or "").split(",") if o.strip()]
    try:
        s3.put_bucket_cors(
            Bucket=settings.s3_bucket,
            CORSConfiguration={
                "CORSRules": [
                    {
                        "AllowedOrigins": origins or ["*"],
                        "AllowedMethods": ["GET", "PUT", "HEAD"],
                        "AllowedHeaders": ["*"],
                        "ExposeHeaders": ["ETag"],
                        "MaxAgeSeconds": 3600,
                    }
                ]
            },
        )
    except (ClientError, BotoCoreError):
        log.warning("could not apply bucket cors bucket=%s", settings.s3_bucket, exc_info=True)

    _bucket_ready = True


def safe_file_name(name: str) -> str:
    base = str(name or "").replace("\\", "/").rsplit("/", 1)[-1]
    base = _SAFE_NAME_RE.sub("_", base).strip("._") or "file"
    return base[:120]


def build_object_key(*, kind: str, owner_id: uuid.UUID, file_name: str, scope: str | None = None) -> str:
    prefix = UPLOAD_PREFIXES[kind]
    parts = [prefix]
    if scope:
        parts.append(scope)
    parts.extend([str(owner_id), f"{uuid.uuid4().hex}-{safe_file_name(file_name)}"])
    return "/".join(parts)


def presign_put(*, object_key: str, content_type: str | None, expires_seconds: int | None = None) -> str:
    ensure_bucket_exists()
    s3 = _get_presign_client()
    params: dict[str, object] = {"Bucket": settings.s3_bucket, "Key": object_key}
    if content_type:
        params["ContentType"] = content_type
    return s3.generate_presigned_url(
        "put_object",
        Params=params,
        ExpiresIn=int(expires_seconds or settings.s3_presign_upload_expires_seconds),
    )


def presign_get(*, object_key: str, expires_seconds: int | None = None) -> str:
    s3 = _get_presign_client()
    expires = int(expires_seconds or settings.s3_presign_download_expires_seconds)
    if _is_prod():
        expires = max(60, min(expires, 300))
    return s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": settings.s3_bucket, "Key": object_key},
        ExpiresIn=expires,
    )
