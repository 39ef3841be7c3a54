import hashlib
import json
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from evalify.core import net
from evalify.core.config import settings
from evalify.core.rate_limit import rate_limit
from evalify.core.security import create_access_token, get_current_user, hash_password, verify_password
from evalify.core.security_audit_log import audit_log
from evalify.db.session import get_db
from evalify.models.security_audit import SecurityAuditEvent
from evalify.models.user import User, UserRole, UserStatus

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None


class MeResponse(BaseModel):
    id: str
    name: str
    email: str
    profile_id: str
    role: str
    status: str
    theme: str
    view: str
    profile_image: str | None = None
    must_change_password: bool


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str | None = None


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    profile_id: str = Field(min_length=1, max_length=100)
    password: str


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id=str(user.id), role=user.role.value),
        expires_in=int(settings.jwt_access_token_minutes) * 60,
    )


def _device_hash(*, user_agent: str) -> str:
    raw = (str(user_agent or "").strip() + "|" + str(settings.jwt_secret_key or "")).encode("utf-8", errors="ignore")
    return hashlib.sha256(raw).hexdigest()


def _is_new_login_context(*, db: Session, user_id, ip: str | None, device_hash: str) -> bool:
    rows = db.scalars(
        select(SecurityAuditEvent)
        .where(SecurityAuditEvent.target_user_id == user_id)
        .where(SecurityAuditEvent.event_type == "auth_login_success")
        .order_by(SecurityAuditEvent.created_at.desc())
        .limit(50)
    ).all()

    seen_devices: set[str] = set()
    seen_ips: set[str] = set()
    for e in rows:
        try:
            meta = json.loads(e.meta) if e.meta else {}
        except ValueError:
            meta = {}
        if isinstance(meta, dict) and meta.get("device_hash"):
            seen_devices.add(str(meta["device_hash"]))
        if e.ip:
            seen_ips.add(str(e.ip))

    if not rows:
        return False
    return device_hash not in seen_devices or (ip is not None and ip not in seen_ips)


@router.post("/register", response_model=TokenResponse)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_register", limit=10, window_seconds=60),
):
    if not settings.allow_public_register:
        raise HTTPException(status_code=403, detail="registration disabled")

    if not payload.password or len(payload.password) < int(settings.password_min_length or 0):
        raise HTTPException(status_code=400, detail="password too short")

    email = str(payload.email).strip().lower()
    existing = db.scalar(select(User).where(or_(User.email == email, User.profile_id == payload.profile_id)))
    if existing is not None:
        audit_log(db=db, request=request, event_type="auth_register_failed", meta={"reason": "user_exists", "email": email})
        db.commit()
        raise HTTPException(status_code=409, detail="user already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        profile_id=payload.profile_id.strip(),
        role=UserRole.STUDENT,
        status=UserStatus.ACTIVE,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.flush()

    audit_log(db=db, request=request, event_type="auth_register_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    db.refresh(user)

    return _token_response(user)


@router.post("/token", response_model=TokenResponse)
def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    email = str(form_data.username or "").strip().lower()
    user = db.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(form_data.password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_login_failed", meta={"email": email})
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    if user.status != UserStatus.ACTIVE:
        audit_log(
            db=db,
            request=request,
            event_type="auth_login_blocked",
            target_user_id=user.id,
            meta={"status": user.status.value},
        )
        db.commit()
        raise HTTPException(status_code=403, detail="account is not active")

    ip = net.client_ip(request)
    ua = str(request.headers.get("user-agent") or "").strip()
    dh = _device_hash(user_agent=ua)
    new_context = _is_new_login_context(db=db, user_id=user.id, ip=ip, device_hash=dh)

    audit_log(
        db=db,
        request=request,
        event_type="auth_login_success",
        actor_user_id=user.id,
        target_user_id=user.id,
        meta={"device_hash": dh},
    )
    if new_context:
        audit_log(
            db=db,
            request=request,
            event_type="auth_login_new_context",
            actor_user_id=user.id,
            target_user_id=user.id,
            meta={"device_hash": dh},
        )
    db.commit()

    return _token_response(user)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "profile_id": user.profile_id,
        "role": user.role.value,
        "status": user.status.value,
        "theme": user.theme,
        "view": user.view,
        "profile_image": user.profile_image,
        "must_change_password": bool(user.must_change_password),
    }


@router.post("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="auth_change_password", limit=10, window_seconds=60),
):
    if not body.current_password or not verify_password(body.current_password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_change_password_failed", actor_user_id=user.id, target_user_id=user.id)
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    if not body.new_password or len(body.new_password) < int(settings.password_min_length or 0):
        raise HTTPException(status_code=400, detail="password too short")

    # Temporary passwords issued by an admin must be replaced with a confirmed one.
    if bool(user.must_change_password) and str(body.confirm_password or "") != body.new_password:
        raise HTTPException(status_code=400, detail="passwords do not match")

    if verify_password(body.new_password, user.password_hash):
        raise HTTPException(status_code=400, detail="new password must differ from the current one")

    user.password_hash = hash_password(body.new_password)
    user.must_change_password = False
    user.password_changed_at = datetime.utcnow()
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_change_password_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}
