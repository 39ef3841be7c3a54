from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evalify.core.ids import parse_uuid
from evalify.core.net import normalize_subnet
from evalify.core.pagination import paginate
from evalify.core.security import hash_password, random_password, require_roles
from evalify.core.security_audit_log import audit_log
from evalify.db.session import get_db
from evalify.models.academics import Batch, Department, Lab, Semester
from evalify.models.user import User, UserRole, UserStatus
from evalify.schemas.admin import (
    CreatedResponse,
    DepartmentCreateRequest,
    DepartmentUpdateRequest,
    LabCreateRequest,
    LabUpdateRequest,
    ResetPasswordResponse,
    UserCreateRequest,
    UserCreateResponse,
    UserPublic,
    UsersListResponse,
    UserUpdateRequest,
)

router = APIRouter(prefix="/admin", tags=["admin"])

log = logging.getLogger(__name__)


def _commit_or_conflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail) from e


def _user_public(u: User) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "profile_id": u.profile_id,
        "role": u.role.value,
        "status": u.status.value,
        "phone_number": u.phone_number,
        "dob": u.dob,
        "gender": u.gender,
        "city": u.city,
        "state": u.state,
        "profile_image": u.profile_image,
        "must_change_password": bool(u.must_change_password),
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _get_user(db: Session, user_id: str) -> User:
    user = db.get(User, parse_uuid(user_id, field="user id"))
    if user is None:
        raise HTTPException(status_code=404, detail="user not found")
    return user


# Users


@router.get("/users", response_model=UsersListResponse)
def list_users(
    search: str | None = None,
    role: UserRole | None = None,
    status: UserStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=15, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    stmt = select(User)
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like), User.profile_id.ilike(like)))
    if role is not None:
        stmt = stmt.where(User.role == role)
    if status is not None:
        stmt = stmt.where(User.status == status)

    rows, meta = paginate(db, stmt.order_by(User.created_at.desc(), User.name), page=page, limit=limit)
    return {"items": [_user_public(u) for u in rows], **meta}


@router.post("/users", response_model=UserCreateResponse)
def create_user(
    request: Request,
    body: UserCreateRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles(UserRole.ADMIN)),
):
    email = str(body.email).strip().lower()
    exists = db.scalar(select(User.id).where(or_(User.email == email, User.profile_id == body.profile_id.strip())))
    if exists is not None:
        raise HTTPException(status_code=409, detail="user already exists")

    temp_password = None
    password = body.password
    if not password:
        temp_password = random_password()
        password = temp_password

    user = User(
        name=body.name.strip(),
        email=email,
        profile_id=body.profile_id.strip(),
        role=body.role,
        status=body.status,
        phone_number=body.phone_number,
        dob=body.dob,
        gender=body.gender,
        city=body.city,
        state=body.state,
        password_hash=hash_password(password),
        must_change_password=temp_password is not None,
    )
    db.add(user)
    db.flush()
    audit_log(
        db=db,
        request=request,
        event_type="admin_user_created",
        actor_user_id=admin.id,
        target_user_id=user.id,
        meta={"role": user.role.value},
    )
    _commit_or_conflict(db, "user already exists")

    return {"id": str(user.id), "temporary_password": temp_password}


@router.get("/users/{user_id}", response_model=UserPublic)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    return _user_public(_get_user(db, user_id))


@router.patch("/users/{user_id}", response_model=UserPublic)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles(UserRole.ADMIN)),
):
    user = _get_user(db, user_id)
    fields = body.model_dump(exclude_unset=True)

    if user.id == admin.id and (
        ("role" in fields and fields["role"] != UserRole.ADMIN)
        or ("status" in fields and fields["status"] != UserStatus.ACTIVE)
    ):
        raise HTTPException(status_code=400, detail="cannot demote or deactivate yourself")

    before = {"role": user.role.value, "status": user.status.value}
    for key, value in fields.items():
        if value is None and key in {"name", "email", "profile_id", "role", "status"}:
            continue
        if key == "email":
            value = str(value).strip().lower()
        setattr(user, key, value)

    after = {"role": user.role.value, "status": user.status.value}
    if before != after:
        audit_log(
            db=db,
            request=request,
            event_type="admin_user_access_changed",
            actor_user_id=admin.id,
            target_user_id=user.id,
            meta={"before": before, "after": after},
        )
    db.add(user)
    _commit_or_conflict(db, "email or profile id already in use")
    db.refresh(user)
    return _user_public(user)


@router.delete("/users/{user_id}")
def delete_user(
    request: Request,
    user_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles(UserRole.ADMIN)),
):
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="cannot delete yourself")

    audit_log(
        db=db,
        request=request,
        event_type="admin_user_deleted",
        actor_user_id=admin.id,
        meta={"user_id": str(user.id), "email": user.email},
    )
    db.delete(user)
    _commit_or_conflict(db, "user owns content and cannot be deleted")
    return {"ok": True}


@router.post("/users/{user_id}/reset-password", response_model=ResetPasswordResponse)
def reset_user_password(
    request: Request,
    user_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles(UserRole.ADMIN)),
):
    user = _get_user(db, user_id)
    temp_password = random_password()
    user.password_hash = hash_password(temp_password)
    user.must_change_password = True
    db.add(user)
    audit_log(
        db=db,
        request=request,
        event_type="admin_password_reset",
        actor_user_id=admin.id,
        target_user_id=user.id,
    )
    db.commit()
    return {"ok": True, "temporary_password": temp_password}


# Departments


def _department_public(d: Department) -> dict:
    return {"id": str(d.id), "name": d.name, "is_active": bool(d.is_active)}


@router.get("/departments")
def list_departments(
    search: str | None = None,
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    stmt = select(Department)
    if search and search.strip():
        stmt = stmt.where(Department.name.ilike(f"%{search.strip()}%"))
    if is_active is not None:
        stmt = stmt.where(Department.is_active.is_(is_active))
    rows, meta = paginate(db, stmt.order_by(Department.name), page=page, limit=limit)
    return {"items": [_department_public(d) for d in rows], **meta}


@router.post("/departments", response_model=CreatedResponse)
def create_department(
    body: DepartmentCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    name = body.name.strip()
    if db.scalar(select(Department.id).where(func.lower(Department.name) == name.lower())) is not None:
        raise HTTPException(status_code=409, detail="department already exists")
    dept = Department(name=name, is_active=body.is_active)
    db.add(dept)
    _commit_or_conflict(db, "department already exists")
    return {"id": str(dept.id)}


@router.patch("/departments/{department_id}")
def update_department(
    department_id: str,
    body: DepartmentUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    dept = db.get(Department, parse_uuid(department_id, field="department id"))
    if dept is None:
        raise HTTPException(status_code=404, detail="department not found")
    if body.name is not None:
        dept.name = body.name.strip()
    if body.is_active is not None:
        dept.is_active = body.is_active
    db.add(dept)
    _commit_or_conflict(db, "department already exists")
    return _department_public(dept)


@router.delete("/departments/{department_id}")
def delete_department(
    department_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    dept = db.get(Department, parse_uuid(department_id, field="department id"))
    if dept is None:
        raise HTTPException(status_code=404, detail="department not found")

    in_use = db.scalar(select(Semester.id).where(Semester.department_id == dept.id).limit(1)) or db.scalar(
        select(Batch.id).where(Batch.department_id == dept.id).limit(1)
    )
    if in_use is not None:
        raise HTTPException(status_code=409, detail="department is in use")

    db.delete(dept)
    db.commit()
    return {"ok": True}


# Labs


def _lab_public(lab: Lab) -> dict:
    return {
        "id": str(lab.id),
        "name": lab.name,
        "block": lab.block,
        "ip_subnet": lab.ip_subnet,
        "is_active": bool(lab.is_active),
    }


def _subnet_or_400(value: str) -> str:
    try:
        return normalize_subnet(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="invalid ip subnet") from e


@router.get("/labs")
def list_labs(
    search: str | None = None,
    block: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    stmt = select(Lab)
    if search and search.strip():
        stmt = stmt.where(Lab.name.ilike(f"%{search.strip()}%"))
    if block:
        stmt = stmt.where(Lab.block == block)
    rows, meta = paginate(db, stmt.order_by(Lab.block, Lab.name), page=page, limit=limit)
    return {"items": [_lab_public(x) for x in rows], **meta}


@router.get("/labs/blocks")
def list_lab_blocks(
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    rows = db.scalars(select(Lab.block).distinct().order_by(Lab.block)).all()
    return {"items": list(rows)}


@router.post("/labs", response_model=CreatedResponse)
def create_lab(
    body: LabCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    lab = Lab(name=body.name.strip(), block=body.block.strip(), ip_subnet=_subnet_or_400(body.ip_subnet), is_active=body.is_active)
    db.add(lab)
    db.commit()
    return {"id": str(lab.id)}


@router.patch("/labs/{lab_id}")
def update_lab(
    lab_id: str,
    body: LabUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    lab = db.get(Lab, parse_uuid(lab_id, field="lab id"))
    if lab is None:
        raise HTTPException(status_code=404, detail="lab not found")
    if body.name is not None:
        lab.name = body.name.strip()
    if body.block is not None:
        lab.block = body.block.strip()
    if body.ip_subnet is not None:
        lab.ip_subnet = _subnet_or_400(body.ip_subnet)
    if body.is_active is not None:
        lab.is_active = body.is_active
    db.add(lab)
    db.commit()
    return _lab_public(lab)


@router.delete("/labs/{lab_id}")
def delete_lab(
    lab_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    lab = db.get(Lab, parse_uuid(lab_id, field="lab id"))
    if lab is None:
        raise HTTPException(status_code=404, detail="lab not found")
    db.delete(lab)
    db.commit()
    return {"ok": True}
