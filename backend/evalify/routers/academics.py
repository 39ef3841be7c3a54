from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evalify.core.ids import parse_uuid, parse_uuids
from evalify.core.pagination import paginate
from evalify.core.security import require_roles
from evalify.db.session import get_db
from evalify.models.academics import (
    Batch,
    BatchManager,
    BatchStudent,
    Course,
    CourseBatch,
    CourseInstructor,
    CourseStudent,
    Department,
    Semester,
    SemesterManager,
)
from evalify.models.quiz import CourseQuiz, QuizBatch
from evalify.models.user import User, UserRole
from evalify.schemas.admin import (
    BatchCreateRequest,
    BatchUpdateRequest,
    BulkCreatedResponse,
    CourseBulkCreateRequest,
    CourseCreateRequest,
    CourseUpdateRequest,
    CreatedResponse,
    MembersAddResponse,
    MembersRequest,
    SemesterBulkCreateRequest,
    SemesterCreateRequest,
    SemesterUpdateRequest,
)

router = APIRouter(prefix="/admin", tags=["academics"])

_admin = require_roles(UserRole.ADMIN)


def _commit_or_conflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail) from e


def _get_or_404(db: Session, model, raw_id: str, *, field: str):
    obj = db.get(model, parse_uuid(raw_id, field=f"{field} id"))
    if obj is None:
        raise HTTPException(status_code=404, detail=f"{field} not found")
    return obj


def _member_public(u: User) -> dict:
    return {"id": str(u.id), "name": u.name, "email": u.email, "profile_id": u.profile_id, "role": u.role.value}


def _list_members(db: Session, link_model, owner_col, user_col, owner_id: uuid.UUID) -> list[dict]:
    rows = db.scalars(
        select(User).join(link_model, user_col == User.id).where(owner_col == owner_id).order_by(User.name)
    ).all()
    return [_member_public(u) for u in rows]


def _add_members(
    db: Session,
    *,
    link_model,
    owner_field: str,
    user_field: str,
    owner_id: uuid.UUID,
    user_ids: list[str],
    allowed_roles: tuple[UserRole, ...],
    skip_other_roles: bool = False,
) -> dict:
    ids = parse_uuids(user_ids, field="user id")
    users = db.scalars(select(User).where(User.id.in_(ids))).all()
    found = {u.id: u for u in users}
    missing = [str(i) for i in ids if i not in found]
    if missing:
        raise HTTPException(status_code=404, detail="user not found")
    wrong_role = {u.id for u in users if u.role not in allowed_roles}
    if wrong_role and not skip_other_roles:
        raise HTTPException(status_code=400, detail="user has an incompatible role")

    existing = set(
        db.scalars(
            select(getattr(link_model, user_field)).where(getattr(link_model, owner_field) == owner_id)
        ).all()
    )
    added = 0
    for uid in ids:
        if uid in existing or uid in wrong_role:
            continue
        db.add(link_model(**{owner_field: owner_id, user_field: uid}))
        added += 1
    _commit_or_conflict(db, "membership already exists")
    return {"ok": True, "added": added, "skipped": len(ids) - added}


def _remove_member(db: Session, *, link_model, owner_field: str, user_field: str, owner_id: uuid.UUID, user_id: str) -> dict:
    uid = parse_uuid(user_id, field="user id")
    res = db.execute(
        delete(link_model)
        .where(getattr(link_model, owner_field) == owner_id)
        .where(getattr(link_model, user_field) == uid)
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="membership not found")
    db.commit()
    return {"ok": True}


# Semesters


def _semester_public(s: Semester) -> dict:
    return {
        "id": str(s.id),
        "name": s.name,
        "year": s.year,
        "department_id": str(s.department_id),
        "is_active": bool(s.is_active),
    }


def _new_semester(db: Session, body: SemesterCreateRequest) -> Semester:
    dept = _get_or_404(db, Department, body.department_id, field="department")
    return Semester(name=body.name.strip(), year=body.year, department_id=dept.id, is_active=body.is_active)


@router.get("/semesters")
def list_semesters(
    department_id: str | None = None,
    year: int | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    stmt = select(Semester)
    if department_id:
        stmt = stmt.where(Semester.department_id == parse_uuid(department_id, field="department id"))
    if year is not None:
        stmt = stmt.where(Semester.year == year)
    if search and search.strip():
        stmt = stmt.where(Semester.name.ilike(f"%{search.strip()}%"))
    if is_active is not None:
        stmt = stmt.where(Semester.is_active.is_(is_active))
    rows, meta = paginate(db, stmt.order_by(Semester.year.desc(), Semester.name), page=page, limit=limit)
    return {"items": [_semester_public(s) for s in rows], **meta}


@router.post("/semesters", response_model=CreatedResponse)
def create_semester(
    body: SemesterCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _new_semester(db, body)
    db.add(sem)
    _commit_or_conflict(db, "semester already exists")
    return {"id": str(sem.id)}


@router.post("/semesters/bulk", response_model=BulkCreatedResponse)
def bulk_create_semesters(
    body: SemesterBulkCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    rows = [_new_semester(db, item) for item in body.items]
    db.add_all(rows)
    _commit_or_conflict(db, "semester already exists")
    return {"ok": True, "ids": [str(s.id) for s in rows]}


@router.patch("/semesters/{semester_id}")
def update_semester(
    semester_id: str,
    body: SemesterUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _get_or_404(db, Semester, semester_id, field="semester")
    if body.department_id is not None:
        sem.department_id = _get_or_404(db, Department, body.department_id, field="department").id
    if body.name is not None:
        sem.name = body.name.strip()
    if body.year is not None:
        sem.year = body.year
    if body.is_active is not None:
        sem.is_active = body.is_active
    db.add(sem)
    _commit_or_conflict(db, "semester already exists")
    return _semester_public(sem)


@router.delete("/semesters/{semester_id}")
def delete_semester(
    semester_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _get_or_404(db, Semester, semester_id, field="semester")
    if db.scalar(select(Course.id).where(Course.semester_id == sem.id).limit(1)) is not None:
        raise HTTPException(status_code=409, detail="semester has courses")
    db.execute(delete(SemesterManager).where(SemesterManager.semester_id == sem.id))
    db.delete(sem)
    db.commit()
    return {"ok": True}


@router.get("/semesters/{semester_id}/managers")
def list_semester_managers(
    semester_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _get_or_404(db, Semester, semester_id, field="semester")
    return {"items": _list_members(db, SemesterManager, SemesterManager.semester_id, SemesterManager.user_id, sem.id)}


@router.post("/semesters/{semester_id}/managers", response_model=MembersAddResponse)
def add_semester_managers(
    semester_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _get_or_404(db, Semester, semester_id, field="semester")
    return _add_members(
        db,
        link_model=SemesterManager,
        owner_field="semester_id",
        user_field="user_id",
        owner_id=sem.id,
        user_ids=body.user_ids,
        allowed_roles=(UserRole.MANAGER, UserRole.FACULTY),
    )


@router.delete("/semesters/{semester_id}/managers/{user_id}")
def remove_semester_manager(
    semester_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    sem = _get_or_404(db, Semester, semester_id, field="semester")
    return _remove_member(
        db, link_model=SemesterManager, owner_field="semester_id", user_field="user_id", owner_id=sem.id, user_id=user_id
    )


# Batches


def _batch_public(b: Batch, *, student_count: int | None = None) -> dict:
    out = {
        "id": str(b.id),
        "name": b.name,
        "join_year": b.join_year,
        "graduation_year": b.graduation_year,
        "section": b.section,
        "department_id": str(b.department_id),
        "is_active": bool(b.is_active),
    }
    if student_count is not None:
        out["student_count"] = student_count
    return out


@router.get("/batches")
def list_batches(
    department_id: str | None = None,
    join_year: int | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    stmt = select(Batch)
    if department_id:
        stmt = stmt.where(Batch.department_id == parse_uuid(department_id, field="department id"))
    if join_year is not None:
        stmt = stmt.where(Batch.join_year == join_year)
    if search and search.strip():
        stmt = stmt.where(Batch.name.ilike(f"%{search.strip()}%"))
    if is_active is not None:
        stmt = stmt.where(Batch.is_active.is_(is_active))
    stmt = stmt.order_by(Batch.join_year.desc(), Batch.name, Batch.section)
    rows, meta = paginate(db, stmt, page=page, limit=limit)

    counts = dict(
        db.execute(
            select(BatchStudent.batch_id, func.count(BatchStudent.id))
            .where(BatchStudent.batch_id.in_([b.id for b in rows]))
            .group_by(BatchStudent.batch_id)
        ).all()
    ) if rows else {}
    return {"items": [_batch_public(b, student_count=int(counts.get(b.id, 0))) for b in rows], **meta}


@router.post("/batches", response_model=CreatedResponse)
def create_batch(
    body: BatchCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    if body.graduation_year < body.join_year:
        raise HTTPException(status_code=400, detail="graduation year precedes join year")
    dept = _get_or_404(db, Department, body.department_id, field="department")
    batch = Batch(
        name=body.name.strip(),
        join_year=body.join_year,
        graduation_year=body.graduation_year,
        section=body.section.strip().upper(),
        department_id=dept.id,
        is_active=body.is_active,
    )
    db.add(batch)
    _commit_or_conflict(db, "batch already exists")
    return {"id": str(batch.id)}


@router.patch("/batches/{batch_id}")
def update_batch(
    batch_id: str,
    body: BatchUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    if body.department_id is not None:
        batch.department_id = _get_or_404(db, Department, body.department_id, field="department").id
    if body.name is not None:
        batch.name = body.name.strip()
    if body.join_year is not None:
        batch.join_year = body.join_year
    if body.graduation_year is not None:
        batch.graduation_year = body.graduation_year
    if body.section is not None:
        batch.section = body.section.strip().upper()
    if body.is_active is not None:
        batch.is_active = body.is_active
    if batch.graduation_year < batch.join_year:
        db.rollback()
        raise HTTPException(status_code=400, detail="graduation year precedes join year")
    db.add(batch)
    _commit_or_conflict(db, "batch already exists")
    return _batch_public(batch)


@router.delete("/batches/{batch_id}")
def delete_batch(
    batch_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    for link in (BatchStudent, BatchManager, CourseBatch, QuizBatch):
        db.execute(delete(link).where(link.batch_id == batch.id))
    db.delete(batch)
    db.commit()
    return {"ok": True}


@router.get("/batches/{batch_id}/students")
def list_batch_students(
    batch_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return {"items": _list_members(db, BatchStudent, BatchStudent.batch_id, BatchStudent.student_id, batch.id)}


@router.post("/batches/{batch_id}/students", response_model=MembersAddResponse)
def add_batch_students(
    batch_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return _add_members(
        db,
        link_model=BatchStudent,
        owner_field="batch_id",
        user_field="student_id",
        owner_id=batch.id,
        user_ids=body.user_ids,
        allowed_roles=(UserRole.STUDENT,),
        skip_other_roles=True,
    )


@router.delete("/batches/{batch_id}/students/{user_id}")
def remove_batch_student(
    batch_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return _remove_member(
        db, link_model=BatchStudent, owner_field="batch_id", user_field="student_id", owner_id=batch.id, user_id=user_id
    )


@router.get("/batches/{batch_id}/managers")
def list_batch_managers(
    batch_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return {"items": _list_members(db, BatchManager, BatchManager.batch_id, BatchManager.user_id, batch.id)}


@router.post("/batches/{batch_id}/managers", response_model=MembersAddResponse)
def add_batch_managers(
    batch_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return _add_members(
        db,
        link_model=BatchManager,
        owner_field="batch_id",
        user_field="user_id",
        owner_id=batch.id,
        user_ids=body.user_ids,
        allowed_roles=(UserRole.MANAGER, UserRole.FACULTY),
    )


@router.delete("/batches/{batch_id}/managers/{user_id}")
def remove_batch_manager(
    batch_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    batch = _get_or_404(db, Batch, batch_id, field="batch")
    return _remove_member(
        db, link_model=BatchManager, owner_field="batch_id", user_field="user_id", owner_id=batch.id, user_id=user_id
    )


# Courses


def _course_public(c: Course) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "description": c.description,
        "code": c.code,
        "image": c.image,
        "type": c.type.value,
        "semester_id": str(c.semester_id),
        "is_active": bool(c.is_active),
    }


def _new_course(db: Session, body: CourseCreateRequest) -> Course:
    sem = _get_or_404(db, Semester, body.semester_id, field="semester")
    return Course(
        name=body.name.strip(),
        description=body.description,
        code=body.code.strip().upper(),
        image=body.image,
        type=body.type,
        semester_id=sem.id,
        is_active=body.is_active,
    )


@router.get("/courses")
def list_courses(
    semester_id: str | None = None,
    search: str | None = None,
    type: str | None = None,
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    stmt = select(Course)
    if semester_id:
        stmt = stmt.where(Course.semester_id == parse_uuid(semester_id, field="semester id"))
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(Course.name.ilike(like) | Course.code.ilike(like))
    if type:
        stmt = stmt.where(Course.type == type.upper())
    if is_active is not None:
        stmt = stmt.where(Course.is_active.is_(is_active))
    rows, meta = paginate(db, stmt.order_by(Course.code), page=page, limit=limit)
    return {"items": [_course_public(c) for c in rows], **meta}


@router.post("/courses", response_model=CreatedResponse)
def create_course(
    body: CourseCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _new_course(db, body)
    if db.scalar(select(Course.id).where(Course.code == course.code)) is not None:
        raise HTTPException(status_code=409, detail="course code already exists")
    db.add(course)
    _commit_or_conflict(db, "course code already exists")
    return {"id": str(course.id)}


@router.post("/courses/bulk", response_model=BulkCreatedResponse)
def bulk_create_courses(
    body: CourseBulkCreateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    rows = [_new_course(db, item) for item in body.items]
    codes = [c.code for c in rows]
    if len(set(codes)) != len(codes):
        raise HTTPException(status_code=409, detail="duplicate course code in request")
    if db.scalar(select(Course.id).where(Course.code.in_(codes)).limit(1)) is not None:
        raise HTTPException(status_code=409, detail="course code already exists")
    db.add_all(rows)
    _commit_or_conflict(db, "course code already exists")
    return {"ok": True, "ids": [str(c.id) for c in rows]}


@router.get("/courses/{course_id}")
def get_course(
    course_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    out = _course_public(course)
    out["instructors"] = _list_members(
        db, CourseInstructor, CourseInstructor.course_id, CourseInstructor.instructor_id, course.id
    )
    batches = db.scalars(
        select(Batch).join(CourseBatch, CourseBatch.batch_id == Batch.id).where(CourseBatch.course_id == course.id)
    ).all()
    out["batches"] = [_batch_public(b) for b in batches]
    out["student_count"] = int(
        db.scalar(select(func.count(CourseStudent.id)).where(CourseStudent.course_id == course.id)) or 0
    )
    return out


@router.patch("/courses/{course_id}")
def update_course(
    course_id: str,
    body: CourseUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    if body.semester_id is not None:
        course.semester_id = _get_or_404(db, Semester, body.semester_id, field="semester").id
    if body.code is not None:
        code = body.code.strip().upper()
        clash = db.scalar(select(Course.id).where(Course.code == code).where(Course.id != course.id))
        if clash is not None:
            raise HTTPException(status_code=409, detail="course code already exists")
        course.code = code
    for key in ("name", "description", "image", "type", "is_active"):
        value = getattr(body, key)
        if value is not None:
            setattr(course, key, value.strip() if key == "name" else value)
    db.add(course)
    _commit_or_conflict(db, "course code already exists")
    return _course_public(course)


@router.delete("/courses/{course_id}")
def delete_course(
    course_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    for link in (CourseInstructor, CourseStudent, CourseBatch, CourseQuiz):
        db.execute(delete(link).where(link.course_id == course.id))
    db.delete(course)
    db.commit()
    return {"ok": True}


@router.get("/courses/{course_id}/instructors")
def list_course_instructors(
    course_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return {
        "items": _list_members(
            db, CourseInstructor, CourseInstructor.course_id, CourseInstructor.instructor_id, course.id
        )
    }


@router.post("/courses/{course_id}/instructors", response_model=MembersAddResponse)
def add_course_instructors(
    course_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return _add_members(
        db,
        link_model=CourseInstructor,
        owner_field="course_id",
        user_field="instructor_id",
        owner_id=course.id,
        user_ids=body.user_ids,
        allowed_roles=(UserRole.FACULTY, UserRole.MANAGER),
    )


@router.delete("/courses/{course_id}/instructors/{user_id}")
def remove_course_instructor(
    course_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return _remove_member(
        db,
        link_model=CourseInstructor,
        owner_field="course_id",
        user_field="instructor_id",
        owner_id=course.id,
        user_id=user_id,
    )


@router.get("/courses/{course_id}/students")
def list_course_students(
    course_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return {"items": _list_members(db, CourseStudent, CourseStudent.course_id, CourseStudent.student_id, course.id)}


@router.post("/courses/{course_id}/students", response_model=MembersAddResponse)
def add_course_students(
    course_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return _add_members(
        db,
        link_model=CourseStudent,
        owner_field="course_id",
        user_field="student_id",
        owner_id=course.id,
        user_ids=body.user_ids,
        allowed_roles=(UserRole.STUDENT,),
        skip_other_roles=True,
    )


@router.delete("/courses/{course_id}/students/{user_id}")
def remove_course_student(
    course_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    return _remove_member(
        db, link_model=CourseStudent, owner_field="course_id", user_field="student_id", owner_id=course.id, user_id=user_id
    )


@router.get("/courses/{course_id}/batches")
def list_course_batches(
    course_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    rows = db.scalars(
        select(Batch).join(CourseBatch, CourseBatch.batch_id == Batch.id).where(CourseBatch.course_id == course.id)
    ).all()
    return {"items": [_batch_public(b) for b in rows]}


@router.post("/courses/{course_id}/batches", response_model=MembersAddResponse)
def add_course_batches(
    course_id: str,
    body: MembersRequest,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    ids = parse_uuids(body.user_ids, field="batch id")
    found = set(db.scalars(select(Batch.id).where(Batch.id.in_(ids))).all())
    if len(found) != len(ids):
        raise HTTPException(status_code=404, detail="batch not found")
    existing = set(db.scalars(select(CourseBatch.batch_id).where(CourseBatch.course_id == course.id)).all())
    added = 0
    for bid in ids:
        if bid in existing:
            continue
        db.add(CourseBatch(course_id=course.id, batch_id=bid))
        added += 1
    _commit_or_conflict(db, "batch already linked")
    return {"ok": True, "added": added, "skipped": len(ids) - added}


@router.delete("/courses/{course_id}/batches/{batch_id}")
def remove_course_batch(
    course_id: str,
    batch_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(_admin),
):
    course = _get_or_404(db, Course, course_id, field="course")
    res = db.execute(
        delete(CourseBatch)
        .where(CourseBatch.course_id == course.id)
        .where(CourseBatch.batch_id == parse_uuid(batch_id, field="batch id"))
    )
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="batch not linked")
    db.commit()
    return {"ok": True}
