from __future__ import annotations

from datetime import date

from pydantic import BaseModel, EmailStr, Field

from evalify.models.academics import CourseType
from evalify.models.user import UserRole, UserStatus


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    profile_id: str = Field(min_length=1, max_length=100)
    role: UserRole = UserRole.STUDENT
    status: UserStatus = UserStatus.ACTIVE
    password: str | None = None
    phone_number: str | None = None
    dob: date | None = None
    gender: str | None = None
    city: str | None = None
    state: str | None = None


class UserCreateResponse(BaseModel):
    id: str
    temporary_password: str | None = None


class UserUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    profile_id: str | None = Field(default=None, min_length=1, max_length=100)
    role: UserRole | None = None
    status: UserStatus | None = None
    phone_number: str | None = None
    dob: date | None = None
    gender: str | None = None
    city: str | None = None
    state: str | None = None


class UserPublic(BaseModel):
    id: str
    name: str
    email: str
    profile_id: str
    role: str
    status: str
    phone_number: str | None = None
    dob: date | None = None
    gender: str | None = None
    city: str | None = None
    state: str | None = None
    profile_image: str | None = None
    must_change_password: bool = False
    created_at: str | None = None


class UsersListResponse(BaseModel):
    items: list[UserPublic]
    total: int
    page: int
    limit: int
    total_pages: int


class ResetPasswordResponse(BaseModel):
    ok: bool = True
    temporary_password: str


class DepartmentCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    is_active: bool = True


class DepartmentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    is_active: bool | None = None


class SemesterCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    year: int = Field(ge=2000, le=2100)
    department_id: str
    is_active: bool = True


class SemesterBulkCreateRequest(BaseModel):
    items: list[SemesterCreateRequest] = Field(min_length=1)


class SemesterUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    year: int | None = Field(default=None, ge=2000, le=2100)
    department_id: str | None = None
    is_active: bool | None = None


class BatchCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    join_year: int = Field(ge=2000, le=2100)
    graduation_year: int = Field(ge=2000, le=2110)
    section: str = Field(min_length=1, max_length=10)
    department_id: str
    is_active: bool = True


class BatchUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    join_year: int | None = Field(default=None, ge=2000, le=2100)
    graduation_year: int | None = Field(default=None, ge=2000, le=2110)
    section: str | None = Field(default=None, min_length=1, max_length=10)
    department_id: str | None = None
    is_active: bool | None = None


class CourseCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    code: str = Field(min_length=1, max_length=50)
    image: str | None = None
    type: CourseType = CourseType.CORE
    semester_id: str
    is_active: bool = True


class CourseBulkCreateRequest(BaseModel):
    items: list[CourseCreateRequest] = Field(min_length=1)


class CourseUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    code: str | None = Field(default=None, min_length=1, max_length=50)
    image: str | None = None
    type: CourseType | None = None
    semester_id: str | None = None
    is_active: bool | None = None


class LabCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    block: str = Field(min_length=1, max_length=100)
    ip_subnet: str
    is_active: bool = True


class LabUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    block: str | None = Field(default=None, min_length=1, max_length=100)
    ip_subnet: str | None = None
    is_active: bool | None = None


class MembersRequest(BaseModel):
    user_ids: list[str] = Field(min_length=1)


class MembersAddResponse(BaseModel):
    ok: bool = True
    added: int
    skipped: int


class CreatedResponse(BaseModel):
    id: str


class BulkCreatedResponse(BaseModel):
    ok: bool = True
    ids: list[str]
