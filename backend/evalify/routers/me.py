from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from evalify.core.security import get_current_user
from evalify.db.session import get_db
from evalify.models.user import User

router = APIRouter(prefix="/me", tags=["me"])


class ProfileResponse(BaseModel):
    id: str
    name: str
    email: str
    profile_id: str
    role: str
    phone_number: str | None = None
    dob: date | None = None
    gender: str | None = None
    city: str | None = None
    state: str | None = None
    profile_image: str | None = None
    theme: str
    view: str


class ProfileUpdateRequest(BaseModel):
    phone_number: str | None = None
    dob: date | None = None
    gender: str | None = Field(default=None, max_length=20)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    profile_image: str | None = Field(default=None, max_length=500)
    theme: Literal["light", "dark"] | None = None
    view: Literal["grid", "list"] | None = None


def _normalize_phone(raw: str) -> str:
    phone = str(raw or "").strip()
    digits = "".join(ch for ch in phone if ch.isdigit())
    norm = ("+" + digits) if phone.startswith("+") else digits
    if len(digits) < 10 or len(digits) > 15:
        raise HTTPException(status_code=400, detail="invalid phone")
    return norm


def _profile(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "profile_id": user.profile_id,
        "role": user.role.value,
        "phone_number": user.phone_number,
        "dob": user.dob,
        "gender": user.gender,
        "city": user.city,
        "state": user.state,
        "profile_image": user.profile_image,
        "theme": user.theme,
        "view": user.view,
    }


@router.get("/profile", response_model=ProfileResponse)
def get_profile(user: User = Depends(get_current_user)):
    return _profile(user)


@router.patch("/profile", response_model=ProfileResponse)
def update_profile(
    body: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    fields = body.model_dump(exclude_unset=True)
    if "phone_number" in fields and fields["phone_number"]:
        fields["phone_number"] = _normalize_phone(fields["phone_number"])
    if "profile_image" in fields and fields["profile_image"]:
        # Only keys issued by /uploads/presign for this user are accepted.
        if not str(fields["profile_image"]).startswith(f"profiles/{user.id}/"):
            raise HTTPException(status_code=400, detail="invalid profile image")

    for key, value in fields.items():
        if key in {"theme", "view"} and value is None:
            continue
        setattr(user, key, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return _profile(user)
