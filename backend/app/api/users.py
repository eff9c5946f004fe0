"""User profile endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import ServerError, UserNotFoundError
from ..core.identity import get_user_id
from ..models.base import get_db, generate_uuid
from ..models.user import User, Gender, Language
from ..services.profiles import profile_to_wire
from ..services.sync_processor import apply_profile_update

router = APIRouter(prefix="/users", tags=["users"])


class UserCreate(BaseModel):
    name: str
    age: Optional[str] = None
    gender: Optional[str] = None
    location: Optional[str] = None
    language: str = Language.ENGLISH
    phone: Optional[str] = None
    email: Optional[str] = None


def _profile(user: User) -> dict:
    data = profile_to_wire(user)
    data.update({"id": user.id, "createdAt": user.created_at, "updatedAt": user.updated_at})
    return data


def _require_self(user_id: str, caller_id: Optional[str]) -> None:
    if caller_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_user(req: UserCreate, db: Session = Depends(get_db)):
    if not req.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    if req.gender is not None and req.gender not in Gender.ALL:
        raise HTTPException(status_code=400, detail="Invalid gender")
    if req.language not in Language.ALL:
        raise HTTPException(status_code=400, detail="Unsupported language")
    user = User(id=generate_uuid(), **req.model_dump())
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Phone or email already registered")
    db.refresh(user)
    return _profile(user)


@router.get("/{user_id}/profile")
def get_profile(
    user_id: str,
    db: Session = Depends(get_db),
    caller_id: Optional[str] = Depends(get_user_id),
):
    _require_self(user_id, caller_id)
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return _profile(user)


@router.put("/{user_id}/profile")
def update_profile(
    user_id: str,
    changes: dict,
    db: Session = Depends(get_db),
    caller_id: Optional[str] = Depends(get_user_id),
):
    """Partial update; the same rules apply to queued ``profile_update`` items."""
    _require_self(user_id, caller_id)
    try:
        user = apply_profile_update(db, user_id, changes)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except ServerError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _profile(user)
