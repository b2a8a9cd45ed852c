from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import (
    SessionUser,
    create_session_token,
    get_current_user,
    hash_password,
    verify_password,
)
from app.core.config import settings
from app.db.session import get_db
from app.models.user import User

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("app.auth")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=128)
    email: str = Field(min_length=3, max_length=256, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=256)
    password: str = Field(min_length=1, max_length=128)


class PreferencesPatchRequest(BaseModel):
    notify_email: bool | None = None
    notify_push: bool | None = None
    notify_budgets: bool | None = None


def _user_payload(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "is_admin": bool(user.is_admin),
        "preferences": {
            "notify_email": bool(user.notify_email),
            "notify_push": bool(user.notify_push),
            "notify_budgets": bool(user.notify_budgets),
        },
    }


def _issue_token(user: User, response: Response) -> str:
    token = create_session_token(user_id=str(user.id), email=user.email, is_admin=user.is_admin)
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.app_env.lower() == "prod",
        max_age=int(settings.auth_session_hours * 3600),
        path="/",
    )
    return token


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, response: Response, db: Session = Depends(get_db)) -> dict:
    email = payload.email.strip().lower()
    if db.execute(select(User).where(User.email == email)).scalars().first():
        raise HTTPException(status_code=400, detail="Email already registered")
    password_hash, password_salt = hash_password(payload.password)
    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=password_hash,
        password_salt=password_salt,
        is_admin=False,
        is_active=True,
        notify_email=True,
        notify_push=True,
        notify_budgets=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_registered id=%s", user.id)
    return {"ok": True, "token": _issue_token(user, response), "user": _user_payload(user)}


@router.post("/login")
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)) -> dict:
    email = payload.email.strip().lower()
    user = db.execute(select(User).where(User.email == email)).scalars().first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash, user.password_salt):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"ok": True, "token": _issue_token(user, response), "user": _user_payload(user)}


@router.post("/logout")
def logout(response: Response) -> dict:
    response.delete_cookie(key=settings.auth_cookie_name, path="/")
    return {"ok": True}


@router.get("/me")
def me(current: SessionUser = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    user = db.get(User, current.uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"authenticated": True, "user": _user_payload(user)}


@router.patch("/preferences")
def update_preferences(
    payload: PreferencesPatchRequest,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> dict:
    user = db.get(User, current.uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    for field in ("notify_email", "notify_push", "notify_budgets"):
        val = getattr(payload, field)
        if val is not None:
            setattr(user, field, val)
    db.commit()
    return {"ok": True, "user": _user_payload(user)}


@router.delete("/me", status_code=204)
def delete_account(db: Session = Depends(get_db), current: SessionUser = Depends(get_current_user)) -> None:
    user = db.get(User, current.uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        # Budgets, their ledger and outbox rows go with the user.
        db.delete(user)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail="Account deletion failed") from e
    logger.info("user_deleted id=%s", current.user_id)
