"""Login, logout and profile routes."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session, select

from village_exam.auth_utils import verify_password
from village_exam.database import get_session
from village_exam.deps import require_login
from village_exam.errors import AuthenticationError
from village_exam.models import User
from village_exam.schemas import LoginRequest, ProfileRead

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/login", response_model=ProfileRead)
def login(request: Request, data: LoginRequest, session: Session = Depends(get_session)):
    email_clean = (data.email or "").strip().lower()
    user = session.exec(select(User).where(User.email == email_clean)).first()
    if not user or not user.is_active or not verify_password(data.password, user.password_hash):
        logger.info("Failed login for %s", email_clean)
        raise AuthenticationError("Invalid email or password.")

    request.session.clear()
    request.session["user_id"] = user.id
    return user


@router.get("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@router.get("/me", response_model=ProfileRead)
def me(current_user: User = Depends(require_login)):
    return current_user
