"""Shared FastAPI dependencies for database access and authentication."""

from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from village_exam.database import get_session
from village_exam.errors import AdminRequiredError, AttemptOwnershipError, AuthenticationError
from village_exam.models import ADMIN_ROLES, User


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in."""
    if current_user is None:
        raise AuthenticationError()
    return current_user


def require_admin(current_user: User = Depends(require_login)) -> User:
    if current_user.role not in ADMIN_ROLES:
        raise AdminRequiredError()
    return current_user


def ensure_acting_user(current_user: User, user_id: Optional[int]) -> None:
    """Reject calls that name a different user than the logged-in one."""
    if user_id is not None and user_id != current_user.id:
        raise AttemptOwnershipError("Requests must be made as the logged-in student")
