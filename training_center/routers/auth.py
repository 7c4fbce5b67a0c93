"""Login / logout against the cookie session."""

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from sqlmodel import Session

from training_center.auth_utils import authenticate
from training_center.database import get_session
from training_center.deps import get_current_user, require_login
from training_center.models import User

router = APIRouter()


def _user_out(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


@router.get("/login")
def login_status(current_user: Optional[User] = Depends(get_current_user)):
    if current_user is None:
        return {"logged_in": False}
    return {"logged_in": True, "user": _user_out(current_user)}


@router.post("/login")
def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    session: Session = Depends(get_session),
):
    user = authenticate(session, email, password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password."
        )
    request.session.clear()
    request.session["user_id"] = user.id
    request.session["role"] = user.role
    return _user_out(user)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@router.get("/me")
def me(current_user: User = Depends(require_login)):
    return _user_out(current_user)
