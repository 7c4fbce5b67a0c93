"""Shared FastAPI dependencies for database access, authentication and app-scoped services."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.engine import Engine
from sqlmodel import Session

from training_center import database
from training_center.database import get_session
from training_center.engine.registry import DraftRegistry, RunnerRegistry
from training_center.models import User
from training_center.services.ai_client import GeminiClient
from training_center.services.gateway import SqlQuizGateway


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
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


def require_login(request: Request, current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in; browsers are sent to the login page."""
    if current_user is None:
        if "text/html" in request.headers.get("accept", ""):
            raise HTTPException(status_code=303, headers={"Location": "/auth/login"})
        raise HTTPException(status_code=401, detail="Login required")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


def get_engine() -> Engine:
    """Engine used by long-lived quiz runners (they outlive a request's session)."""
    return database.engine


def get_quiz_gateway(engine: Engine = Depends(get_engine)) -> SqlQuizGateway:
    return SqlQuizGateway(engine)


def get_runner_registry(request: Request) -> RunnerRegistry:
    return request.app.state.runners


def get_draft_registry(request: Request) -> DraftRegistry:
    return request.app.state.drafts


def get_ai_client(request: Request) -> GeminiClient:
    return request.app.state.ai_client
