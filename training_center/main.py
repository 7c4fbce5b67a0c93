"""FastAPI entrypoint for the Training Center quiz and evaluation service."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from training_center.auth_utils import ensure_admin
from training_center.database import create_db_and_tables, engine
from training_center.engine.registry import DraftRegistry, RunnerRegistry
from training_center.errors import (
    AttemptNotAllowed,
    NotFound,
    PersistenceFailure,
    SessionClosed,
    SuggestionFailure,
    TrainingCenterError,
)
from training_center.routers import auth as auth_router_module
from training_center.routers import evaluations as evaluations_router_module
from training_center.routers import final_evaluations as final_evaluations_router_module
from training_center.routers import quizzes as quizzes_router_module
from training_center.services.ai_client import GeminiClient
from training_center.services.evaluation_service import close_draft
from training_center.settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="Training Center")

# App-scoped state, handed to routes through deps.py
app.state.runners = RunnerRegistry(idle_seconds=settings.runner_idle_minutes * 60)
app.state.drafts = DraftRegistry(close=close_draft, idle_seconds=settings.draft_idle_minutes * 60)
app.state.ai_client = GeminiClient()

_ERROR_STATUS = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (AttemptNotAllowed, status.HTTP_403_FORBIDDEN),
    (SessionClosed, status.HTTP_409_CONFLICT),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SuggestionFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _is_form_request(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data"))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Form posts get a field -> message dict; JSON requests get the detailed error list."""
    if _is_form_request(request):
        errors_dict = {}
        for error in exc.errors():
            field_path = error.get("loc", [])
            if not field_path:
                continue
            field_name = str(field_path[-1])
            display_name = field_name.replace("_", " ").capitalize()
            if error.get("type") == "missing":
                errors_dict[field_name] = f"{display_name} is required."
            else:
                errors_dict[field_name] = f"{display_name}: {error.get('msg', 'Invalid input')}"
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors_dict})

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions, redirecting browsers on 403 and login redirects."""
    if exc.status_code == 403 and "text/html" in request.headers.get("accept", ""):
        return RedirectResponse(url="/?error=access_denied", status_code=status.HTTP_303_SEE_OTHER)
    # For 303 redirects (like login redirects), let them pass through
    if exc.status_code == 303 and exc.headers and exc.headers.get("Location"):
        return RedirectResponse(url=exc.headers["Location"], status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(TrainingCenterError)
async def training_center_exception_handler(request: Request, exc: TrainingCenterError):
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break
    if code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(quizzes_router_module.router, prefix="/quizzes", tags=["quizzes"])
app.include_router(evaluations_router_module.router, prefix="/evaluations", tags=["evaluations"])
app.include_router(
    final_evaluations_router_module.router, prefix="/final-evaluations", tags=["final-evaluations"]
)


@app.get("/")
def home(error: str | None = None):
    return {"service": "training-center", "error": error}


@app.on_event("startup")
def on_startup():
    """Configure logging, initialize the database schema and seed the admin account."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()
    with Session(engine) as session:
        ensure_admin(session, settings.seed_admin_email, settings.seed_admin_password)


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.runners.aclose()
    await app.state.drafts.aclose()
    await app.state.ai_client.aclose()
