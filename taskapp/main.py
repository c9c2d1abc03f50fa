from __future__ import annotations

import logging
import os
import re
import secrets
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskapp import db, mailer, settings
from taskapp.cache import TaskCache, TaskQueryCache, read_through
from taskapp.logging_setup import setup_logging
from taskapp.schemas import (
    STATUSES, TaskFilters,
    SignupIn, LoginIn, ForgotPasswordIn, ResetPasswordIn, AuthOut, UserOut, MessageOut,
    TaskCreate, TaskUpdate, TaskOut, TaskListOut, TaskSummaryOut, CategoriesOut,
    ProfileOut, ProfileUpdate, TaskStats,
    to_user_out, to_task_out,
)
from taskapp.security import (
    SessionUser, require_user, hash_password, verify_password,
    issue_session, issue_random_token,
)
from taskapp.utils import now_ts, gen_id, validate_due_date

logger = logging.getLogger(__name__)

db.init_db()

app = FastAPI(title="Task Tracker API")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=False, allow_methods=["*"], allow_headers=["*"])
app.state.task_cache = TaskQueryCache(ttl=settings.TASK_CACHE_TTL_SECONDS)

FORGOT_PASSWORD_MESSAGE = "If that email exists, a password reset link has been sent."
HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        loc = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        detail = f"Invalid request: {loc}: {errors[0].get('msg')}" if loc else f"Invalid request: {errors[0].get('msg')}"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": detail})

@app.exception_handler(SQLAlchemyError)
async def store_error(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Server error"})


def get_task_cache(request: Request) -> TaskCache:
    return request.app.state.task_cache

def _clean(s: Optional[str]) -> Optional[str]:
    if s is None:
        return None
    s = s.strip()
    return s or None

def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()

def _check_password_length(pw: str) -> None:
    if len(pw) < settings.MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")

def _load_user(user: SessionUser) -> dict:
    u = db.find_user_by_id(user.id)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


# --- Auth API ---

@app.post("/api/auth/signup", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupIn):
    email = _normalize_email(payload.email)
    pw = payload.password or ""
    if not email or not pw:
        raise HTTPException(status_code=400, detail="Email and password required")
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email address")
    _check_password_length(pw)

    name = _clean(payload.name) or email.split("@")[0]
    verification_token = issue_random_token()
    ts = now_ts()
    try:
        u = db.insert_user({
            "id": gen_id(),
            "email": email,
            "password_hash": hash_password(pw),
            "name": name,
            "avatar_color": secrets.choice(settings.AVATAR_COLORS),
            "email_verified": False,
            "verification_token": verification_token,
            "verification_token_expires": ts + settings.VERIFICATION_TTL_SECONDS,
            "created_at": ts,
        })
    except db.DuplicateEmailError:
        raise HTTPException(status_code=409, detail="Email already exists")

    logger.info("User %s signed up", u["id"])
    sent = mailer.send_verification_email(email, name, verification_token)
    if not sent:
        logger.warning("Verification email for user %s not sent; account works unverified", u["id"])
    message = (
        "Account created! Please check your email to verify your account."
        if sent else "Account created! Email verification is temporarily unavailable."
    )
    return AuthOut(token=issue_session(u["id"], email), user=to_user_out(u), message=message)

@app.post("/api/auth/login", response_model=AuthOut, response_model_exclude_none=True)
def login(payload: LoginIn):
    email = _normalize_email(payload.email)
    pw = payload.password or ""
    if not email or not pw:
        raise HTTPException(status_code=400, detail="Email and password required")
    u = db.find_user_by_email(email)
    if not u or not verify_password(pw, u["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    message = None
    if not u["email_verified"]:
        logger.info("User %s logged in without email verification", u["id"])
        message = "Please verify your email address"
    return AuthOut(token=issue_session(u["id"], u["email"]), user=to_user_out(u), message=message)

@app.get("/api/auth/verify-email", response_model=MessageOut)
def verify_email(token: Optional[str] = None):
    if not token:
        raise HTTPException(status_code=400, detail="Verification token required")
    u = db.consume_verification_token(token)
    if not u:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    logger.info("User %s verified their email", u["id"])
    return MessageOut(message="Email verified successfully!")

@app.post("/api/auth/forgot-password", response_model=MessageOut)
def forgot_password(payload: ForgotPasswordIn):
    email = _normalize_email(payload.email)
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    u = db.find_user_by_email(email)
    if not u:
        # same answer whether or not the account exists
        return MessageOut(message=FORGOT_PASSWORD_MESSAGE)

    reset_token = issue_random_token()
    db.update_user_fields(u["id"], {
        "reset_token": reset_token,
        "reset_token_expires": now_ts() + settings.RESET_TTL_SECONDS,
    })
    mailer.send_reset_email(u["email"], u["name"] or email, reset_token)
    return MessageOut(message=FORGOT_PASSWORD_MESSAGE)

@app.post("/api/auth/reset-password", response_model=MessageOut)
def reset_password(payload: ResetPasswordIn):
    if not payload.token or not payload.new_password:
        raise HTTPException(status_code=400, detail="Token and new password required")
    _check_password_length(payload.new_password)
    invalid = HTTPException(status_code=400, detail="Invalid or expired reset token")
    # cheap lookup first so unknown tokens never pay for a bcrypt hash
    if not db.find_user_by_reset_token(payload.token):
        raise invalid
    u = db.consume_reset_token(payload.token, hash_password(payload.new_password))
    if not u:
        raise invalid
    logger.info("User %s reset their password", u["id"])
    return MessageOut(message="Password reset successfully! You can now login with your new password.")

@app.post("/api/auth/resend-verification", response_model=MessageOut)
def resend_verification(user: SessionUser = Depends(require_user)):
    u = _load_user(user)
    if u["email_verified"]:
        raise HTTPException(status_code=400, detail="Email already verified")
    verification_token = issue_random_token()
    db.update_user_fields(u["id"], {
        "verification_token": verification_token,
        "verification_token_expires": now_ts() + settings.VERIFICATION_TTL_SECONDS,
    })
    mailer.send_verification_email(u["email"], u["name"] or u["email"], verification_token)
    return MessageOut(message="Verification email sent! Please check your inbox.")

@app.get("/api/auth/me", response_model=UserOut)
def me(user: SessionUser = Depends(require_user)):
    return to_user_out(_load_user(user))

@app.get("/api/health")
def health(): return {"ok": True}


# --- Tasks API ---

@app.get("/api/tasks", response_model=TaskListOut)
def list_tasks(status: Optional[str] = None, category: Optional[str] = None, search: Optional[str] = None,
               user: SessionUser = Depends(require_user), cache: TaskCache = Depends(get_task_cache)):
    if status is not None and status not in STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    filters = TaskFilters(status=status, category=category, search=search)
    rows, cached = read_through(
        cache, user.id, filters,
        lambda: [to_task_out(r) for r in db.list_tasks(user.id, filters)],
    )
    return TaskListOut(tasks=rows, cached=cached)

@app.post("/api/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreate, user: SessionUser = Depends(require_user),
                cache: TaskCache = Depends(get_task_cache)):
    title = (payload.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    due = validate_due_date(payload.due_date)
    ts = now_ts()
    row = db.insert_task({
        "id": gen_id(),
        "user_id": user.id,
        "title": title,
        "description": _clean(payload.description),
        "status": "TODO",
        "category": _clean(payload.category),
        "due_date": due,
        "created_at": ts,
        "updated_at": ts,
    })
    cache.invalidate(user.id)
    return to_task_out(row)

@app.get("/api/tasks/summary", response_model=TaskSummaryOut)
def task_summary(user: SessionUser = Depends(require_user)):
    return TaskSummaryOut(**db.count_by_status(user.id))

@app.get("/api/tasks/categories", response_model=CategoriesOut)
def task_categories(user: SessionUser = Depends(require_user)):
    return CategoriesOut(categories=db.list_categories(user.id))

@app.patch("/api/tasks/{task_id}", response_model=TaskOut)
def update_task(task_id: str, payload: TaskUpdate, user: SessionUser = Depends(require_user),
                cache: TaskCache = Depends(get_task_cache)):
    fields = payload.model_fields_set
    values = {}
    if "status" in fields:
        if payload.status not in STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        values["status"] = payload.status
    if "title" in fields:
        t = (payload.title or "").strip()
        if not t:
            raise HTTPException(status_code=400, detail="Title is empty")
        values["title"] = t
    if "description" in fields:
        values["description"] = _clean(payload.description)
    if "category" in fields:
        values["category"] = _clean(payload.category)
    if "due_date" in fields:
        values["due_date"] = validate_due_date(payload.due_date)
    if not values:
        raise HTTPException(status_code=400, detail="No updates provided")

    row = db.update_task(user.id, task_id, values)
    if not row:
        raise HTTPException(status_code=404, detail="Task not found")
    cache.invalidate(user.id)
    return to_task_out(row)

@app.delete("/api/tasks/{task_id}", response_model=MessageOut)
def delete_task(task_id: str, user: SessionUser = Depends(require_user),
                cache: TaskCache = Depends(get_task_cache)):
    if not db.delete_task(user.id, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    cache.invalidate(user.id)
    return MessageOut(message="Task deleted")


# --- Profile API ---

@app.get("/api/user/profile", response_model=ProfileOut)
def get_profile(user: SessionUser = Depends(require_user)):
    u = _load_user(user)
    out = to_user_out(u)
    return ProfileOut(**out.model_dump(), created_at=int(u["created_at"]), stats=TaskStats(**db.task_stats(user.id)))

@app.patch("/api/user/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, user: SessionUser = Depends(require_user)):
    fields = payload.model_fields_set
    values = {}
    if "name" in fields:
        n = _clean(payload.name)
        if not n:
            raise HTTPException(status_code=400, detail="Name is empty")
        values["name"] = n
    if "avatar_color" in fields:
        c = _clean(payload.avatar_color)
        if not c or not HEX_COLOR.match(c):
            raise HTTPException(status_code=400, detail="Invalid avatar color")
        values["avatar_color"] = c
    if not values:
        raise HTTPException(status_code=400, detail="No updates provided")
    u = db.update_user_fields(user.id, values)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return to_user_out(u)


def run() -> None:
    setup_logging(level=settings.LOG_LEVEL)
    uvicorn.run(
        app,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "3001")),
        log_config=None,
    )


if __name__ == "__main__":
    run()
