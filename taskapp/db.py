"""SQLAlchemy Core tables and the user/task store operations.

Every function opens its own connection and runs a single statement, so
callers never hold a transaction across components.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import (
    create_engine, MetaData, Table, Column, CheckConstraint, ForeignKey, Index,
    String, Boolean, BigInteger, Text,
    select, insert, update, delete, and_, or_, case, func, text, inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from taskapp import settings
from taskapp.schemas import STATUSES, TaskFilters
from taskapp.utils import now_ts

logger = logging.getLogger(__name__)


class DuplicateEmailError(Exception):
    """Raised when a user row is inserted with an email that already exists."""

    def __init__(self, email: str):
        super().__init__(f"email already registered: {email}")
        self.email = email


def normalize_database_url(url: str) -> str:
    return "postgresql://" + url[len("postgres://"):] if url.startswith("postgres://") else url

def get_engine() -> Engine:
    db_url = settings.DATABASE_URL
    if db_url:
        db_url = normalize_database_url(db_url)
        if db_url.startswith("postgresql://") and "+psycopg2" not in db_url:
            db_url = db_url.replace("postgresql://", "postgresql+psycopg2://", 1)
    else:
        db_url = "sqlite:///./tasks.db"
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, future=True, pool_pre_ping=True, connect_args=connect_args)

engine = get_engine()
metadata = MetaData()

users = Table(
    "users", metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False, unique=True),
    Column("password_hash", String, nullable=False),
    Column("name", String, nullable=True),
    Column("avatar_color", String, nullable=False, server_default=settings.DEFAULT_AVATAR_COLOR),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("verification_token", String, nullable=True),
    Column("verification_token_expires", BigInteger, nullable=True),
    Column("reset_token", String, nullable=True),
    Column("reset_token_expires", BigInteger, nullable=True),
    Column("created_at", BigInteger, nullable=False),
)

tasks = Table(
    "tasks", metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, ForeignKey("users.id"), nullable=False),
    Column("title", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("status", String, nullable=False, server_default="TODO"),
    Column("category", String, nullable=True),
    Column("due_date", String, nullable=True),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
    CheckConstraint("status IN ('TODO', 'IN_PROGRESS', 'DONE')", name="ck_tasks_status"),
    Index("ix_tasks_user_id", "user_id"),
)

def ensure_columns(table_name: str, required: dict[str, str]) -> None:
    insp = inspect(engine)
    cols = {c["name"] for c in insp.get_columns(table_name)} if insp.has_table(table_name) else set()
    with engine.begin() as conn:
        for col, ddl in required.items():
            if col not in cols:
                logger.info("Adding missing column %s.%s", table_name, col)
                conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {ddl}"))

def init_db() -> None:
    """
    Create tables if missing and upgrade older `users` tables in place.

    metadata.create_all() does NOT add columns to an existing table; databases
    created before email verification existed lack the token columns.
    """
    metadata.create_all(engine)
    ensure_columns("users", {
        "email_verified": "email_verified BOOLEAN NOT NULL DEFAULT FALSE",
        "verification_token": "verification_token TEXT",
        "verification_token_expires": "verification_token_expires BIGINT",
        "reset_token": "reset_token TEXT",
        "reset_token_expires": "reset_token_expires BIGINT",
    })


# --- Credential store ---

def _first(stmt) -> Optional[dict]:
    with engine.connect() as conn:
        row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None

def find_user_by_id(user_id: str) -> Optional[dict]:
    return _first(select(users).where(users.c.id == user_id))

def find_user_by_email(email: str) -> Optional[dict]:
    return _first(select(users).where(users.c.email == email))

def _live_verification_token(token: str, now: Optional[int]):
    now = now_ts() if now is None else now
    return and_(users.c.verification_token == token, users.c.verification_token_expires > now)

def _live_reset_token(token: str, now: Optional[int]):
    now = now_ts() if now is None else now
    return and_(users.c.reset_token == token, users.c.reset_token_expires > now)

def find_user_by_verification_token(token: str, now: Optional[int] = None) -> Optional[dict]:
    return _first(select(users).where(_live_verification_token(token, now)))

def find_user_by_reset_token(token: str, now: Optional[int] = None) -> Optional[dict]:
    return _first(select(users).where(_live_reset_token(token, now)))

def _consume(condition, values: dict) -> Optional[dict]:
    # the WHERE re-checks the token, so only one of two racing consumers gets a row back
    stmt = update(users).where(condition).values(**values).returning(users)
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None

def consume_verification_token(token: str, now: Optional[int] = None) -> Optional[dict]:
    """Mark the owner of a live verification token verified and clear the token."""
    return _consume(_live_verification_token(token, now), {
        "email_verified": True,
        "verification_token": None,
        "verification_token_expires": None,
    })

def consume_reset_token(token: str, password_hash: str, now: Optional[int] = None) -> Optional[dict]:
    """Set a new password for the owner of a live reset token and clear the token."""
    return _consume(_live_reset_token(token, now), {
        "password_hash": password_hash,
        "reset_token": None,
        "reset_token_expires": None,
    })

def insert_user(values: dict) -> dict:
    try:
        with engine.begin() as conn:
            row = conn.execute(insert(users).values(**values).returning(users)).mappings().first()
    except IntegrityError:
        if find_user_by_email(values["email"]):
            raise DuplicateEmailError(values["email"])
        raise
    return dict(row)

def update_user_fields(user_id: str, values: dict) -> Optional[dict]:
    stmt = update(users).where(users.c.id == user_id).values(**values).returning(users)
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


# --- Task store ---

def _owned(user_id: str, task_id: str):
    return and_(tasks.c.id == task_id, tasks.c.user_id == user_id)

def list_tasks(user_id: str, filters: TaskFilters) -> List[dict]:
    conds = [tasks.c.user_id == user_id]
    if filters.status is not None:
        conds.append(tasks.c.status == filters.status)
    if filters.category is not None:
        conds.append(tasks.c.category == filters.category)
    if filters.search is not None:
        conds.append(or_(
            tasks.c.title.icontains(filters.search, autoescape=True),
            tasks.c.description.icontains(filters.search, autoescape=True),
        ))
    stmt = select(tasks).where(and_(*conds)).order_by(tasks.c.created_at.desc(), tasks.c.id.desc())
    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [dict(r) for r in rows]

def insert_task(values: dict) -> dict:
    with engine.begin() as conn:
        row = conn.execute(insert(tasks).values(**values).returning(tasks)).mappings().first()
    return dict(row)

def update_task(user_id: str, task_id: str, values: dict) -> Optional[dict]:
    """Apply `values` to a task owned by `user_id`; None when no such task."""
    values = dict(values, updated_at=now_ts())
    stmt = update(tasks).where(_owned(user_id, task_id)).values(**values).returning(tasks)
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None

def delete_task(user_id: str, task_id: str) -> bool:
    with engine.begin() as conn:
        res = conn.execute(delete(tasks).where(_owned(user_id, task_id)))
    return res.rowcount > 0

def count_by_status(user_id: str) -> Dict[str, int]:
    stmt = (
        select(tasks.c.status, func.count())
        .where(tasks.c.user_id == user_id)
        .group_by(tasks.c.status)
    )
    summary = {s: 0 for s in STATUSES}
    with engine.connect() as conn:
        for status, count in conn.execute(stmt):
            summary[status] = int(count)
    return summary

def task_stats(user_id: str) -> Dict[str, int]:
    def _count(status: str):
        return func.coalesce(func.sum(case((tasks.c.status == status, 1), else_=0)), 0)

    stmt = select(
        func.count().label("total"),
        _count("DONE").label("completed"),
        _count("TODO").label("pending"),
        _count("IN_PROGRESS").label("in_progress"),
    ).where(tasks.c.user_id == user_id)
    with engine.connect() as conn:
        row = conn.execute(stmt).mappings().first()
    return {k: int(v or 0) for k, v in row.items()}

def list_categories(user_id: str) -> List[str]:
    stmt = (
        select(tasks.c.category)
        .where(and_(tasks.c.user_id == user_id, tasks.c.category.is_not(None)))
        .distinct()
        .order_by(tasks.c.category)
    )
    with engine.connect() as conn:
        return [r[0] for r in conn.execute(stmt)]
