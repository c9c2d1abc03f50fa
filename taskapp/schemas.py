from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

STATUSES = ("TODO", "IN_PROGRESS", "DONE")


@dataclass(frozen=True)
class TaskFilters:
    """Optional listing filters; ``None`` means absent, ``""`` is a real value."""

    status: Optional[str] = None
    category: Optional[str] = None
    search: Optional[str] = None

    def is_empty(self) -> bool:
        return self.status is None and self.category is None and self.search is None


# --- Auth ---

class SignupIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None

class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class ForgotPasswordIn(BaseModel):
    email: Optional[str] = None

class ResetPasswordIn(BaseModel):
    token: Optional[str] = None
    new_password: Optional[str] = Field(default=None, alias="newPassword")

class UserOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    avatar_color: Optional[str] = None
    email_verified: bool = False

class AuthOut(BaseModel):
    token: str
    user: UserOut
    message: Optional[str] = None

class MessageOut(BaseModel):
    message: str


# --- Tasks ---

class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[str] = None

class TaskUpdate(BaseModel):
    """Partial update; only the fields present in the request body are applied."""

    status: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[str] = None

class TaskOut(BaseModel):
    # Frozen so a cached listing can be handed out repeatedly as a snapshot.
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    status: str
    category: Optional[str] = None
    due_date: Optional[str] = None
    created_at: int
    updated_at: int

class TaskListOut(BaseModel):
    tasks: List[TaskOut]
    cached: bool

class TaskSummaryOut(BaseModel):
    TODO: int = 0
    IN_PROGRESS: int = 0
    DONE: int = 0

class CategoriesOut(BaseModel):
    categories: List[str]


# --- Profile ---

class TaskStats(BaseModel):
    total: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0

class ProfileOut(UserOut):
    created_at: int
    stats: TaskStats

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    avatar_color: Optional[str] = None


def to_user_out(r) -> UserOut:
    return UserOut(
        id=r["id"], email=r["email"], name=r["name"],
        avatar_color=r["avatar_color"], email_verified=bool(r["email_verified"]),
    )

def to_task_out(r) -> TaskOut:
    return TaskOut(
        id=r["id"], user_id=r["user_id"], title=r["title"],
        description=r["description"], status=r["status"],
        category=r["category"], due_date=r["due_date"],
        created_at=int(r["created_at"]), updated_at=int(r["updated_at"]),
    )
