"""
Database Schemas for ManageEase

The document models below map to the MongoDB collections ``users`` and ``tasks``.
Documents are stored snake_case; request bodies also accept the camelCase names
used by the REST API (``assignedUser``, ``dueDate``).
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Sort order of priorities, stored on each task as priority_rank.
PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3}


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


def normalize_status(value):
    """'pending' is the older name for 'todo'"""
    if isinstance(value, str) and value.strip().lower() == "pending":
        return TaskStatus.TODO.value
    return value


@dataclass(frozen=True)
class Principal:
    """The authenticated caller: who they are and what they may do"""

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# Stored documents
class User(BaseModel):
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Unique, lowercased login email")
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Role = Field(Role.USER)
    contact: Optional[str] = Field(None, description="Phone number")

    model_config = ConfigDict(use_enum_values=True)


class Task(BaseModel):
    title: str = Field(...)
    description: Optional[str] = Field(None)
    assigned_user: str = Field(..., description="User _id of the assignee as string")
    created_by: str = Field(..., description="User _id of the creator as string")
    priority: Priority = Field(Priority.MEDIUM)
    status: TaskStatus = Field(TaskStatus.TODO)
    due_date: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)

    @computed_field
    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK[Priority(self.priority).value]


# Request models
class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RegisterRequest(_ApiModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    contact: Optional[str] = Field(None, max_length=30)


class LoginRequest(_ApiModel):
    email: EmailStr
    password: str


class ProfileUpdate(_ApiModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    contact: Optional[str] = Field(None, max_length=30)


class PasswordChange(_ApiModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class RoleUpdate(_ApiModel):
    role: Role


class TaskCreate(_ApiModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    assigned_user: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_legacy_status(cls, v):
        return normalize_status(v)


class TaskUpdate(_ApiModel):
    """Partial update: only fields present in the request body are applied"""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    assigned_user: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_legacy_status(cls, v):
        return normalize_status(v)


def page_meta(page: int, limit: int, total: int, count: int) -> dict:
    """Pagination block shared by every list endpoint"""
    return {
        "currentPage": page,
        "totalPages": -(-total // limit) if limit else 0,
        "count": count,
        "limit": limit,
    }
