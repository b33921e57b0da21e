# careerhub/app/schemas.py
import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import EntityType, JobStatus, NotificationPriority, NotificationType, Proficiency, Role, as_utc


class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1, json_schema_extra={"example": "Jane Doe"})
    email: str = Field(..., json_schema_extra={"example": "jane@example.com"})
    role: Role


class SkillIn(BaseModel):
    name: str = Field(..., min_length=1, json_schema_extra={"example": "python"})
    proficiency: Optional[Proficiency] = None


class StudentCreate(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    is_public: bool = True
    is_open_to_work: bool = True
    skills: List[SkillIn] = Field(default_factory=list)


class EmployerCreate(BaseModel):
    user_id: int
    name: str
    industry: Optional[str] = None


class JobSkillIn(BaseModel):
    name: str = Field(..., min_length=1)
    level: Optional[Proficiency] = None


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: JobStatus = JobStatus.active
    application_deadline: Optional[datetime.datetime] = None
    skills_required: List[JobSkillIn] = Field(default_factory=list)

    @field_validator("application_deadline")
    @classmethod
    def _deadline_utc(cls, v):
        return as_utc(v)


class JobStatusUpdate(BaseModel):
    status: JobStatus


class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None


class NotificationIn(BaseModel):
    """Externally supplied notification; lengths follow the product's copy rules."""
    recipient_id: int
    title: str = Field(..., min_length=3, max_length=100)
    message: str = Field(..., min_length=10, max_length=500)
    type: NotificationType
    priority: Optional[NotificationPriority] = None
    entity_type: Optional[EntityType] = None
    entity_id: Optional[int] = None
    action_url: Optional[str] = None

    @field_validator("title", "message", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class SystemNotificationIn(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    message: str = Field(..., min_length=10, max_length=500)


class BulkDeleteIn(BaseModel):
    # entries are checked one by one; only the envelope must be a list
    ids: List[Any]


class DirectConversationIn(BaseModel):
    user_id: int


class MessageIn(BaseModel):
    text: str
