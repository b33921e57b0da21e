from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from enum import Enum
import datetime


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    # some drivers hand back naive values; those are UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class Role(str, Enum):
    student = "student"
    employer = "employer"
    school = "school"
    admin = "admin"


class Proficiency(str, Enum):
    beginner = "Beginner"
    intermediate = "Intermediate"
    advanced = "Advanced"

    @property
    def rank(self) -> int:
        return _PROFICIENCY_ORDER.index(self)


_PROFICIENCY_ORDER = [Proficiency.beginner, Proficiency.intermediate, Proficiency.advanced]


class JobStatus(str, Enum):
    active = "active"
    closed = "closed"
    expired = "expired"
    draft = "draft"


class NotificationType(str, Enum):
    course_enrollment = "course_enrollment"
    course_completion = "course_completion"
    course_approved = "course_approved"
    course_rejected = "course_rejected"
    course_created = "course_created"
    certificate_issued = "certificate_issued"
    job_application = "job_application"
    interview_scheduled = "interview_scheduled"
    payment_received = "payment_received"
    payment_failed = "payment_failed"
    profile_verified = "profile_verified"
    message_received = "message_received"
    system_update = "system_update"
    security_alert = "security_alert"
    subscription_expiry = "subscription_expiry"


class NotificationPriority(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"


class NotificationStatus(str, Enum):
    unread = "unread"
    read = "read"
    dismissed = "dismissed"


class EntityType(str, Enum):
    course = "course"
    job = "job"
    application = "application"
    payment = "payment"
    user = "user"
    message = "message"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True, unique=True)
    role: Role
    created_at: datetime.datetime = Field(default_factory=utcnow)


class Student(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, unique=True)
    first_name: str
    last_name: str
    email: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    is_public: bool = True
    is_open_to_work: bool = True
    created_at: datetime.datetime = Field(default_factory=utcnow)


class StudentSkill(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("student_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    # stored normalized
    name: str
    proficiency: Optional[Proficiency] = None


class Employer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, unique=True)
    name: str
    industry: Optional[str] = None


class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    employer_id: int = Field(foreign_key="employer.id", index=True)
    title: str
    description: Optional[str] = None
    status: JobStatus = Field(default=JobStatus.active, index=True)
    application_deadline: Optional[datetime.datetime] = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)


class JobSkill(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("job_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    name: str
    level: Optional[Proficiency] = None


class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    provider_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    # AUTOINCREMENT keeps ids monotonic even after deletes; ids order a recipient's feed
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_id: int = Field(foreign_key="user.id", index=True)
    title: str
    message: str
    type: NotificationType = Field(index=True)
    priority: NotificationPriority = NotificationPriority.normal
    status: NotificationStatus = Field(default=NotificationStatus.unread, index=True)
    entity_type: Optional[EntityType] = None
    entity_id: Optional[int] = None
    action_url: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utcnow, index=True)
    read_at: Optional[datetime.datetime] = None
    dismissed_at: Optional[datetime.datetime] = None


class Conversation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    is_group: bool = False
    name: Optional[str] = None
    last_message_id: Optional[int] = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow, index=True)


class ConversationParticipant(SQLModel, table=True):
    conversation_id: int = Field(foreign_key="conversation.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True, index=True)
    role: Role
    unread: int = 0


class Message(SQLModel, table=True):
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True)
    sender_id: int = Field(foreign_key="user.id")
    text: str
    created_at: datetime.datetime = Field(default_factory=utcnow)


class JobApplication(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("job_id", "student_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow)


class Enrollment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("course_id", "student_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow)
