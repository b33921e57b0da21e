"""
Shared fixtures.

Every test gets its own SQLite file under tmp_path; the module-level engine in
careerhub.app.db is rebound to it so request handlers and websocket handlers
(which open their own sessions) see the same database.
"""
from typing import Iterable, Optional
from unittest.mock import AsyncMock

import pytest

from careerhub.app import db
from careerhub.app.config import Settings
from careerhub.app.models import (
    Employer,
    Job,
    JobSkill,
    JobStatus,
    Proficiency,
    Role,
    Student,
    StudentSkill,
    User,
)
from careerhub.app.services.cache import Cache, MemoryCache
from careerhub.app.services.catalog import CatalogService
from careerhub.app.services.chat import ChatService
from careerhub.app.services.notifications import NotificationDispatcher
from careerhub.app.services.realtime import ConnectionManager


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", cache_backend="memory")


@pytest.fixture
async def engine(settings):
    engine = db.configure(settings.database_url)
    await db.init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.get_session_factory()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def cache():
    return Cache(MemoryCache())


@pytest.fixture
def gateway():
    return ConnectionManager()


@pytest.fixture
def dispatcher(session, cache, gateway, settings):
    return NotificationDispatcher(session, cache, gateway, settings)


@pytest.fixture
def chat(session, gateway, dispatcher):
    return ChatService(session, gateway, dispatcher)


@pytest.fixture
def catalog(session, cache, settings, dispatcher):
    return CatalogService(session, cache, settings, dispatcher)


def fake_socket(fail: bool = False):
    ws = AsyncMock()
    if fail:
        ws.send_json.side_effect = RuntimeError("socket closed")
    return ws


def sent_events(ws):
    return [c.args[0]["event"] for c in ws.send_json.call_args_list]


async def make_user(session, role: Role = Role.student, name: str = "user") -> User:
    user = User(full_name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def make_employer(session, name: str = "Acme") -> Employer:
    owner = await make_user(session, Role.employer, f"{name} owner")
    employer = Employer(user_id=owner.id, name=name, industry="Software")
    session.add(employer)
    await session.commit()
    await session.refresh(employer)
    return employer


async def make_job(session, employer: Employer, skills: Iterable, status: JobStatus = JobStatus.active,
                   title: str = "Engineer") -> Job:
    job = Job(employer_id=employer.id, title=title, status=status)
    session.add(job)
    await session.flush()
    for s in skills:
        name, level = (s, None) if isinstance(s, str) else s
        session.add(JobSkill(job_id=job.id, name=name, level=level))
    await session.commit()
    await session.refresh(job)
    return job


async def make_student(session, first_name: str, skills: Iterable, is_public: bool = True,
                       is_open_to_work: bool = True, proficiency: Optional[Proficiency] = None) -> Student:
    user = await make_user(session, Role.student, f"{first_name} student")
    student = Student(user_id=user.id, first_name=first_name, last_name="Doe", email=user.email,
                      is_public=is_public, is_open_to_work=is_open_to_work)
    session.add(student)
    await session.flush()
    for name in skills:
        session.add(StudentSkill(student_id=student.id, name=name, proficiency=proficiency))
    await session.commit()
    await session.refresh(student)
    return student
