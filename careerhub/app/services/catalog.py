# careerhub/app/services/catalog.py
import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..config import Settings
from ..errors import ConflictError, InternalError, NotFoundError, ValidationError
from ..models import (
    Course,
    Employer,
    Enrollment,
    Job,
    JobApplication,
    JobSkill,
    JobStatus,
    Student,
    StudentSkill,
    User,
    as_utc,
    utcnow,
)
from ..schemas import CourseCreate, EmployerCreate, JobCreate, SkillIn, StudentCreate, UserCreate
from .cache import (
    CANDIDATES_PREFIX,
    COURSES_LIST_PREFIX,
    JOBS_LIST_PREFIX,
    Cache,
    candidates_prefix,
    courses_list_key,
    job_detail_key,
    jobs_list_key,
)
from .matcher import Skill, normalize_skill_name, skill_set
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def _page(page: int, limit: int, settings: Settings):
    if page < 1:
        page = 1
    if limit < 1 or limit > settings.max_page_limit:
        limit = settings.default_page_limit
    return page, limit


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = (total + limit - 1) // limit
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "limit": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


class CatalogService:
    """Profiles, jobs and courses. Every write drops the cache entries it makes stale."""

    def __init__(self, session: AsyncSession, cache: Cache, settings: Settings,
                 notifications: Optional[NotificationDispatcher] = None):
        self.session = session
        self.cache = cache
        self.settings = settings
        self.notifications = notifications

    async def _commit(self, what: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(f"{what} already exists")
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("commit failed while saving %s", what)
            raise InternalError("Could not save changes")

    # ---------- users / profiles ----------

    async def create_user(self, payload: UserCreate) -> User:
        user = User(full_name=payload.full_name, email=payload.email.strip().lower(), role=payload.role)
        self.session.add(user)
        await self._commit("user with this email")
        await self.session.refresh(user)
        return user

    async def create_employer(self, payload: EmployerCreate) -> Employer:
        if await self.session.get(User, payload.user_id) is None:
            raise NotFoundError("User not found")
        employer = Employer(user_id=payload.user_id, name=payload.name, industry=payload.industry)
        self.session.add(employer)
        await self._commit("employer profile for this user")
        await self.session.refresh(employer)
        return employer

    async def create_student(self, payload: StudentCreate) -> Student:
        if await self.session.get(User, payload.user_id) is None:
            raise NotFoundError("User not found")
        taken = (await self.session.exec(select(Student).where(Student.user_id == payload.user_id))).first()
        if taken is not None:
            raise ConflictError("student profile for this user already exists")
        student = Student(**payload.model_dump(exclude={"skills"}))
        self.session.add(student)
        await self.session.flush()
        for skill in skill_set(_to_skill(s) for s in payload.skills).values():
            self.session.add(StudentSkill(student_id=student.id, name=skill.name, proficiency=skill.proficiency))
        await self._commit("student profile for this user")
        await self.session.refresh(student)
        await self.cache.invalidate(CANDIDATES_PREFIX)
        return student

    async def student_skills(self, student_id: int):
        rows = (await self.session.exec(select(StudentSkill).where(StudentSkill.student_id == student_id))).all()
        return sorted(rows, key=lambda s: s.name)

    async def add_skill(self, student_id: int, skill: SkillIn) -> StudentSkill:
        """Set semantics: adding a name the student already has updates its proficiency."""
        if await self.session.get(Student, student_id) is None:
            raise NotFoundError("Student not found")
        name = normalize_skill_name(skill.name)
        existing = (await self.session.exec(
            select(StudentSkill).where(StudentSkill.student_id == student_id, StudentSkill.name == name)
        )).first()
        if existing is None:
            existing = StudentSkill(student_id=student_id, name=name, proficiency=skill.proficiency)
        else:
            existing.proficiency = skill.proficiency
        self.session.add(existing)
        await self._commit("skill")
        await self.session.refresh(existing)
        await self.cache.invalidate(CANDIDATES_PREFIX)
        return existing

    async def remove_skill(self, student_id: int, name: str) -> None:
        result = await self.session.execute(
            sa_delete(StudentSkill).where(StudentSkill.student_id == student_id,
                                          StudentSkill.name == normalize_skill_name(name))
        )
        await self.session.commit()
        if not result.rowcount:
            raise NotFoundError("Skill not found")
        await self.cache.invalidate(CANDIDATES_PREFIX)

    # ---------- jobs ----------

    async def _invalidate_job(self, job: Job) -> None:
        await self.cache.invalidate(JOBS_LIST_PREFIX, job_detail_key(job.id), candidates_prefix(job.employer_id))

    async def create_job(self, employer_id: int, payload: JobCreate) -> Job:
        if await self.session.get(Employer, employer_id) is None:
            raise NotFoundError("Employer not found")
        job = Job(
            employer_id=employer_id,
            title=payload.title,
            description=payload.description,
            status=payload.status,
            application_deadline=payload.application_deadline,
        )
        self.session.add(job)
        await self.session.flush()
        for skill in skill_set(_to_skill(s, "level") for s in payload.skills_required).values():
            self.session.add(JobSkill(job_id=job.id, name=skill.name, level=skill.proficiency))
        await self._commit("job")
        await self.session.refresh(job)
        await self._invalidate_job(job)
        logger.info("job %s created for employer %s", job.id, employer_id)
        return job

    async def update_job_status(self, job_id: int, status: JobStatus, employer_id: Optional[int] = None) -> Job:
        job = await self.session.get(Job, job_id)
        if job is None or (employer_id is not None and job.employer_id != employer_id):
            raise NotFoundError("Job not found")
        job.status = status
        job.updated_at = utcnow()
        self.session.add(job)
        await self._commit("job")
        await self.session.refresh(job)
        await self._invalidate_job(job)
        return job

    async def _job_payload(self, job: Job) -> Dict[str, Any]:
        skills = (await self.session.exec(select(JobSkill).where(JobSkill.job_id == job.id))).all()
        data = job.model_dump(mode="json")
        data["skills_required"] = [
            {"name": s.name, "level": s.level.value if s.level else None} for s in sorted(skills, key=lambda s: s.name)
        ]
        return data

    async def get_job(self, job_id: int) -> Dict[str, Any]:
        key = job_detail_key(job_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        job = await self.session.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        data = await self._job_payload(job)
        await self.cache.set(key, data, self.settings.jobs_ttl)
        return data

    async def list_jobs(self, status: Optional[JobStatus] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page, limit = _page(page, limit, self.settings)
        key = jobs_list_key(status.value if status else None, page, limit)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        filters = [Job.status == status] if status else []
        total = (await self.session.exec(select(func.count()).select_from(Job).where(*filters))).one()
        jobs = (await self.session.exec(
            select(Job).where(*filters).order_by(Job.created_at.desc(), Job.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )).all()
        data = {"jobs": [await self._job_payload(j) for j in jobs], "pagination": _pagination(page, limit, total)}
        await self.cache.set(key, data, self.settings.jobs_ttl)
        return data

    # ---------- courses ----------

    async def create_course(self, provider_id: int, payload: CourseCreate) -> Course:
        course = Course(provider_id=provider_id, title=payload.title, description=payload.description)
        self.session.add(course)
        await self._commit("course")
        await self.session.refresh(course)
        await self.cache.invalidate(COURSES_LIST_PREFIX)
        return course

    async def list_courses(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page, limit = _page(page, limit, self.settings)
        key = courses_list_key(page, limit)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        total = (await self.session.exec(select(func.count()).select_from(Course))).one()
        courses = (await self.session.exec(
            select(Course).order_by(Course.created_at.desc(), Course.id.desc()).offset((page - 1) * limit).limit(limit)
        )).all()
        data = {"courses": [c.model_dump(mode="json") for c in courses], "pagination": _pagination(page, limit, total)}
        await self.cache.set(key, data, self.settings.courses_ttl)
        return data

    # ---------- applications / enrollments ----------

    async def _student_for(self, user_id: int) -> Student:
        student = (await self.session.exec(select(Student).where(Student.user_id == user_id))).first()
        if student is None:
            raise NotFoundError("Student profile not found")
        return student

    async def _notify(self, record, send) -> None:
        # the record is already committed; a failed notification only gets logged
        if self.notifications is None:
            return
        try:
            await send(self.notifications)
        except Exception:
            logger.exception("notification for %s %s failed", type(record).__name__, record.id)
            await self.session.rollback()
            await self.session.refresh(record)

    async def apply_to_job(self, job_id: int, user_id: int) -> JobApplication:
        """Submit the calling student's application and tell the employer about it."""
        student = await self._student_for(user_id)
        job = await self.session.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if job.status != JobStatus.active:
            raise ValidationError("Job is not accepting applications")
        deadline = as_utc(job.application_deadline)
        if deadline is not None and deadline < utcnow():
            raise ValidationError("Application deadline has passed")

        application = JobApplication(job_id=job.id, student_id=student.id)
        self.session.add(application)
        await self._commit("application for this job")
        await self.session.refresh(application)
        logger.info("student %s applied to job %s", student.id, job.id)

        employer = await self.session.get(Employer, job.employer_id)
        applicant = f"{student.first_name} {student.last_name}".strip()
        application_id, job_title, employer_user = application.id, job.title, employer.user_id
        await self._notify(application, lambda n: n.notify_job_application(
            employer_user, applicant, job_title, application_id))
        return application

    async def enroll(self, course_id: int, user_id: int) -> Enrollment:
        student = await self._student_for(user_id)
        course = await self.session.get(Course, course_id)
        if course is None:
            raise NotFoundError("Course not found")

        enrollment = Enrollment(course_id=course.id, student_id=student.id)
        self.session.add(enrollment)
        await self._commit("enrollment in this course")
        await self.session.refresh(enrollment)
        logger.info("student %s enrolled in course %s", student.id, course.id)

        course_title, course_id = course.title, course.id
        await self._notify(enrollment, lambda n: n.notify_course_enrollment(
            user_id, course_title, course_id))
        return enrollment


def _to_skill(s, level_attr: str = "proficiency") -> Skill:
    return Skill(name=s.name, proficiency=getattr(s, level_attr))
