from typing import Any, Optional

from fastapi import APIRouter, Depends

from careerhub.app.deps import current_employer, get_catalog, require_roles
from careerhub.app.models import Employer, JobStatus, Role, User
from careerhub.app.schemas import CourseCreate, JobCreate, JobStatusUpdate
from careerhub.app.services.catalog import CatalogService

router = APIRouter(tags=["catalog"])


@router.post("/jobs", status_code=201)
async def create_job(
    payload: JobCreate,
    employer: Employer = Depends(current_employer),
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    job = await catalog.create_job(employer.id, payload)
    return await catalog.get_job(job.id)


@router.get("/jobs")
async def list_jobs(
    status: Optional[JobStatus] = None,
    page: int = 1,
    limit: int = 10,
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    return await catalog.list_jobs(status, page, limit)


@router.get("/jobs/{job_id}")
async def get_job(job_id: int, catalog: CatalogService = Depends(get_catalog)) -> Any:
    return await catalog.get_job(job_id)


@router.patch("/jobs/{job_id}/status")
async def update_job_status(
    job_id: int,
    payload: JobStatusUpdate,
    employer: Employer = Depends(current_employer),
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    job = await catalog.update_job_status(job_id, payload.status, employer_id=employer.id)
    return job.model_dump(mode="json")


@router.post("/courses", status_code=201)
async def create_course(
    payload: CourseCreate,
    user: User = Depends(require_roles(Role.school, Role.admin)),
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    course = await catalog.create_course(user.id, payload)
    return course.model_dump(mode="json")


@router.get("/courses")
async def list_courses(page: int = 1, limit: int = 10, catalog: CatalogService = Depends(get_catalog)) -> Any:
    return await catalog.list_courses(page, limit)


@router.post("/jobs/{job_id}/apply", status_code=201)
async def apply_to_job(
    job_id: int,
    user: User = Depends(require_roles(Role.student)),
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    application = await catalog.apply_to_job(job_id, user.id)
    return application.model_dump(mode="json")


@router.post("/courses/{course_id}/enroll", status_code=201)
async def enroll_in_course(
    course_id: int,
    user: User = Depends(require_roles(Role.student)),
    catalog: CatalogService = Depends(get_catalog),
) -> Any:
    enrollment = await catalog.enroll(course_id, user.id)
    return enrollment.model_dump(mode="json")
