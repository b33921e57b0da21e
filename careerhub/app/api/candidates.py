from typing import Any, List

from fastapi import APIRouter, Depends

from careerhub.app.deps import get_catalog
from careerhub.app.schemas import EmployerCreate, SkillIn, StudentCreate, UserCreate
from careerhub.app.services.catalog import CatalogService

router = APIRouter(tags=["profiles"])


def _skills_out(rows) -> List[dict]:
    return [{"name": s.name, "proficiency": s.proficiency.value if s.proficiency else None} for s in rows]


@router.post("/users", status_code=201)
async def create_user(payload: UserCreate, catalog: CatalogService = Depends(get_catalog)) -> Any:
    user = await catalog.create_user(payload)
    return user.model_dump(mode="json")


@router.post("/employers", status_code=201)
async def create_employer(payload: EmployerCreate, catalog: CatalogService = Depends(get_catalog)) -> Any:
    employer = await catalog.create_employer(payload)
    return employer.model_dump(mode="json")


@router.post("/students", status_code=201)
async def create_student(payload: StudentCreate, catalog: CatalogService = Depends(get_catalog)) -> Any:
    student = await catalog.create_student(payload)
    out = student.model_dump(mode="json")
    out["skills"] = _skills_out(await catalog.student_skills(student.id))
    return out


@router.get("/students/{student_id}/skills")
async def list_student_skills(student_id: int, catalog: CatalogService = Depends(get_catalog)) -> Any:
    return {"student_id": student_id, "skills": _skills_out(await catalog.student_skills(student_id))}


@router.post("/students/{student_id}/skills")
async def add_student_skill(student_id: int, payload: SkillIn, catalog: CatalogService = Depends(get_catalog)) -> Any:
    await catalog.add_skill(student_id, payload)
    return {"student_id": student_id, "skills": _skills_out(await catalog.student_skills(student_id))}


@router.delete("/students/{student_id}/skills/{name}")
async def remove_student_skill(student_id: int, name: str, catalog: CatalogService = Depends(get_catalog)) -> Any:
    await catalog.remove_skill(student_id, name)
    return {"student_id": student_id, "skills": _skills_out(await catalog.student_skills(student_id))}
