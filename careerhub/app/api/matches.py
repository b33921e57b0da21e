from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from careerhub.app.deps import current_employer, get_aggregator, require_roles
from careerhub.app.models import Employer, Role
from careerhub.app.services.candidates import CandidateAggregator

router = APIRouter(tags=["matching"])


@router.get("/employers/me/matched-candidates")
async def my_matched_candidates(
    page: int = 1,
    limit: int = 10,
    sort_by: str = "match_percentage",
    sort_order: str = "desc",
    employer: Employer = Depends(current_employer),
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.matched_candidates(employer.id, page, limit, sort_by, sort_order)


@router.get("/employers/me/potential-candidates")
async def my_potential_candidates(
    page: int = 1,
    limit: int = 10,
    min_match: Optional[int] = Query(None, description="lower bound of the best score, default 20"),
    max_match: Optional[int] = Query(None, description="upper bound of the best score, default 94"),
    sort_by: str = "match_percentage",
    sort_order: str = "desc",
    employer: Employer = Depends(current_employer),
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.potential_candidates(employer.id, page, limit, min_match, max_match, sort_by, sort_order)


@router.get("/employers/{employer_id}/matched-candidates", dependencies=[Depends(require_roles(Role.admin))])
async def employer_matched_candidates(
    employer_id: int,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "match_percentage",
    sort_order: str = "desc",
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.matched_candidates(employer_id, page, limit, sort_by, sort_order)


@router.get("/employers/{employer_id}/potential-candidates", dependencies=[Depends(require_roles(Role.admin))])
async def employer_potential_candidates(
    employer_id: int,
    page: int = 1,
    limit: int = 10,
    min_match: Optional[int] = None,
    max_match: Optional[int] = None,
    sort_by: str = "match_percentage",
    sort_order: str = "desc",
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.potential_candidates(employer_id, page, limit, min_match, max_match, sort_by, sort_order)


@router.get("/schools/match-students", dependencies=[Depends(require_roles(Role.school, Role.admin))])
async def match_students(
    job_id: int,
    threshold: Optional[int] = Query(None, description="minimum match percentage, default 80"),
    aggregator: CandidateAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.match_students_for_job(job_id, threshold)
