# careerhub/app/services/candidates.py
"""
Employer-side candidate search.

Every active posting of one employer is scored against the student pool; each
student keeps a single best (score, job) pair. The pair is then bucketed:

  matched    best score >= matched_threshold
  potential  min_match <= best score <= max_match, and below matched_threshold

so a student can never land in both buckets of the same request.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..config import Settings
from ..errors import NotFoundError, ValidationError
from ..models import Employer, Job, JobSkill, JobStatus, Student, StudentSkill, as_utc
from .cache import Cache, candidates_key
from .matcher import EXACT, ScoringStrategy, Skill, SkillSet, explain, score

logger = logging.getLogger(__name__)

MATCHED_SORT_FIELDS = ("match_percentage", "matched_at")
POTENTIAL_SORT_FIELDS = ("match_percentage", "first_name", "last_name")


class BestMatch:
    __slots__ = ("student", "skills", "score", "job")

    def __init__(self, student: Student, skills: SkillSet, score: int, job: Job):
        self.student = student
        self.skills = skills
        self.score = score
        self.job = job

    @property
    def matched_at(self):
        return as_utc(self.job.updated_at)

    def beats(self, score: int, job: Job) -> bool:
        """True when the current pair should be kept over (score, job)."""
        if self.score != score:
            return self.score > score
        mine, theirs = self.matched_at, as_utc(job.updated_at)
        if mine != theirs:
            return mine > theirs
        return self.job.id < job.id

    def to_dict(self) -> Dict[str, Any]:
        s = self.student
        return {
            "student_id": s.id,
            "student": {
                "first_name": s.first_name,
                "last_name": s.last_name,
                "email": s.email,
                "location": s.location,
                "bio": s.bio,
                "skills": sorted(self.skills),
            },
            "match_percentage": self.score,
            "matched_at": self.matched_at.isoformat(),
            "best_match_job": {"id": self.job.id, "title": self.job.title},
        }


def best_matches(jobs: List[Tuple[Job, SkillSet]], students: List[Tuple[Student, SkillSet]],
                 strategy: ScoringStrategy = EXACT) -> Dict[int, BestMatch]:
    out: Dict[int, BestMatch] = {}
    for student, have in students:
        for job, need in jobs:
            pct = score(have, need, strategy)
            current = out.get(student.id)
            if current is None or not current.beats(pct, job):
                out[student.id] = BestMatch(student, have, pct, job)
    return out


def _sort(rows: List[BestMatch], sort_by: str, sort_order: str) -> List[BestMatch]:
    rows = sorted(rows, key=lambda m: m.student.id)
    desc = sort_order != "asc"
    if sort_by == "matched_at":
        key = lambda m: m.matched_at  # noqa: E731
    elif sort_by in ("first_name", "last_name"):
        key = lambda m: (getattr(m.student, sort_by) or "").lower()  # noqa: E731
    else:
        key = lambda m: m.score  # noqa: E731
    # sorted() is stable, also with reverse=True, so ties stay ordered by student id
    return sorted(rows, key=key, reverse=desc)


class CandidateAggregator:
    def __init__(self, session: AsyncSession, cache: Cache, settings: Settings,
                 strategy: ScoringStrategy = EXACT):
        self.session = session
        self.cache = cache
        self.settings = settings
        self.strategy = strategy

    def _page(self, page: int, limit: int) -> Tuple[int, int]:
        if page is None or page < 1:
            page = 1
        if limit is None or limit < 1 or limit > self.settings.max_page_limit:
            limit = self.settings.default_page_limit
        return page, limit

    async def _employer(self, employer_id: int) -> Employer:
        employer = await self.session.get(Employer, employer_id)
        if employer is None:
            raise NotFoundError("Employer not found")
        return employer

    async def _active_jobs(self, employer_id: int) -> List[Tuple[Job, SkillSet]]:
        jobs = (await self.session.exec(
            select(Job).where(Job.employer_id == employer_id, Job.status == JobStatus.active)
        )).all()
        if not jobs:
            return []
        skills = (await self.session.exec(select(JobSkill).where(JobSkill.job_id.in_([j.id for j in jobs])))).all()
        by_job: Dict[int, SkillSet] = defaultdict(dict)
        for s in skills:
            by_job[s.job_id][s.name] = Skill(name=s.name, proficiency=s.level)
        return [(j, by_job.get(j.id, {})) for j in jobs]

    async def _skills_for(self, student_ids: List[int]) -> Dict[int, SkillSet]:
        if not student_ids:
            return {}
        rows = (await self.session.exec(select(StudentSkill).where(StudentSkill.student_id.in_(student_ids)))).all()
        by_student: Dict[int, SkillSet] = defaultdict(dict)
        for s in rows:
            by_student[s.student_id][s.name] = Skill(name=s.name, proficiency=s.proficiency)
        return by_student

    async def _student_pool(self, public_only: bool = True) -> List[Tuple[Student, SkillSet]]:
        stmt = select(Student).where(Student.id.in_(select(StudentSkill.student_id)))
        if public_only:
            stmt = stmt.where(Student.is_public == True, Student.is_open_to_work == True)  # noqa: E712
        students = (await self.session.exec(stmt)).all()
        skills = await self._skills_for([s.id for s in students])
        return [(s, skills.get(s.id, {})) for s in students]

    async def _evaluate(self, employer: Employer):
        jobs = await self._active_jobs(employer.id)
        if not jobs:
            return jobs, {}
        pool = await self._student_pool()
        return jobs, best_matches(jobs, pool, self.strategy)

    def _payload(self, employer: Employer, rows: List[BestMatch], page: int, limit: int,
                 filters: Dict[str, Any], summary: Dict[str, Any], no_active_jobs: bool) -> Dict[str, Any]:
        total = len(rows)
        total_pages = (total + limit - 1) // limit
        start = (page - 1) * limit
        return {
            "employer": {"id": employer.id, "name": employer.name, "industry": employer.industry},
            "candidates": [m.to_dict() for m in rows[start:start + limit]],
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total": total,
                "limit": limit,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
            "filters": filters,
            "summary": summary,
            "no_active_jobs": no_active_jobs,
        }

    def _summary(self, jobs, matches: Dict[int, BestMatch], selected: List[BestMatch],
                 min_match: int, max_match: int) -> Dict[str, Any]:
        threshold = self.settings.matched_threshold
        scores = [m.score for m in matches.values()]
        average = round(sum(m.score for m in selected) / len(selected), 2) if selected else 0
        return {
            "total_jobs": len(jobs),
            "students_evaluated": len(matches),
            "matched_count": sum(1 for s in scores if s >= threshold),
            "potential_count": sum(1 for s in scores if min_match <= s <= max_match and s < threshold),
            "average_match": average,
        }

    async def matched_candidates(self, employer_id: int, page: int = 1, limit: Optional[int] = None,
                                 sort_by: str = "match_percentage", sort_order: str = "desc") -> Dict[str, Any]:
        page, limit = self._page(page, limit)
        sort_by = sort_by if sort_by in MATCHED_SORT_FIELDS else "match_percentage"
        sort_order = "asc" if sort_order == "asc" else "desc"

        key = candidates_key(employer_id, "matched", page, limit, sort_by, sort_order, self.strategy.name)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        employer = await self._employer(employer_id)
        jobs, matches = await self._evaluate(employer)
        threshold = self.settings.matched_threshold
        selected = _sort([m for m in matches.values() if m.score >= threshold], sort_by, sort_order)
        summary = self._summary(jobs, matches, selected,
                                self.settings.potential_min_match, self.settings.potential_max_match)
        filters = {"threshold": threshold, "sort_by": sort_by, "sort_order": sort_order}
        data = self._payload(employer, selected, page, limit, filters, summary, no_active_jobs=not jobs)
        logger.debug("employer %s: %d matched candidates", employer_id, len(selected))
        await self.cache.set(key, data, self.settings.candidates_ttl)
        return data

    async def potential_candidates(self, employer_id: int, page: int = 1, limit: Optional[int] = None,
                                   min_match: Optional[int] = None, max_match: Optional[int] = None,
                                   sort_by: str = "match_percentage", sort_order: str = "desc") -> Dict[str, Any]:
        min_match = self.settings.potential_min_match if min_match is None else min_match
        max_match = self.settings.potential_max_match if max_match is None else max_match
        if not 0 <= min_match <= max_match <= 100:
            raise ValidationError("min_match and max_match must satisfy 0 <= min_match <= max_match <= 100")

        page, limit = self._page(page, limit)
        sort_by = sort_by if sort_by in POTENTIAL_SORT_FIELDS else "match_percentage"
        sort_order = "asc" if sort_order == "asc" else "desc"

        key = candidates_key(employer_id, "potential", page, limit, min_match, max_match, sort_by, sort_order,
                             self.strategy.name)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        employer = await self._employer(employer_id)
        jobs, matches = await self._evaluate(employer)
        threshold = self.settings.matched_threshold
        selected = _sort(
            [m for m in matches.values() if min_match <= m.score <= max_match and m.score < threshold],
            sort_by, sort_order,
        )
        summary = self._summary(jobs, matches, selected, min_match, max_match)
        filters = {"min_match": min_match, "max_match": max_match, "sort_by": sort_by, "sort_order": sort_order}
        data = self._payload(employer, selected, page, limit, filters, summary, no_active_jobs=not jobs)
        await self.cache.set(key, data, self.settings.candidates_ttl)
        return data

    async def match_students_for_job(self, job_id: int, threshold: Optional[int] = None) -> Dict[str, Any]:
        """Students covering at least `threshold` percent of one job's requirements."""
        threshold = self.settings.school_match_threshold if threshold is None else threshold
        if not 0 <= threshold <= 100:
            raise ValidationError("threshold must be within 0-100")
        job = await self.session.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        rows = (await self.session.exec(select(JobSkill).where(JobSkill.job_id == job_id))).all()
        need = {s.name: Skill(name=s.name, proficiency=s.level) for s in rows}
        if not need:
            raise ValidationError("Job does not have any required skills defined")

        matched = []
        for student, have in await self._student_pool(public_only=False):
            result = explain(have, need, self.strategy)
            if result["score"] >= threshold:
                matched.append({
                    "student_id": student.id,
                    "name": f"{student.first_name} {student.last_name}".strip(),
                    "email": student.email,
                    "skills": sorted(have),
                    "matched_skills": result["matching_skills"],
                    "missing_skills": result["missing_skills"],
                    "match_percentage": result["score"],
                })
        matched.sort(key=lambda r: (-r["match_percentage"], r["student_id"]))
        return {
            "job": {"id": job.id, "title": job.title, "required_skills": sorted(need)},
            "threshold": threshold,
            "matched_students": matched,
        }
