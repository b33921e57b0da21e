# careerhub/app/services/matcher.py
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Union
import re

from pydantic import BaseModel, field_validator
from rapidfuzz.distance import Levenshtein

from ..models import Proficiency


def normalize_skill_name(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").strip().lower())


class Skill(BaseModel):
    """A skill name plus an optional proficiency. Identity is the normalized name."""
    name: str
    proficiency: Optional[Proficiency] = None

    @field_validator("name")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_skill_name(v)


SkillLike = Union[Skill, str]
SkillSet = Dict[str, Skill]


def skill_set(skills: Iterable[SkillLike]) -> SkillSet:
    """
    Build a set keyed by normalized name. Plain strings are accepted; empty names
    are dropped; a repeated name replaces the earlier entry.
    """
    out: SkillSet = {}
    for s in skills or []:
        skill = Skill(name=s) if isinstance(s, str) else s
        if not skill.name:
            continue
        out[skill.name] = skill
    return out


def _as_set(skills) -> SkillSet:
    if isinstance(skills, dict):
        return skills
    return skill_set(skills)


class ScoringStrategy:
    """Credit in [0, 1] a student earns against one required skill."""
    name = "base"

    def credit(self, have: Optional[Skill], need: Skill) -> Fraction:
        raise NotImplementedError

    def best_credit(self, have: SkillSet, need: Skill) -> Fraction:
        return self.credit(have.get(need.name), need)


class ExactMatch(ScoringStrategy):
    name = "exact"

    def credit(self, have: Optional[Skill], need: Skill) -> Fraction:
        return Fraction(1) if have is not None else Fraction(0)


class ProficiencyWeighted(ScoringStrategy):
    """
    Full credit when the student's level meets the requirement, `partial_credit`
    one level below, nothing further below. A requirement without a level is
    satisfied by presence; a student skill without a level counts as Beginner.
    """
    name = "proficiency"

    def __init__(self, partial_credit: float = 0.5):
        if not 0 <= partial_credit <= 1:
            raise ValueError("partial_credit must be within [0, 1]")
        self.partial_credit = Fraction(partial_credit).limit_denominator(1000)

    def credit(self, have: Optional[Skill], need: Skill) -> Fraction:
        if have is None:
            return Fraction(0)
        if need.proficiency is None:
            return Fraction(1)
        have_rank = (have.proficiency or Proficiency.beginner).rank
        gap = need.proficiency.rank - have_rank
        if gap <= 0:
            return Fraction(1)
        if gap == 1:
            return self.partial_credit
        return Fraction(0)


# shorthand -> canonical name; two names match as abbreviations when they share a canonical form
ABBREVIATIONS = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "c#": "csharp",
    "c++": "cplusplus",
    "css3": "css",
    "html5": "html",
    "node": "node.js",
    "nodejs": "node.js",
    "react": "reactjs",
    "vue": "vuejs",
    "angular": "angularjs",
    "ml": "machine learning",
    "ai": "artificial intelligence",
    "nlp": "natural language processing",
    "db": "database",
    "sql": "structured query language",
    "aws s3": "aws",
}


def _canonical(name: str) -> str:
    return ABBREVIATIONS.get(name, name)


class FuzzyMatch(ScoringStrategy):
    """
    Credits near misses between skill names, best over the student's skills:

      exact name                          1
      abbreviation ("js" / "javascript")  0.95
      whole-word containment              0.9
      Levenshtein similarity >= threshold similarity * 0.7
    """
    name = "fuzzy"

    ABBREVIATION_CREDIT = Fraction(95, 100)
    CONTAINS_CREDIT = Fraction(9, 10)
    SIMILARITY_WEIGHT = Fraction(7, 10)

    def __init__(self, threshold: float = 0.8):
        if not 0 < threshold <= 1:
            raise ValueError("threshold must be within (0, 1]")
        self.threshold = threshold

    def credit(self, have: Optional[Skill], need: Skill) -> Fraction:
        if have is None:
            return Fraction(0)
        a, b = have.name, need.name
        if a == b:
            return Fraction(1)
        if _canonical(a) == _canonical(b):
            return self.ABBREVIATION_CREDIT
        words_a, words_b = set(a.split()), set(b.split())
        if words_a <= words_b or words_b <= words_a:
            return self.CONTAINS_CREDIT
        similarity = Levenshtein.normalized_similarity(a, b)
        if similarity >= self.threshold:
            return Fraction(similarity).limit_denominator(1000) * self.SIMILARITY_WEIGHT
        return Fraction(0)

    def best_credit(self, have: SkillSet, need: Skill) -> Fraction:
        exact = have.get(need.name)
        if exact is not None:
            return Fraction(1)
        return max((self.credit(skill, need) for skill in have.values()), default=Fraction(0))


EXACT = ExactMatch()


def _round_half_up(value: Fraction) -> int:
    return int(value + Fraction(1, 2))


def score(student_skills, job_skills, strategy: ScoringStrategy = EXACT) -> int:
    """
    Percentage of the job's required skills the student covers, 0-100.

    A job with no required skills scores 100. Rounding never lifts a partial
    match to 100: only full credit on every requirement scores 100.
    """
    have = _as_set(student_skills)
    need = _as_set(job_skills)
    if not need:
        return 100

    credits = [strategy.best_credit(have, req) for req in need.values()]
    total = sum(credits, Fraction(0))
    pct = _round_half_up(total * 100 / len(need))
    if pct >= 100 and any(c < 1 for c in credits):
        return 99
    return max(0, min(100, pct))


def explain(student_skills, job_skills, strategy: ScoringStrategy = EXACT) -> Dict[str, Union[int, List[str]]]:
    """
    Returns:
      {
        "score": int (0-100),
        "matching_skills": [...],
        "missing_skills": [...],
      }
    """
    have = _as_set(student_skills)
    need = _as_set(job_skills)
    credited = {name for name, req in need.items() if strategy.best_credit(have, req) > 0}
    return {
        "score": score(have, need, strategy),
        "matching_skills": sorted(credited),
        "missing_skills": sorted(set(need).difference(credited)),
    }
