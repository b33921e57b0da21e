# careerhub/app/config.py
import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Settings(BaseModel):
    """
    Runtime settings. Matching thresholds and cache TTLs are tuning constants,
    kept here so deployments and tests can override them.
    """
    database_url: str = "sqlite+aiosqlite:///./careerhub.db"
    cache_backend: str = "memory"          # memory | redis | none
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    # matching
    matched_threshold: int = 95
    potential_min_match: int = 20
    potential_max_match: int = 94
    school_match_threshold: int = 80
    proficiency_partial_credit: float = 0.5
    fuzzy_threshold: float = 0.8

    # pagination
    default_page_limit: int = 10
    max_page_limit: int = 100

    # cache TTLs (seconds)
    jobs_ttl: int = 180
    courses_ttl: int = 300
    notifications_ttl: int = 120
    notification_count_ttl: int = 120
    candidates_ttl: int = 180

    # notifications
    recent_window_hours: int = 24

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS")
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            cache_backend=os.getenv("CACHE_BACKEND", defaults.cache_backend).strip().lower(),
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else defaults.cors_origins,
            matched_threshold=_env_int("MATCHED_THRESHOLD", defaults.matched_threshold),
            potential_min_match=_env_int("POTENTIAL_MIN_MATCH", defaults.potential_min_match),
            potential_max_match=_env_int("POTENTIAL_MAX_MATCH", defaults.potential_max_match),
            school_match_threshold=_env_int("SCHOOL_MATCH_THRESHOLD", defaults.school_match_threshold),
            proficiency_partial_credit=_env_float("PROFICIENCY_PARTIAL_CREDIT", defaults.proficiency_partial_credit),
            fuzzy_threshold=_env_float("FUZZY_THRESHOLD", defaults.fuzzy_threshold),
            default_page_limit=_env_int("DEFAULT_PAGE_LIMIT", defaults.default_page_limit),
            max_page_limit=_env_int("MAX_PAGE_LIMIT", defaults.max_page_limit),
            jobs_ttl=_env_int("JOBS_CACHE_TTL", defaults.jobs_ttl),
            courses_ttl=_env_int("COURSES_CACHE_TTL", defaults.courses_ttl),
            notifications_ttl=_env_int("NOTIFICATIONS_CACHE_TTL", defaults.notifications_ttl),
            notification_count_ttl=_env_int("NOTIFICATION_COUNT_CACHE_TTL", defaults.notification_count_ttl),
            candidates_ttl=_env_int("CANDIDATES_CACHE_TTL", defaults.candidates_ttl),
            recent_window_hours=_env_int("RECENT_WINDOW_HOURS", defaults.recent_window_hours),
        )


_settings = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
