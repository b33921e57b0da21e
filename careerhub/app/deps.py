# careerhub/app/deps.py
"""
Request-scoped dependencies. Identity arrives already authenticated in the
X-User-Id header; role checks happen here so services stay role-agnostic.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import Settings
from .db import get_session
from .errors import ValidationError
from .models import Employer, Role, User
from .services.cache import Cache
from .services.candidates import CandidateAggregator
from .services.catalog import CatalogService
from .services.chat import ChatService
from .services.matcher import EXACT, FuzzyMatch, ProficiencyWeighted
from .services.notifications import NotificationDispatcher
from .services.realtime import ConnectionManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> Cache:
    return request.app.state.cache


def get_gateway(request: Request) -> ConnectionManager:
    return request.app.state.gateway


async def current_user(
    x_user_id: Optional[int] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> User:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    user = await session.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="unknown user")
    return user


def require_roles(*roles: Role):
    async def _check(user: User = Depends(current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="insufficient role")
        return user
    return _check


async def current_employer(
    user: User = Depends(require_roles(Role.employer)),
    session: AsyncSession = Depends(get_session),
) -> Employer:
    employer = (await session.exec(select(Employer).where(Employer.user_id == user.id))).first()
    if employer is None:
        raise HTTPException(status_code=404, detail="employer profile not found")
    return employer


def get_dispatcher(
    session: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    gateway: ConnectionManager = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
) -> NotificationDispatcher:
    return NotificationDispatcher(session, cache, gateway, settings)


def get_chat(
    session: AsyncSession = Depends(get_session),
    gateway: ConnectionManager = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ChatService:
    return ChatService(session, gateway, dispatcher)


def get_catalog(
    session: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> CatalogService:
    return CatalogService(session, cache, settings, dispatcher)


def get_aggregator(
    weighted: bool = False,
    fuzzy: bool = False,
    session: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> CandidateAggregator:
    if weighted and fuzzy:
        raise ValidationError("weighted and fuzzy scoring cannot be combined")
    if weighted:
        strategy = ProficiencyWeighted(settings.proficiency_partial_credit)
    elif fuzzy:
        strategy = FuzzyMatch(settings.fuzzy_threshold)
    else:
        strategy = EXACT
    return CandidateAggregator(session, cache, settings, strategy)
