import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from careerhub.app.api.candidates import router as profiles_router
from careerhub.app.api.chat import router as chat_router
from careerhub.app.api.jobs import router as jobs_router
from careerhub.app.api.matches import router as matches_router
from careerhub.app.api.notifications import router as notifications_router
from careerhub.app.api.realtime import router as realtime_router
from .config import Settings, get_settings
from .db import init_db
from .errors import AppError
from .services.cache import Cache, build_cache
from .services.realtime import ConnectionManager

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, cache: Optional[Cache] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="careerhub")
    app.state.settings = settings
    app.state.cache = cache if cache is not None else build_cache(settings)
    app.state.gateway = ConnectionManager()

    app.include_router(matches_router)
    app.include_router(notifications_router)
    app.include_router(chat_router)
    app.include_router(jobs_router)
    app.include_router(profiles_router)
    app.include_router(realtime_router)

    @app.on_event("startup")
    async def on_startup():
        await init_db()

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(SQLAlchemyError)
    async def db_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("database failure on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/")
    def root():
        return {"message": "careerhub backend is running"}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


app = create_app()
