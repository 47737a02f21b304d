import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import structlog

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router, ensure_role
from .routes.clients import router as clients_router
from .routes.jobs import router as jobs_router
from .routes.attendance import router as attendance_router
from .routes.timesheets import router as timesheets_router
from .routes.settings import router as settings_router
from .routes.notifications import router as notifications_router
from .routes.checklists import router as checklists_router
from .routes.job_tasks import router as job_tasks_router
from .routes.issues import router as issues_router
from .routes.schedule import router as schedule_router
from .services.job_status import Role


logger = structlog.get_logger(__name__)


def seed_roles() -> None:
    db = SessionLocal()
    try:
        for role in Role:
            ensure_role(db, role.value)
        db.commit()
    finally:
        db.close()


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(clients_router)
    app.include_router(jobs_router)
    app.include_router(attendance_router)
    app.include_router(timesheets_router)
    app.include_router(settings_router)
    app.include_router(notifications_router)
    app.include_router(checklists_router)
    app.include_router(job_tasks_router)
    app.include_router(issues_router)
    app.include_router(schedule_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment, tz_default=settings.tz_default)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            seed_roles()
            logger.info("startup_tables_ready", tables=len(Base.metadata.tables))

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
