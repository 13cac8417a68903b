# src/SKPI/main.py
from __future__ import annotations

import logging
import logging.config
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from SKPI.app_logger import get_logger
from SKPI.core.config import settings
from SKPI.db.session import get_sessionmaker
from SKPI.errors import InvalidKpiSettingsError, TeacherNotFoundError
from SKPI.api.routers.health import router as health_router
from SKPI.api.routers.kpi import router as kpi_router
from SKPI.services._helpers import utcnow
from SKPI.services.kpi_scheduler import KpiScheduler
from SKPI.services.kpi_settings import KpiSettingsProvider


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            # include fields you want searchable in ES
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "":               {"handlers": ["console"], "level": "INFO"},
        "uvicorn":        {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.error":  {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

logging.config.dictConfig(LOGGING)
log = get_logger("main")


def _default_session_factory():
    return get_sessionmaker()()


def create_app(
    *,
    session_factory: Optional[Callable] = None,
    settings_provider: Optional[KpiSettingsProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    provider = settings_provider or KpiSettingsProvider(clock=clock)
    scheduler = KpiScheduler(session_factory or _default_session_factory, provider, clock=clock)
    run_scheduler = settings.KPI_SCHEDULER_ENABLED if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ---------------- STARTUP ----------------
        if run_scheduler:
            scheduler.start()
        log.info("[startup] %s %s ready (scheduler %s)", settings.APP_NAME, settings.APP_VERSION,
                 "on" if run_scheduler else "off")
        yield
        # ---------------- SHUTDOWN ----------------
        await scheduler.stop()

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings_provider = provider
    app.state.scheduler = scheduler
    app.state.clock = clock

    @app.exception_handler(TeacherNotFoundError)
    async def teacher_not_found_handler(request: Request, exc: TeacherNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidKpiSettingsError)
    async def invalid_settings_handler(request: Request, exc: InvalidKpiSettingsError):
        log.warning("rejected KPI settings on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.include_router(health_router)
    app.include_router(kpi_router)
    return app


app = create_app()
