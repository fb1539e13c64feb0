from __future__ import annotations

from time import monotonic

import socketio
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from promanage.components import Components, build_components
from promanage.config import settings
from promanage.db import SessionLocal, engine, init_models
from promanage.identity import IdentityProviderError
from promanage.jobs.scheduler import JobAlreadyRunning, UnknownJob
from promanage.log import setup_logging
from promanage.metrics import runtime_metrics
from promanage.routers.ai import router as ai_router
from promanage.routers.employees import router as employees_router
from promanage.routers.notifications import router as notifications_router
from promanage.routers.profile import router as profile_router
from promanage.routers.projects import router as projects_router
from promanage.routers.system import router as system_router
from promanage.routers.tasks import router as tasks_router

logger = structlog.get_logger(__name__)


def create_app(components: Components) -> FastAPI:
  cfg = components.settings
  app = FastAPI(title="ProManage+ API", version=cfg.app_version)
  app.state.components = components

  @app.exception_handler(IdentityProviderError)
  async def _identity_error_handler(_, exc: IdentityProviderError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": exc.message})

  @app.exception_handler(JobAlreadyRunning)
  async def _job_running_handler(_, exc: JobAlreadyRunning) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": f"Job {exc} is already running"})

  @app.exception_handler(UnknownJob)
  async def _unknown_job_handler(_, exc: UnknownJob) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": f"Unknown job: {exc.args[0]}"})

  app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.cors_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )

  @app.middleware("http")
  async def _request_metrics_middleware(request, call_next):
    start = monotonic()
    response = await call_next(request)
    elapsed_ms = (monotonic() - start) * 1000.0
    runtime_metrics.observe_request(response.status_code, elapsed_ms)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response

  app.include_router(system_router)
  app.include_router(ai_router)
  app.include_router(notifications_router)
  app.include_router(employees_router)
  app.include_router(profile_router)
  app.include_router(projects_router)
  app.include_router(tasks_router)

  @app.on_event("startup")
  async def _startup() -> None:
    if cfg.enable_cron_jobs:
      components.scheduler.start()
    logger.info("api_started", version=cfg.app_version, cron_jobs=cfg.enable_cron_jobs, timezone=cfg.scheduler_timezone)

  @app.on_event("shutdown")
  async def _shutdown() -> None:
    await components.scheduler.stop()

  return app


setup_logging(settings)
components = build_components(settings, session_factory=SessionLocal)
app = create_app(components)


@app.on_event("startup")
async def _create_dev_schema() -> None:
  # Local SQLite runs own their schema; hosted Postgres is migrated elsewhere.
  if settings.database_url.startswith("sqlite"):
    await init_models(engine)


# Serve with: uvicorn promanage.main:asgi_app
asgi_app = socketio.ASGIApp(components.sio, other_asgi_app=app)
