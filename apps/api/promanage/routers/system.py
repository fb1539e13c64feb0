from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promanage import store
from promanage.components import Components
from promanage.deps import get_components, get_db, require_manager
from promanage.metrics import runtime_metrics
from promanage.models import Profile

router = APIRouter(tags=["system"])


@router.get("/")
async def root(components: Components = Depends(get_components)) -> dict[str, Any]:
  return {
    "message": "ProManage+ API Server",
    "timestamp": datetime.now(timezone.utc).isoformat(),
    "status": "running",
    "version": components.settings.app_version,
  }


@router.get("/health")
async def health(components: Components = Depends(get_components)) -> dict[str, Any]:
  return {
    "ok": True,
    "status": "healthy",
    "uptimeSeconds": runtime_metrics.uptime_seconds(),
    "cronJobsEnabled": components.settings.enable_cron_jobs,
    "socketConnections": len(components.relay.connections),
    "metrics": runtime_metrics.snapshot(),
  }


@router.get("/api/online-users")
async def online_users(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
  rows = await store.online_presence(db)
  users = [{"user_id": r.user_id, "is_online": r.is_online, "last_seen": r.last_seen} for r in rows]
  return {"users": users, "count": len(users)}


@router.get("/api/jobs")
async def list_jobs(
  _: Profile = Depends(require_manager),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  return {"enabled": components.settings.enable_cron_jobs, "jobs": components.scheduler.status()}


@router.post("/api/jobs/{name}/run")
async def run_job(
  name: str,
  _: Profile = Depends(require_manager),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  report = await components.scheduler.run_now(name)
  return {"success": True, "job": name, **report.as_dict()}
