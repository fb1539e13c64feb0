from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from zoneinfo import ZoneInfo

import socketio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promanage.ai.providers import AIProvider, get_ai_provider
from promanage.ai.service import TaskAI
from promanage.config import Settings
from promanage.identity import IdentityProvider, build_identity_provider
from promanage.jobs.notification_jobs import build_notification_jobs
from promanage.jobs.scheduler import Scheduler
from promanage.notifications.mailer import Mailer, build_mailer
from promanage.notifications.service import NotificationService
from promanage.realtime.relay import Relay


@dataclass
class Components:
  """Process-wide collaborators, built once at startup and shared by HTTP, socket and job handlers."""

  settings: Settings
  session_factory: async_sessionmaker[AsyncSession]
  mailer: Mailer
  identity: IdentityProvider
  ai: TaskAI
  notifier: NotificationService
  scheduler: Scheduler
  sio: Any
  relay: Relay


def build_components(
  cfg: Settings,
  *,
  session_factory: async_sessionmaker[AsyncSession],
  mailer: Mailer | None = None,
  identity: IdentityProvider | None = None,
  ai_provider: AIProvider | None = None,
  sio: Any = None,
) -> Components:
  tz = ZoneInfo(cfg.scheduler_timezone)
  mailer = mailer if mailer is not None else build_mailer(cfg)
  identity = identity if identity is not None else build_identity_provider(
    cfg.supabase_url, cfg.supabase_service_key, timeout_seconds=cfg.identity_timeout_seconds
  )
  ai = TaskAI(ai_provider if ai_provider is not None else get_ai_provider(cfg), timeout_seconds=cfg.ai_timeout_seconds)
  notifier = NotificationService(
    session_factory=session_factory,
    mailer=mailer,
    client_url=cfg.client_url,
    tz=tz,
    mail_timeout_seconds=cfg.smtp_timeout_seconds + 5,
  )
  scheduler = Scheduler(build_notification_jobs(cfg, session_factory, notifier), tz=tz)
  if sio is None:
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cfg.cors_origin_list() or "*")
  relay = Relay(sio, session_factory=session_factory, notifier=notifier)
  relay.register()
  return Components(
    settings=cfg,
    session_factory=session_factory,
    mailer=mailer,
    identity=identity,
    ai=ai,
    notifier=notifier,
    scheduler=scheduler,
    sio=sio,
    relay=relay,
  )
