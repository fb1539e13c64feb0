from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from promanage.config import settings
from promanage.models import Base


def make_engine(url: str, *, timeout_seconds: int = 15, **kwargs: Any) -> AsyncEngine:
  connect_args: dict[str, Any] = dict(kwargs.pop("connect_args", {}) or {})
  if url.startswith("postgresql+asyncpg"):
    connect_args.setdefault("command_timeout", timeout_seconds)
  return create_async_engine(url, pool_pre_ping=True, connect_args=connect_args, **kwargs)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async def init_models(bind: AsyncEngine) -> None:
  async with bind.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)


engine = make_engine(settings.database_url, timeout_seconds=settings.database_timeout_seconds)
SessionLocal = make_sessionmaker(engine)
