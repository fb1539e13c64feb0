from __future__ import annotations

from typing import Any

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promanage.models import ActivityLog

logger = structlog.get_logger(__name__)


async def record_activity(
  session_factory: async_sessionmaker[AsyncSession],
  *,
  user_id: str | None,
  action_type: str,
  entity_type: str,
  entity_id: str | None,
  description: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  # Runs after the primary write has committed; failures never reach the caller.
  try:
    async with session_factory() as db:
      db.add(
        ActivityLog(
          user_id=user_id,
          action_type=action_type,
          entity_type=entity_type,
          entity_id=entity_id,
          description=description,
          meta=jsonable_encoder(metadata) if metadata else None,
        )
      )
      await db.commit()
  except Exception:
    logger.exception("activity_log_failed", action_type=action_type, entity_id=entity_id)
