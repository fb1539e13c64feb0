from __future__ import annotations

from typing import AsyncIterator

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from promanage.components import Components
from promanage.identity import IdentityProviderError
from promanage.models import Profile

logger = structlog.get_logger(__name__)


def get_components(request: Request) -> Components:
  return request.app.state.components


async def get_db(components: Components = Depends(get_components)) -> AsyncIterator[AsyncSession]:
  async with components.session_factory() as session:
    yield session


def bearer_token(request: Request) -> str:
  auth = request.headers.get("authorization") or ""
  if not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
  return token


async def get_current_user(
  request: Request,
  components: Components = Depends(get_components),
  db: AsyncSession = Depends(get_db),
) -> Profile:
  token = bearer_token(request)
  try:
    user = await components.identity.get_user(token)
  except IdentityProviderError as exc:
    logger.warning("auth_provider_error", error=exc.message)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
  if user is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  profile = await db.get(Profile, user.id)
  if profile is None:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile not found")
  return profile


async def require_manager(user: Profile = Depends(get_current_user)) -> Profile:
  if user.role != "manager":
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manager access only")
  return user
