from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promanage.deps import get_current_user, get_db
from promanage.models import Profile
from promanage.schemas import NotificationPreferences, ProfileOut, ProfileUpdateIn

router = APIRouter(prefix="/api/profile", tags=["profile"])


def profile_out(p: Profile) -> ProfileOut:
  prefs = p.notification_preferences if isinstance(p.notification_preferences, dict) else {}
  return ProfileOut(
    id=p.id,
    email=p.email,
    fullName=p.full_name,
    mobile=p.mobile,
    role=p.role,
    managerId=p.manager_id,
    notificationPreferences={**NotificationPreferences().model_dump(), **prefs},
  )


@router.get("", response_model=ProfileOut)
async def get_profile(user: Profile = Depends(get_current_user)) -> ProfileOut:
  return profile_out(user)


@router.put("", response_model=ProfileOut)
async def update_profile(
  payload: ProfileUpdateIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProfileOut:
  if payload.fullName is not None:
    user.full_name = payload.fullName.strip()
  if "mobile" in payload.model_fields_set:
    user.mobile = (payload.mobile or "").strip() or None
  if payload.notificationPreferences is not None:
    current = user.notification_preferences if isinstance(user.notification_preferences, dict) else {}
    # Reassign so the JSON column is flagged dirty.
    user.notification_preferences = {**current, **payload.notificationPreferences}
  await db.commit()
  await db.refresh(user)
  return profile_out(user)
