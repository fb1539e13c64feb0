from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from promanage.activity import record_activity
from promanage.components import Components
from promanage.config import settings
from promanage.deps import get_components, get_db, require_manager
from promanage.identity import IdentityProviderError, IdentityUser
from promanage.models import Profile
from promanage.notifications.templates import render_welcome
from promanage.rate_limit import rate_limited
from promanage.routers.profile import profile_out
from promanage.schemas import CreateEmployeeIn, CreateEmployeeOut, NotificationPreferences, ProfileOut

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/employees", tags=["employees"])

MIN_PASSWORD_LENGTH = 8


def _invite_config_error(exc: IdentityProviderError) -> bool:
  msg = (exc.message or "").lower()
  return "site url" in msg or "redirect" in msg


async def _ensure_profile(
  db: AsyncSession, *, user: IdentityUser, email: str, full_name: str, mobile: str | None, manager_id: str
) -> None:
  # The hosted database may create the profile from user metadata already.
  if await db.get(Profile, user.id) is not None:
    return
  db.add(
    Profile(
      id=user.id,
      email=email,
      full_name=full_name,
      mobile=mobile,
      role="employee",
      manager_id=manager_id,
      notification_preferences=NotificationPreferences().model_dump(),
    )
  )
  await db.commit()


@router.post(
  "/create-employee",
  response_model=CreateEmployeeOut,
  response_model_exclude_none=True,
  status_code=status.HTTP_201_CREATED,
  dependencies=[Depends(rate_limited("employee-create", lambda: settings.rate_limit_employee_create_per_minute))],
)
async def create_employee(
  payload: CreateEmployeeIn,
  manager: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> CreateEmployeeOut:
  if not (payload.email or "").strip() or not (payload.full_name or "").strip():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and full name required")
  email = payload.email.strip().lower()
  full_name = payload.full_name.strip()
  mobile = (payload.mobile or "").strip() or None
  password = (payload.password or "").strip()

  res = await db.execute(select(Profile.id).where(func.lower(Profile.email) == email))
  if res.scalar_one_or_none():
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists with this email")

  metadata = {"full_name": full_name, "mobile": mobile, "role": "employee", "manager_id": manager.id}
  identity = components.identity
  try:
    if len(password) >= MIN_PASSWORD_LENGTH:
      user = await identity.create_user(email=email, password=password, metadata=metadata, email_confirm=True)
      await _ensure_profile(db, user=user, email=email, full_name=full_name, mobile=mobile, manager_id=manager.id)
      try:
        await components.mailer.send(
          to=email,
          subject="Welcome to ProManage+ - Your Account is Ready",
          html=render_welcome(full_name=full_name, email=email, login_link=components.settings.client_link("/login?role=employee")),
        )
      except Exception as exc:
        logger.warning("welcome_email_failed", email=email, error=str(exc))
      out = CreateEmployeeOut(
        success=True,
        message="Employee created successfully with password",
        userId=user.id,
        email=email,
      )
    else:
      try:
        user = await identity.invite_user(email=email, metadata=metadata, redirect_to=components.settings.client_link("/accept-invite"))
        invite_link = None
        message = "Invitation email sent! Employee will set password via magic link."
      except IdentityProviderError as exc:
        if not _invite_config_error(exc):
          raise
        logger.warning("invite_redirect_rejected", email=email, error=exc.message)
        user = await identity.create_user(email=email, password=None, metadata=metadata, email_confirm=False)
        invite_link = await identity.generate_recovery_link(email=email)
        message = "Invite sent via password reset link. Employee must set password."
      await _ensure_profile(db, user=user, email=email, full_name=full_name, mobile=mobile, manager_id=manager.id)
      out = CreateEmployeeOut(
        success=True,
        message=message,
        userId=user.id,
        email=email,
        isInvite=True,
        inviteLink=invite_link,
      )
  except IdentityProviderError as exc:
    logger.error("employee_create_failed", email=email, error=exc.message, status_code=exc.status_code)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message) from exc

  logger.info("employee_created", email=email, manager_id=manager.id, invite=out.isInvite)
  await record_activity(
    components.session_factory,
    user_id=manager.id,
    action_type="employee_created",
    entity_type="profile",
    entity_id=out.userId,
    description=f"Added {full_name} to the team",
    metadata={"email": email, "invite": out.isInvite},
  )
  return out


@router.get("", response_model=list[ProfileOut])
async def list_employees(
  manager: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
) -> list[ProfileOut]:
  res = await db.execute(
    select(Profile).where(Profile.manager_id == manager.id, Profile.role == "employee").order_by(Profile.created_at.asc())
  )
  return [profile_out(p) for p in res.scalars().all()]
