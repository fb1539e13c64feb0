from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promanage import store
from promanage.components import Components
from promanage.deps import get_components, get_current_user, get_db
from promanage.models import Notification, Profile
from promanage.notifications.service import TaskAssignedPayload, TaskCompletedPayload, TaskDeadlinePayload
from promanage.schemas import NotificationOut, NotificationSendIn, NotifyTaskAssignedIn, NotifyTaskIn, NotifyUserIn

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    type=n.type,
    title=n.title,
    message=n.message,
    link=n.link,
    taskId=n.task_id,
    projectId=n.project_id,
    isRead=bool(n.is_read),
    createdAt=n.created_at,
  )


@router.post("/task-assigned")
async def notify_task_assigned(
  payload: NotifyTaskAssignedIn,
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  info = await store.load_task_assignment(db, payload.taskId)
  if info is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  assignee = await store.get_recipient(db, payload.assigneeId)
  if assignee is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignee not found")
  if not assignee.email:
    return {"success": False, "error": "Assignee email not found"}
  result = await components.notifier.notify_task_assigned(
    TaskAssignedPayload(
      title=info.title,
      description=info.description,
      priority=info.priority,
      deadline=info.deadline,
      project_name=info.project_name,
      manager_name=info.manager_name,
      task_id=info.task_id,
      project_id=info.project_id,
    ),
    assignee.email,
    assignee.full_name,
  )
  return result.as_dict()


@router.post("/task-completed")
async def notify_task_completed(
  payload: NotifyTaskIn,
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  info = await store.load_task_completion(db, payload.taskId)
  if info is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  if info.creator is None or not info.creator.email:
    return {"success": False, "error": "Manager email not found"}
  result = await components.notifier.notify_task_completed(
    TaskCompletedPayload(title=info.title, project_name=info.project_name, project_id=info.project_id, task_id=info.task_id),
    info.creator.email,
    info.creator.full_name,
    info.assignee_name,
  )
  return result.as_dict()


@router.post("/deadline-reminder")
async def notify_deadline_reminder(
  payload: NotifyTaskIn,
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  info = await store.load_task_deadline(db, payload.taskId)
  if info is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found or has no deadline")
  if info.assignee is None or not info.assignee.email:
    return {"success": False, "error": "Assignee email not found"}
  result = await components.notifier.notify_deadline_reminder(
    TaskDeadlinePayload(title=info.title, deadline=info.deadline, task_id=info.task_id, project_id=info.project_id),
    info.assignee.email,
    info.assignee.full_name,
  )
  return result.as_dict()


@router.post("/daily-digest")
async def notify_daily_digest(
  payload: NotifyUserIn,
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  user = await store.get_recipient(db, payload.userId)
  if user is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
  if user.opted_out("dailyDigest"):
    return {"success": False, "message": "Daily digest disabled for user"}
  if not user.email:
    return {"success": False, "error": "User email not found"}
  result = await components.notifier.notify_daily_digest(user.id, user.email, user.full_name)
  return result.as_dict()


@router.post("/daily-digest-all")
async def notify_daily_digest_all(
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  recipients = await store.digest_recipients(db)
  results: list[dict[str, Any]] = []
  for r in recipients:
    if r.opted_out("dailyDigest"):
      continue
    result = await components.notifier.notify_daily_digest(r.id, r.email or "", r.full_name)
    results.append({"userId": r.id, **result.as_dict()})
  return {"success": True, "message": f"Sent {len(results)} daily digests", "results": results}


@router.post("/send")
async def send_notification(
  payload: NotificationSendIn,
  actor: Profile = Depends(get_current_user),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  out = await components.notifier.send_notification(
    payload.userId,
    payload.type,
    payload.title,
    payload.message,
    link=payload.link,
    project_id=payload.projectId,
    task_id=payload.taskId,
  )
  if not out.get("success"):
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=out.get("error") or "Failed to send notification")
  logger.info("notification_sent", actor_id=actor.id, user_id=payload.userId, type=payload.type)
  return out


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
  unreadOnly: bool = False,
  limit: int = 50,
  actor: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
  q = select(Notification).where(Notification.user_id == actor.id)
  if unreadOnly:
    q = q.where(Notification.is_read.is_(False))
  q = q.order_by(Notification.created_at.desc()).limit(max(1, min(int(limit), 200)))
  res = await db.execute(q)
  return [_notification_out(n) for n in res.scalars().all()]


@router.patch("/read-all")
async def mark_all_read(
  actor: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
  res = await db.execute(
    update(Notification).where(Notification.user_id == actor.id, Notification.is_read.is_(False)).values(is_read=True)
  )
  await db.commit()
  return {"success": True, "updated": int(res.rowcount or 0)}


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
  notification_id: str,
  actor: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationOut:
  n = await db.get(Notification, notification_id)
  if n is None or n.user_id != actor.id:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  n.is_read = True
  await db.commit()
  return _notification_out(n)
