from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Coroutine

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from promanage import store
from promanage.activity import record_activity
from promanage.components import Components
from promanage.deps import get_components, get_current_user, get_db, require_manager
from promanage.models import Profile, Project, Task, utcnow
from promanage.notifications.service import TaskAssignedPayload, TaskCompletedPayload, completion_notice
from promanage.schemas import TaskCreateIn, TaskOut, TaskStatusIn, TaskUpdateIn, parse_dt_utc

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

VALID_STATUSES = ("todo", "in-progress", "done")

# Strong references for fire-and-forget email sends.
_background: set[asyncio.Task] = set()


def _spawn(coro: Coroutine[Any, Any, Any]) -> None:
  t = asyncio.create_task(coro)
  _background.add(t)
  t.add_done_callback(_background.discard)


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    projectId=t.project_id,
    title=t.title,
    description=t.description,
    assigneeId=t.assignee_id,
    createdBy=t.created_by,
    status=t.status,
    priority=t.priority,
    deadline=t.deadline,
    completedAt=t.completed_at,
    aiAnalysis=t.ai_analysis,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _managed_project_ids(user: Profile) -> Any:
  return select(Project.id).where(or_(Project.created_by == user.id, Project.manager_id == user.id))


def _visible(user: Profile) -> Any:
  # Managers see tasks they created or that sit in their projects; others see their own work.
  if user.role == "manager":
    return or_(Task.created_by == user.id, Task.project_id.in_(_managed_project_ids(user)))
  return or_(Task.assignee_id == user.id, Task.created_by == user.id)


async def _get_task_or_404(db: AsyncSession, task_id: str, user: Profile) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id, _visible(user)))
  t = res.scalar_one_or_none()
  if t is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t


def _parse_ai_deadline(value: Any) -> datetime | None:
  try:
    d = parse_dt_utc(value)
  except ValueError:
    return None
  return d if isinstance(d, datetime) else None


async def _add_to_project_chat(db: AsyncSession, *, project_id: str | None, user_id: str) -> None:
  if not project_id:
    return
  try:
    room = await store.project_room(db, project_id)
    if room is not None and await store.ensure_participant(db, room_id=room.id, user_id=user_id):
      await db.commit()
      logger.info("chat_participant_added", room_id=room.id, user_id=user_id)
  except Exception:
    await db.rollback()
    logger.exception("chat_participant_failed", project_id=project_id, user_id=user_id)


async def _notify_assignee(components: Components, db: AsyncSession, t: Task, *, assignee_id: str, actor: Profile) -> None:
  assignee = await store.get_recipient(db, assignee_id)
  project = await db.get(Project, t.project_id) if t.project_id else None
  try:
    await components.notifier.create_inapp(
      user_id=assignee_id,
      type="task_assigned",
      title=f"New Task: {t.title}",
      message=f"You have been assigned a new task in {project.name if project else 'a project'}",
      link="/employee-tasks",
      task_id=t.id,
      project_id=t.project_id,
    )
  except Exception:
    logger.exception("inapp_notification_failed", user_id=assignee_id, type="task_assigned")
  if assignee is None or not assignee.email:
    return
  _spawn(
    components.notifier.notify_task_assigned(
      TaskAssignedPayload(
        title=t.title,
        description=t.description,
        priority=t.priority,
        deadline=t.deadline,
        project_name=project.name if project else None,
        manager_name=actor.full_name,
        task_id=t.id,
        project_id=t.project_id,
      ),
      assignee.email,
      assignee.full_name,
    )
  )


async def _notify_unassigned(components: Components, t: Task, *, previous_id: str) -> None:
  try:
    await components.notifier.create_inapp(
      user_id=previous_id,
      type="task_unassigned",
      title=f"Task Reassigned: {t.title}",
      message=f"\"{t.title}\" has been reassigned to another team member",
      link="/employee-tasks",
      task_id=t.id,
      project_id=t.project_id,
    )
  except Exception:
    logger.exception("inapp_notification_failed", user_id=previous_id, type="task_unassigned")


async def _notify_completed(components: Components, db: AsyncSession, t: Task) -> None:
  info = await store.load_task_completion(db, t.id)
  if info is None or info.creator is None:
    return
  employee = info.assignee_name or "Team member"
  title, message = completion_notice(employee, info.title)
  try:
    await components.notifier.create_inapp(
      user_id=info.creator.id,
      type="task_completed",
      title=title,
      message=message,
      link=f"/projects/{info.project_id}/tasks" if info.project_id else None,
      task_id=info.task_id,
      project_id=info.project_id,
    )
  except Exception:
    logger.exception("inapp_notification_failed", user_id=info.creator.id, type="task_completed")
  if not info.creator.email:
    return
  _spawn(
    components.notifier.notify_task_completed(
      TaskCompletedPayload(title=info.title, project_name=info.project_name, project_id=info.project_id, task_id=info.task_id),
      info.creator.email,
      info.creator.full_name,
      employee,
    )
  )


def _apply_status(t: Task, new_status: str) -> bool:
  """Sets status and completion time; returns True on a transition into done."""
  became_done = new_status == "done" and t.status != "done"
  t.status = new_status
  if became_done:
    t.completed_at = utcnow()
  elif new_status != "done":
    t.completed_at = None
  return became_done


@router.get("", response_model=list[TaskOut])
async def list_tasks(
  projectId: str | None = None,
  assigneeId: str | None = None,
  status_filter: str | None = Query(default=None, alias="status"),
  priority: str | None = None,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  q = select(Task).where(_visible(user))
  if projectId:
    q = q.where(Task.project_id == projectId)
  if assigneeId:
    q = q.where(Task.assignee_id == assigneeId)
  if status_filter:
    q = q.where(Task.status == status_filter)
  if priority:
    q = q.where(Task.priority == priority)
  res = await db.execute(q.order_by(Task.created_at.desc()))
  return [_task_out(t) for t in res.scalars().all()]


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  return _task_out(await _get_task_or_404(db, task_id, user))


@router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  payload: TaskCreateIn,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> TaskOut:
  title = payload.title.strip()
  if not title:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task title is required")
  res = await db.execute(select(Project.id).where(Project.id == payload.projectId, Project.id.in_(_managed_project_ids(user))))
  if res.first() is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
  if payload.assigneeId and await db.get(Profile, payload.assigneeId) is None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid assignee")

  priority = payload.priority
  deadline = payload.deadline
  analysis: dict[str, Any] | None = None
  if payload.useAI:
    result = await components.ai.analyze_task(title, payload.description or "")
    analysis = result.get("data")
    if analysis:
      priority = analysis.get("priority") or priority
      deadline = _parse_ai_deadline(analysis.get("suggestedDeadline")) or deadline

  t = Task(
    project_id=payload.projectId,
    title=title,
    description=payload.description,
    assignee_id=payload.assigneeId,
    created_by=user.id,
    status=payload.status,
    priority=priority,
    deadline=deadline,
    completed_at=utcnow() if payload.status == "done" else None,
    ai_analysis=analysis,
  )
  db.add(t)
  await db.commit()
  await db.refresh(t)
  logger.info("task_created", task_id=t.id, project_id=t.project_id, assignee_id=t.assignee_id, ai=bool(analysis))

  if t.assignee_id and t.assignee_id != user.id:
    await _notify_assignee(components, db, t, assignee_id=t.assignee_id, actor=user)
    await _add_to_project_chat(db, project_id=t.project_id, user_id=t.assignee_id)
  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="task_created",
    entity_type="task",
    entity_id=t.id,
    description=f"Created task \"{t.title}\"",
    metadata={"projectId": t.project_id, "assigneeId": t.assignee_id},
  )
  return _task_out(t)


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> TaskOut:
  t = await _get_task_or_404(db, task_id, user)
  fields = payload.model_fields_set
  previous_assignee = t.assignee_id

  if payload.title is not None:
    t.title = payload.title.strip()
  if "description" in fields:
    t.description = payload.description
  if payload.priority is not None:
    t.priority = payload.priority
  if "deadline" in fields:
    t.deadline = payload.deadline
  if "assigneeId" in fields:
    if payload.assigneeId and await db.get(Profile, payload.assigneeId) is None:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid assignee")
    t.assignee_id = payload.assigneeId or None
  became_done = _apply_status(t, payload.status) if payload.status is not None else False
  await db.commit()
  await db.refresh(t)

  reassigned = bool(t.assignee_id) and t.assignee_id != previous_assignee
  if reassigned and t.assignee_id != user.id:
    await _notify_assignee(components, db, t, assignee_id=t.assignee_id, actor=user)
    await _add_to_project_chat(db, project_id=t.project_id, user_id=t.assignee_id)
  if previous_assignee and t.assignee_id != previous_assignee:
    await _notify_unassigned(components, t, previous_id=previous_assignee)
  if became_done and t.assignee_id:
    await _notify_completed(components, db, t)
  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="task_updated",
    entity_type="task",
    entity_id=t.id,
    description=f"Updated task \"{t.title}\"",
    metadata={"fields": sorted(fields)},
  )
  return _task_out(t)


@router.patch("/{task_id}/status", response_model=TaskOut)
async def update_task_status(
  task_id: str,
  payload: TaskStatusIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> TaskOut:
  if payload.status not in VALID_STATUSES:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")
  t = await _get_task_or_404(db, task_id, user)
  became_done = _apply_status(t, payload.status)
  await db.commit()
  await db.refresh(t)
  logger.info("task_status_updated", task_id=t.id, status=t.status, actor_id=user.id)

  if became_done and t.created_by:
    await _notify_completed(components, db, t)
  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="task_status_changed",
    entity_type="task",
    entity_id=t.id,
    description=f"Moved \"{t.title}\" to {t.status}",
    metadata={"status": t.status},
  )
  return _task_out(t)


@router.delete("/{task_id}")
async def delete_task(
  task_id: str,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  t = await _get_task_or_404(db, task_id, user)
  title = t.title
  await db.delete(t)
  await db.commit()
  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="task_deleted",
    entity_type="task",
    entity_id=task_id,
    description=f"Deleted task \"{title}\"",
  )
  return {"success": True, "message": "Task deleted successfully"}
