from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from promanage.models import (
  ChatMessage,
  ChatParticipant,
  ChatRoom,
  Notification,
  Profile,
  Project,
  Task,
  UserPresence,
  utcnow,
)

OPEN_STATUSES = ("todo", "in-progress")


@dataclass(frozen=True)
class Recipient:
  id: str
  email: str | None
  full_name: str | None
  preferences: dict[str, Any] = field(default_factory=dict)

  def opted_out(self, flag: str) -> bool:
    # Only an explicit false disables a channel; absent keys mean enabled.
    return self.preferences.get(flag) is False


@dataclass(frozen=True)
class TaskAssignment:
  task_id: str
  title: str
  description: str | None
  priority: str
  deadline: datetime | None
  project_id: str | None
  project_name: str | None
  manager_name: str | None


@dataclass(frozen=True)
class TaskCompletion:
  task_id: str
  title: str
  project_id: str | None
  project_name: str | None
  assignee_name: str | None
  creator: Recipient | None


@dataclass(frozen=True)
class TaskDeadline:
  task_id: str
  title: str
  deadline: datetime
  project_id: str | None
  assignee: Recipient | None


@dataclass(frozen=True)
class DigestTask:
  title: str
  status: str
  deadline: datetime | None
  updated_at: datetime


def _recipient(p: Profile | None) -> Recipient | None:
  if p is None:
    return None
  prefs = p.notification_preferences if isinstance(p.notification_preferences, dict) else {}
  return Recipient(id=p.id, email=p.email or None, full_name=p.full_name, preferences=dict(prefs))


async def get_recipient(db: AsyncSession, user_id: str) -> Recipient | None:
  return _recipient(await db.get(Profile, user_id))


async def load_task_assignment(db: AsyncSession, task_id: str) -> TaskAssignment | None:
  creator = aliased(Profile)
  res = await db.execute(
    select(Task, Project.name, creator.full_name)
    .outerjoin(Project, Project.id == Task.project_id)
    .outerjoin(creator, creator.id == Task.created_by)
    .where(Task.id == task_id)
  )
  row = res.first()
  if not row:
    return None
  t, project_name, manager_name = row
  return TaskAssignment(
    task_id=t.id,
    title=t.title,
    description=t.description,
    priority=t.priority,
    deadline=t.deadline,
    project_id=t.project_id,
    project_name=project_name,
    manager_name=manager_name,
  )


async def load_task_completion(db: AsyncSession, task_id: str) -> TaskCompletion | None:
  creator = aliased(Profile)
  assignee = aliased(Profile)
  res = await db.execute(
    select(Task, Project.name, assignee.full_name, creator)
    .outerjoin(Project, Project.id == Task.project_id)
    .outerjoin(assignee, assignee.id == Task.assignee_id)
    .outerjoin(creator, creator.id == Task.created_by)
    .where(Task.id == task_id)
  )
  row = res.first()
  if not row:
    return None
  t, project_name, assignee_name, creator_row = row
  return TaskCompletion(
    task_id=t.id,
    title=t.title,
    project_id=t.project_id,
    project_name=project_name,
    assignee_name=assignee_name,
    creator=_recipient(creator_row),
  )


def _deadline_query():
  assignee = aliased(Profile)
  return select(Task, assignee).outerjoin(assignee, assignee.id == Task.assignee_id)


def _to_deadline(t: Task, assignee: Profile | None) -> TaskDeadline:
  return TaskDeadline(
    task_id=t.id,
    title=t.title,
    deadline=t.deadline,
    project_id=t.project_id,
    assignee=_recipient(assignee),
  )


async def load_task_deadline(db: AsyncSession, task_id: str) -> TaskDeadline | None:
  q = _deadline_query()
  res = await db.execute(q.where(Task.id == task_id))
  row = res.first()
  if not row or row[0].deadline is None:
    return None
  return _to_deadline(row[0], row[1])


async def tasks_due_between(db: AsyncSession, start: datetime, end: datetime) -> list[TaskDeadline]:
  q = _deadline_query()
  res = await db.execute(
    q.where(
      Task.status.in_(OPEN_STATUSES),
      Task.deadline.is_not(None),
      Task.deadline >= start,
      Task.deadline < end,
    ).order_by(Task.deadline.asc())
  )
  return [_to_deadline(t, a) for t, a in res.all()]


async def tasks_overdue(db: AsyncSession, before: datetime) -> list[TaskDeadline]:
  q = _deadline_query()
  res = await db.execute(
    q.where(
      Task.status.in_(OPEN_STATUSES),
      Task.deadline.is_not(None),
      Task.deadline < before,
    ).order_by(Task.deadline.asc())
  )
  return [_to_deadline(t, a) for t, a in res.all()]


async def digest_recipients(db: AsyncSession) -> list[Recipient]:
  res = await db.execute(select(Profile).where(Profile.email.is_not(None)).order_by(Profile.created_at.asc()))
  return [r for r in (_recipient(p) for p in res.scalars().all()) if r is not None and r.email]


async def user_tasks(db: AsyncSession, user_id: str) -> list[DigestTask]:
  res = await db.execute(select(Task).where(Task.assignee_id == user_id))
  return [
    DigestTask(title=t.title, status=t.status, deadline=t.deadline, updated_at=t.updated_at)
    for t in res.scalars().all()
  ]


async def insert_notification(
  db: AsyncSession,
  *,
  user_id: str,
  type: str,
  title: str,
  message: str,
  link: str | None = None,
  task_id: str | None = None,
  project_id: str | None = None,
) -> Notification:
  n = Notification(
    user_id=user_id,
    type=type,
    title=title,
    message=message,
    link=link,
    task_id=task_id,
    project_id=project_id,
    is_read=False,
  )
  db.add(n)
  await db.flush()
  return n


async def upsert_presence(db: AsyncSession, *, user_id: str, is_online: bool, now: datetime | None = None) -> None:
  await db.merge(UserPresence(user_id=user_id, is_online=is_online, last_seen=now or utcnow()))


async def online_presence(db: AsyncSession) -> list[UserPresence]:
  res = await db.execute(select(UserPresence).where(UserPresence.is_online.is_(True)).order_by(UserPresence.last_seen.desc()))
  return list(res.scalars().all())


async def insert_chat_message(
  db: AsyncSession,
  *,
  room_id: str,
  sender_id: str,
  message_text: str | None,
  message_type: str = "text",
  file_url: str | None = None,
  file_name: str | None = None,
  file_size: int | None = None,
) -> ChatMessage:
  m = ChatMessage(
    room_id=room_id,
    sender_id=sender_id,
    message_text=message_text,
    message_type=message_type or "text",
    file_url=file_url,
    file_name=file_name,
    file_size=file_size,
  )
  db.add(m)
  await db.flush()
  return m


async def touch_participant_read(db: AsyncSession, *, room_id: str, user_id: str, now: datetime | None = None) -> int:
  res = await db.execute(
    update(ChatParticipant)
    .where(ChatParticipant.room_id == room_id, ChatParticipant.user_id == user_id)
    .values(last_read_at=now or utcnow())
  )
  return int(res.rowcount or 0)


async def project_room(db: AsyncSession, project_id: str) -> ChatRoom | None:
  res = await db.execute(select(ChatRoom).where(ChatRoom.project_id == project_id))
  return res.scalar_one_or_none()


async def ensure_participant(db: AsyncSession, *, room_id: str, user_id: str) -> bool:
  res = await db.execute(
    select(ChatParticipant.id).where(ChatParticipant.room_id == room_id, ChatParticipant.user_id == user_id)
  )
  if res.scalar_one_or_none():
    return False
  db.add(ChatParticipant(room_id=room_id, user_id=user_id))
  await db.flush()
  return True
