from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, Callable, Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promanage import store
from promanage.models import utcnow
from promanage.notifications.mailer import Mailer
from promanage.notifications.templates import render
from promanage.store import DigestTask

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NotifyResult:
  success: bool
  error: str | None = None

  def as_dict(self) -> dict[str, Any]:
    out: dict[str, Any] = {"success": self.success}
    if self.error:
      out["error"] = self.error
    return out


@dataclass(frozen=True)
class TaskAssignedPayload:
  title: str
  description: str | None = None
  priority: str = "medium"
  deadline: datetime | None = None
  project_name: str | None = None
  manager_name: str | None = None
  task_id: str | None = None
  project_id: str | None = None


@dataclass(frozen=True)
class TaskCompletedPayload:
  title: str
  project_name: str | None = None
  project_id: str | None = None
  task_id: str | None = None


@dataclass(frozen=True)
class TaskDeadlinePayload:
  title: str
  deadline: datetime
  task_id: str | None = None
  project_id: str | None = None


@dataclass(frozen=True)
class DigestStats:
  total: int
  pending: int
  completed: int
  overdue: int

  def as_dict(self) -> dict[str, int]:
    return {"total": self.total, "pending": self.pending, "completed": self.completed, "overdue": self.overdue}


def days_remaining(deadline: datetime, now: datetime) -> int:
  return math.ceil((deadline - now).total_seconds() / 86400)


def days_phrase(days: int) -> str:
  if days < 0:
    return "overdue"
  if days == 0:
    return "today"
  if days == 1:
    return "tomorrow"
  return f"in {days} days"


def completion_notice(employee_name: str, title: str) -> tuple[str, str]:
  return "Task Completed", f"{employee_name} completed \"{title}\""


def local_midnight(now: datetime, tz: tzinfo) -> datetime:
  local = now.astimezone(tz)
  return datetime.combine(local.date(), time.min, tzinfo=tz)


def compute_digest(tasks: Iterable[DigestTask], *, now: datetime, tz: tzinfo, upcoming_limit: int = 3) -> tuple[DigestStats, list[DigestTask]]:
  items = list(tasks)
  start_of_day = local_midnight(now, tz)
  pending = [t for t in items if t.status != "done"]
  completed = [t for t in items if t.status == "done" and t.updated_at >= start_of_day]
  overdue = [t for t in pending if t.deadline is not None and t.deadline < now]
  upcoming = sorted((t for t in pending if t.deadline is not None), key=lambda t: t.deadline)[:upcoming_limit]
  stats = DigestStats(total=len(items), pending=len(pending), completed=len(completed), overdue=len(overdue))
  return stats, upcoming


class NotificationService:
  def __init__(
    self,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    mailer: Mailer,
    client_url: str,
    tz: tzinfo = timezone.utc,
    mail_timeout_seconds: float = 20,
    clock: Callable[[], datetime] = utcnow,
  ) -> None:
    self.session_factory = session_factory
    self.mailer = mailer
    self.client_url = client_url.rstrip("/")
    self.tz = tz
    self.mail_timeout_seconds = mail_timeout_seconds
    self.clock = clock

  def link(self, path: str) -> str:
    return f"{self.client_url}/{path.lstrip('/')}"

  def _local(self, value: datetime | None) -> datetime | None:
    return value.astimezone(self.tz) if value is not None else None

  async def _deliver(self, *, kind: str, to: str, subject: str, html: str) -> NotifyResult:
    try:
      await asyncio.wait_for(self.mailer.send(to=to, subject=subject, html=html), timeout=self.mail_timeout_seconds)
    except asyncio.TimeoutError:
      logger.warning("email_failed", kind=kind, to=to, error="timeout")
      return NotifyResult(False, "Email send timed out")
    except Exception as exc:
      logger.warning("email_failed", kind=kind, to=to, error=str(exc))
      return NotifyResult(False, str(exc) or exc.__class__.__name__)
    logger.info("email_delivered", kind=kind, to=to)
    return NotifyResult(True)

  async def create_inapp(
    self,
    *,
    user_id: str,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    task_id: str | None = None,
    project_id: str | None = None,
  ) -> str:
    async with self.session_factory() as db:
      n = await store.insert_notification(
        db,
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        task_id=task_id,
        project_id=project_id,
      )
      await db.commit()
      return n.id

  async def _record_inapp(self, **kwargs: Any) -> str | None:
    try:
      return await self.create_inapp(**kwargs)
    except Exception:
      logger.exception("inapp_notification_failed", user_id=kwargs.get("user_id"), type=kwargs.get("type"))
      return None

  async def notify_task_assigned(
    self,
    task: TaskAssignedPayload,
    assignee_email: str,
    assignee_name: str | None,
    *,
    recipient_id: str | None = None,
  ) -> NotifyResult:
    try:
      if recipient_id:
        await self._record_inapp(
          user_id=recipient_id,
          type="task_assigned",
          title=f"New Task: {task.title}",
          message=f"You have been assigned \"{task.title}\"",
          link=f"/projects/{task.project_id}/tasks" if task.project_id else "/employee-tasks",
          task_id=task.task_id,
          project_id=task.project_id,
        )
      html = render(
        "task_assigned",
        {
          "userName": assignee_name or assignee_email,
          "taskTitle": task.title,
          "taskDescription": task.description,
          "priority": task.priority,
          "deadline": self._local(task.deadline),
          "projectName": task.project_name or "N/A",
          "managerName": task.manager_name or "Your Manager",
          "link": self.link("/employee-tasks"),
        },
      )
      return await self._deliver(kind="task_assigned", to=assignee_email, subject=f"New Task Assigned: {task.title}", html=html)
    except Exception as exc:
      logger.exception("notify_task_assigned_failed", task_id=task.task_id)
      return NotifyResult(False, str(exc))

  async def notify_task_completed(
    self,
    task: TaskCompletedPayload,
    manager_email: str,
    manager_name: str | None,
    employee_name: str | None,
    *,
    recipient_id: str | None = None,
  ) -> NotifyResult:
    employee = employee_name or "Team Member"
    try:
      if recipient_id:
        title, message = completion_notice(employee, task.title)
        await self._record_inapp(
          user_id=recipient_id,
          type="task_completed",
          title=title,
          message=message,
          link=f"/projects/{task.project_id}/tasks" if task.project_id else None,
          task_id=task.task_id,
          project_id=task.project_id,
        )
      html = render(
        "task_completed",
        {
          "managerName": manager_name or manager_email,
          "userName": employee,
          "taskTitle": task.title,
          "projectName": task.project_name or "N/A",
          "completedOn": self.clock().astimezone(self.tz),
          "link": self.link(f"/projects/{task.project_id or ''}/tasks"),
        },
      )
      return await self._deliver(kind="task_completed", to=manager_email, subject=f"Task Completed: {task.title}", html=html)
    except Exception as exc:
      logger.exception("notify_task_completed_failed", task_id=task.task_id)
      return NotifyResult(False, str(exc))

  async def notify_deadline_reminder(
    self,
    task: TaskDeadlinePayload,
    user_email: str,
    user_name: str | None,
    *,
    now: datetime | None = None,
    recipient_id: str | None = None,
  ) -> NotifyResult:
    try:
      phrase = days_phrase(days_remaining(task.deadline, now or self.clock()))
      if recipient_id:
        await self._record_inapp(
          user_id=recipient_id,
          type="deadline_reminder",
          title=f"Deadline Reminder: {task.title}",
          message=f"\"{task.title}\" is due {phrase}",
          link="/employee-tasks",
          task_id=task.task_id,
          project_id=task.project_id,
        )
      html = render(
        "deadline_reminder",
        {
          "userName": user_name or user_email,
          "taskTitle": task.title,
          "deadline": self._local(task.deadline),
          "daysRemaining": phrase,
          "link": self.link("/employee-tasks"),
        },
      )
      return await self._deliver(kind="deadline_reminder", to=user_email, subject=f"⏰ Deadline Reminder: {task.title}", html=html)
    except Exception as exc:
      logger.exception("notify_deadline_reminder_failed", task_id=task.task_id)
      return NotifyResult(False, str(exc))

  async def notify_daily_digest(
    self,
    user_id: str,
    user_email: str,
    user_name: str | None,
    *,
    now: datetime | None = None,
  ) -> NotifyResult:
    moment = now or self.clock()
    try:
      async with self.session_factory() as db:
        tasks = await store.user_tasks(db, user_id)
      stats, upcoming = compute_digest(tasks, now=moment, tz=self.tz)
      today: date = moment.astimezone(self.tz).date()
      html = render(
        "daily_digest",
        {
          "userName": user_name or user_email,
          "stats": stats.as_dict(),
          "upcomingTasks": [{"title": t.title, "deadline": self._local(t.deadline)} for t in upcoming],
          "date": today,
          "link": self.link("/employee-dashboard"),
          "unsubscribeLink": self.link("/settings"),
        },
      )
      subject = f"📊 Your Daily Summary - {today.month}/{today.day}/{today.year}"
      return await self._deliver(kind="daily_digest", to=user_email, subject=subject, html=html)
    except Exception as exc:
      logger.exception("notify_daily_digest_failed", user_id=user_id)
      return NotifyResult(False, str(exc))

  async def send_notification(
    self,
    user_id: str,
    type: str,
    title: str,
    message: str,
    *,
    link: str | None = None,
    project_id: str | None = None,
    task_id: str | None = None,
  ) -> dict[str, Any]:
    try:
      notification_id = await self.create_inapp(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        task_id=task_id,
        project_id=project_id,
      )
    except Exception as exc:
      logger.exception("inapp_notification_failed", user_id=user_id, type=type)
      return {"success": False, "error": str(exc)}

    out: dict[str, Any] = {"success": True, "notificationId": notification_id, "emailSent": False}
    try:
      async with self.session_factory() as db:
        recipient = await store.get_recipient(db, user_id)
    except Exception:
      logger.exception("recipient_lookup_failed", user_id=user_id)
      return out
    if recipient is None or not recipient.email or recipient.opted_out("emailNotifications"):
      return out

    html = render(
      "generic",
      {
        "userName": recipient.full_name,
        "message": message,
        "link": self.link(link) if link and link.startswith("/") else (link or self.link("/employee-dashboard")),
      },
    )
    result = await self._deliver(kind="generic", to=recipient.email, subject=title, html=html)
    out["emailSent"] = result.success
    return out
