from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promanage import store
from promanage.config import Settings
from promanage.jobs.scheduler import CronSchedule, Job, JobReport
from promanage.notifications.service import NotificationService, TaskDeadlinePayload, local_midnight
from promanage.store import TaskDeadline

logger = structlog.get_logger(__name__)

DEADLINE_REMINDERS = "deadline-reminders"
DAILY_DIGEST = "daily-digest"
OVERDUE_REMINDERS = "overdue-reminders"


def reminder_window(now: datetime, tz) -> tuple[datetime, datetime]:
  """[tomorrow 00:00, day after 00:00) in the scheduler timezone, returned in UTC."""
  # Aware + timedelta is wall-clock arithmetic, so both bounds stay on local midnight.
  today = local_midnight(now, tz)
  return (today + timedelta(days=1)).astimezone(timezone.utc), (today + timedelta(days=2)).astimezone(timezone.utc)


async def _remind_each(
  notifier: NotificationService,
  tasks: list[TaskDeadline],
  *,
  now: datetime,
  job: str,
) -> JobReport:
  sent = skipped = errors = 0
  for t in tasks:
    assignee = t.assignee
    if assignee is None or not assignee.email or assignee.opted_out("deadlineReminders"):
      skipped += 1
      continue
    try:
      result = await notifier.notify_deadline_reminder(
        TaskDeadlinePayload(title=t.title, deadline=t.deadline, task_id=t.task_id, project_id=t.project_id),
        assignee.email,
        assignee.full_name,
        now=now,
      )
    except Exception:
      logger.exception("reminder_failed", job=job, task_id=t.task_id)
      errors += 1
      continue
    if result.success:
      sent += 1
    else:
      errors += 1
      logger.warning("reminder_not_sent", job=job, task_id=t.task_id, error=result.error)
  return JobReport(total=len(tasks), sent=sent, skipped=skipped, errors=errors)


def deadline_reminders_job(
  session_factory: async_sessionmaker[AsyncSession],
  notifier: NotificationService,
) -> Callable[[datetime], Awaitable[JobReport]]:
  async def run(now: datetime) -> JobReport:
    start, end = reminder_window(now, notifier.tz)
    async with session_factory() as db:
      tasks = await store.tasks_due_between(db, start, end)
    return await _remind_each(notifier, tasks, now=now, job=DEADLINE_REMINDERS)

  return run


def overdue_reminders_job(
  session_factory: async_sessionmaker[AsyncSession],
  notifier: NotificationService,
) -> Callable[[datetime], Awaitable[JobReport]]:
  async def run(now: datetime) -> JobReport:
    before = local_midnight(now, notifier.tz).astimezone(timezone.utc)
    async with session_factory() as db:
      tasks = await store.tasks_overdue(db, before)
    return await _remind_each(notifier, tasks, now=now, job=OVERDUE_REMINDERS)

  return run


def daily_digest_job(
  session_factory: async_sessionmaker[AsyncSession],
  notifier: NotificationService,
) -> Callable[[datetime], Awaitable[JobReport]]:
  async def run(now: datetime) -> JobReport:
    async with session_factory() as db:
      recipients = await store.digest_recipients(db)
    sent = skipped = errors = 0
    for r in recipients:
      if r.opted_out("dailyDigest"):
        skipped += 1
        continue
      result = await notifier.notify_daily_digest(r.id, r.email or "", r.full_name, now=now)
      if result.success:
        sent += 1
      else:
        errors += 1
        logger.warning("digest_not_sent", user_id=r.id, error=result.error)
    return JobReport(total=len(recipients), sent=sent, skipped=skipped, errors=errors)

  return run


def build_notification_jobs(
  cfg: Settings,
  session_factory: async_sessionmaker[AsyncSession],
  notifier: NotificationService,
) -> list[Job]:
  return [
    Job(DEADLINE_REMINDERS, CronSchedule.parse(cfg.deadline_reminder_cron), deadline_reminders_job(session_factory, notifier)),
    Job(DAILY_DIGEST, CronSchedule.parse(cfg.daily_digest_cron), daily_digest_job(session_factory, notifier)),
    Job(OVERDUE_REMINDERS, CronSchedule.parse(cfg.overdue_reminder_cron), overdue_reminders_job(session_factory, notifier)),
  ]
