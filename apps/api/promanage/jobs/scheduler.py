from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Awaitable, Callable

import structlog

from promanage.metrics import runtime_metrics
from promanage.models import utcnow

logger = structlog.get_logger(__name__)


class UnknownJob(KeyError):
  pass


class JobAlreadyRunning(RuntimeError):
  pass


@dataclass(frozen=True)
class JobReport:
  total: int = 0
  sent: int = 0
  skipped: int = 0
  errors: int = 0

  def as_dict(self) -> dict[str, int]:
    return {"total": self.total, "sent": self.sent, "skipped": self.skipped, "errors": self.errors}


@dataclass(frozen=True)
class CronSchedule:
  """Daily wall-clock schedule parsed from a "M H * * *" expression."""

  minute: int
  hour: int
  expr: str

  @classmethod
  def parse(cls, expr: str) -> "CronSchedule":
    parts = (expr or "").split()
    if len(parts) != 5:
      raise ValueError(f"Invalid cron expression: {expr!r}")
    minute, hour, dom, month, dow = parts
    if (dom, month, dow) != ("*", "*", "*"):
      raise ValueError(f"Only daily schedules are supported: {expr!r}")
    if not (minute.isdigit() and hour.isdigit()):
      raise ValueError(f"Invalid cron expression: {expr!r}")
    m, h = int(minute), int(hour)
    if m > 59 or h > 23:
      raise ValueError(f"Invalid cron expression: {expr!r}")
    return cls(minute=m, hour=h, expr=" ".join(parts))

  def next_after(self, moment: datetime, tz: tzinfo) -> datetime:
    local = moment.astimezone(tz)
    candidate = datetime.combine(local.date(), time(self.hour, self.minute), tzinfo=tz)
    if candidate <= local:
      candidate = datetime.combine(local.date() + timedelta(days=1), time(self.hour, self.minute), tzinfo=tz)
    return candidate


JobFn = Callable[[datetime], Awaitable[JobReport]]


@dataclass
class Job:
  name: str
  schedule: CronSchedule
  run: JobFn
  lock: asyncio.Lock = field(default_factory=asyncio.Lock)
  task: asyncio.Task | None = None
  last_report: JobReport | None = None
  last_run_at: datetime | None = None

  @property
  def running(self) -> bool:
    return self.lock.locked()


class Scheduler:
  def __init__(
    self,
    jobs: list[Job],
    *,
    tz: tzinfo,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
  ) -> None:
    self.tz = tz
    self.clock = clock
    self.sleep = sleep
    self._jobs: dict[str, Job] = {j.name: j for j in jobs}

  @property
  def jobs(self) -> list[Job]:
    return list(self._jobs.values())

  def get(self, name: str) -> Job:
    job = self._jobs.get(name)
    if job is None:
      raise UnknownJob(name)
    return job

  async def _execute(self, job: Job, *, trigger: str) -> JobReport:
    started = self.clock()
    log = logger.bind(job=job.name, trigger=trigger)
    log.info("job_started")
    try:
      report = await job.run(started)
    except Exception:
      log.exception("job_crashed")
      report = JobReport(errors=1)
    job.last_report = report
    job.last_run_at = started
    runtime_metrics.observe_job(job.name, sent=report.sent, errors=report.errors)
    log.info("job_finished", **report.as_dict())
    return report

  async def _loop(self, job: Job) -> None:
    last_slot: datetime | None = None
    while True:
      now = self.clock()
      # Never fire the same slot twice, even if the wall clock wakes up slightly early.
      fire_at = job.schedule.next_after(now if last_slot is None else max(now, last_slot), self.tz)
      delay = (fire_at - now).total_seconds()
      if delay > 0:
        await self.sleep(delay)
      last_slot = fire_at
      if job.lock.locked():
        logger.warning("job_skipped_overlap", job=job.name)
        continue
      async with job.lock:
        await self._execute(job, trigger="schedule")

  def start_job(self, name: str) -> None:
    job = self.get(name)
    if job.task is not None and not job.task.done():
      return
    job.task = asyncio.create_task(self._loop(job), name=f"job:{job.name}")
    logger.info("job_scheduled", job=job.name, cron=job.schedule.expr, next_run=job.schedule.next_after(self.clock(), self.tz).isoformat())

  async def stop_job(self, name: str) -> None:
    job = self.get(name)
    task, job.task = job.task, None
    if task is None or task.done():
      return
    task.cancel()
    try:
      await task
    except asyncio.CancelledError:
      pass
    logger.info("job_stopped", job=job.name)

  def start(self) -> None:
    for name in self._jobs:
      self.start_job(name)

  async def stop(self) -> None:
    for name in list(self._jobs):
      await self.stop_job(name)

  async def run_now(self, name: str) -> JobReport:
    job = self.get(name)
    if job.lock.locked():
      raise JobAlreadyRunning(name)
    async with job.lock:
      return await self._execute(job, trigger="manual")

  def status(self) -> list[dict[str, Any]]:
    now = self.clock()
    out: list[dict[str, Any]] = []
    for job in self._jobs.values():
      out.append(
        {
          "name": job.name,
          "cron": job.schedule.expr,
          "scheduled": job.task is not None and not job.task.done(),
          "running": job.running,
          "nextRunAt": job.schedule.next_after(now, self.tz).isoformat(),
          "lastRunAt": job.last_run_at.isoformat() if job.last_run_at else None,
          "lastReport": job.last_report.as_dict() if job.last_report else None,
        }
      )
    return out
