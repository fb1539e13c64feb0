from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import monotonic


@dataclass
class RequestSample:
  ts: datetime
  status_code: int
  latency_ms: float


@dataclass
class JobCounters:
  runs: int = 0
  sent: int = 0
  errors: int = 0
  last_run_at: datetime | None = None


class RuntimeMetrics:
  def __init__(self) -> None:
    self._started_monotonic = monotonic()
    self._started_at = datetime.now(timezone.utc)
    self._samples: deque[RequestSample] = deque()
    self._jobs: dict[str, JobCounters] = {}
    self._lock = Lock()

  @property
  def started_at(self) -> datetime:
    return self._started_at

  def uptime_seconds(self) -> int:
    return max(0, int(monotonic() - self._started_monotonic))

  def observe_request(self, status_code: int, latency_ms: float) -> None:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._samples.append(RequestSample(ts=now, status_code=status_code, latency_ms=latency_ms))
      self._prune_locked(now)

  def observe_job(self, name: str, *, sent: int, errors: int) -> None:
    with self._lock:
      c = self._jobs.setdefault(name, JobCounters())
      c.runs += 1
      c.sent += sent
      c.errors += errors
      c.last_run_at = datetime.now(timezone.utc)

  def _prune_locked(self, now: datetime) -> None:
    cutoff = now - timedelta(hours=24)
    while self._samples and self._samples[0].ts < cutoff:
      self._samples.popleft()

  def snapshot(self) -> dict:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._prune_locked(now)
      samples = list(self._samples)
      jobs = {
        name: {
          "runs": c.runs,
          "sent": c.sent,
          "errors": c.errors,
          "lastRunAt": c.last_run_at.isoformat() if c.last_run_at else None,
        }
        for name, c in self._jobs.items()
      }

    total = len(samples)
    errors = sum(1 for s in samples if s.status_code >= 500)
    p95_ms = 0.0
    if samples:
      latencies = sorted(s.latency_ms for s in samples)
      p95_ms = latencies[max(0, int(len(latencies) * 0.95) - 1)]

    return {
      "uptimeSeconds": self.uptime_seconds(),
      "requestCount24h": total,
      "errorCount24h": errors,
      "errorRate24h": round((errors / total) * 100, 2) if total else 0.0,
      "p95LatencyMs24h": round(p95_ms, 2),
      "jobs": jobs,
    }


runtime_metrics = RuntimeMetrics()
