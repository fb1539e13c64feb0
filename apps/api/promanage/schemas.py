from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

TaskStatus = Literal["todo", "in-progress", "done"]
Priority = Literal["low", "medium", "high"]

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


class AITaskIn(BaseModel):
  title: str | None = None
  description: str | None = None


class AIAnalysisOut(BaseModel):
  priority: Priority
  estimatedDays: int
  complexity: Literal["simple", "moderate", "complex"]
  suggestedDeadline: str
  reasoning: str
  suggestions: list[str]


class AIAnalyzeOut(BaseModel):
  success: bool
  data: AIAnalysisOut
  error: str | None = None


class NotifyTaskAssignedIn(BaseModel):
  taskId: str = Field(min_length=1)
  assigneeId: str = Field(min_length=1)


class NotifyTaskIn(BaseModel):
  taskId: str = Field(min_length=1)


class NotifyUserIn(BaseModel):
  userId: str = Field(min_length=1)


class NotificationSendIn(BaseModel):
  userId: str = Field(min_length=1)
  type: str = Field(min_length=1, max_length=64)
  title: str = Field(min_length=1, max_length=200)
  message: str = Field(default="", max_length=2000)
  link: str | None = None
  projectId: str | None = None
  taskId: str | None = None


class NotificationOut(BaseModel):
  id: str
  type: str
  title: str
  message: str
  link: str | None = None
  taskId: str | None = None
  projectId: str | None = None
  isRead: bool
  createdAt: datetime


class CreateEmployeeIn(BaseModel):
  # Field names follow the web client's payload.
  email: str | None = None
  full_name: str | None = None
  password: str | None = None
  mobile: str | None = None


class CreateEmployeeOut(BaseModel):
  success: bool
  message: str
  userId: str | None = None
  email: str
  isInvite: bool = False
  inviteLink: str | None = None


class NotificationPreferences(BaseModel):
  push: bool = True
  email: bool = True
  dailyDigest: bool = True
  deadlineReminders: bool = True
  emailNotifications: bool = True


class ProfileOut(BaseModel):
  id: str
  email: str | None = None
  fullName: str | None = None
  mobile: str | None = None
  role: str
  managerId: str | None = None
  notificationPreferences: dict[str, Any] = Field(default_factory=dict)


class ProfileUpdateIn(BaseModel):
  fullName: str | None = Field(default=None, min_length=1, max_length=200)
  mobile: str | None = Field(default=None, max_length=40)
  notificationPreferences: dict[str, bool] | None = None


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str | None = None
  status: str = "active"
  priority: Priority = "medium"
  startDate: datetime | None = None
  endDate: datetime | None = None

  @field_validator("startDate", "endDate", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  status: str | None = None
  priority: Priority | None = None
  startDate: datetime | None = None
  endDate: datetime | None = None

  @field_validator("startDate", "endDate", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  status: str
  priority: str
  startDate: datetime | None = None
  endDate: datetime | None = None
  createdBy: str
  managerId: str | None = None
  chatRoomId: str | None = None
  createdAt: datetime
  updatedAt: datetime


class ChatRoomOut(BaseModel):
  id: str
  name: str
  roomType: str
  projectId: str | None = None
  createdAt: datetime


class TaskCreateIn(BaseModel):
  projectId: str = Field(min_length=1)
  title: str = Field(min_length=1, max_length=300)
  description: str | None = None
  assigneeId: str | None = None
  status: TaskStatus = "todo"
  priority: Priority = "medium"
  deadline: datetime | None = None
  useAI: bool = False

  @field_validator("deadline", mode="before")
  @classmethod
  def _deadline_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=300)
  description: str | None = None
  assigneeId: str | None = None
  status: TaskStatus | None = None
  priority: Priority | None = None
  deadline: datetime | None = None

  @field_validator("deadline", mode="before")
  @classmethod
  def _deadline_utc(cls, v: object) -> object:
    return parse_dt_utc(v)


class TaskStatusIn(BaseModel):
  status: str


class TaskOut(BaseModel):
  id: str
  projectId: str | None = None
  title: str
  description: str | None = None
  assigneeId: str | None = None
  createdBy: str | None = None
  status: str
  priority: str
  deadline: datetime | None = None
  completedAt: datetime | None = None
  aiAnalysis: dict[str, Any] | None = None
  createdAt: datetime
  updatedAt: datetime
