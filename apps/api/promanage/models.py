from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  """Timezone-aware datetime stored and returned in UTC on every backend."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if dialect.name == "sqlite":
      return value.replace(tzinfo=None)
    return value

  def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
  pass


class Profile(Base):
  __tablename__ = "profiles"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
  full_name: Mapped[str | None] = mapped_column(String, nullable=True)
  mobile: Mapped[str | None] = mapped_column(String, nullable=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="employee")
  manager_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)
  notification_preferences: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="active")
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  start_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  end_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  manager_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  project_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  assignee_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="todo", index=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  ai_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False, default="")
  link: Mapped[str | None] = mapped_column(String, nullable=True)
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  project_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)


class ChatRoom(Base):
  __tablename__ = "chat_rooms"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  room_type: Mapped[str] = mapped_column(String, nullable=False, default="project")
  project_id: Mapped[str | None] = mapped_column(
    String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, unique=True, index=True
  )
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class ChatParticipant(Base):
  __tablename__ = "chat_participants"
  __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_chat_participants_room_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  room_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
  last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  joined_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class ChatMessage(Base):
  __tablename__ = "chat_messages"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  room_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
  sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  message_text: Mapped[str | None] = mapped_column(Text, nullable=True)
  message_type: Mapped[str] = mapped_column(String, nullable=False, default="text")
  file_url: Mapped[str | None] = mapped_column(String, nullable=True)
  file_name: Mapped[str | None] = mapped_column(String, nullable=True)
  file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)


class UserPresence(Base):
  __tablename__ = "user_presence"

  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
  is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  last_seen: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class ActivityLog(Base):
  __tablename__ = "activity_logs"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
  action_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  # "metadata" is reserved on declarative classes.
  meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)
