from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Event(BaseModel):
  model_config = ConfigDict(extra="ignore")


class AuthenticateEvent(_Event):
  userId: str = Field(min_length=1)


class RoomEvent(_Event):
  roomId: str = Field(min_length=1)


class FileData(_Event):
  url: str | None = None
  name: str | None = None
  size: int | None = None


class SendMessageEvent(_Event):
  roomId: str = Field(min_length=1)
  senderId: str = Field(min_length=1)
  message: str | None = None
  senderName: str | None = None
  senderRole: str | None = None
  messageType: str = "text"
  fileData: FileData | None = None


class TypingEvent(_Event):
  roomId: str = Field(min_length=1)
  userId: str = Field(min_length=1)
  userName: str | None = None


class MarkReadEvent(_Event):
  roomId: str = Field(min_length=1)
  userId: str = Field(min_length=1)


class TaskStatusEvent(_Event):
  taskId: str = Field(min_length=1)
  newStatus: Literal["todo", "in-progress", "done"]
  projectId: str | None = None


EVENT_MODELS: dict[str, type[_Event]] = {
  "authenticate": AuthenticateEvent,
  "join-room": RoomEvent,
  "leave-room": RoomEvent,
  "send-message": SendMessageEvent,
  "typing-start": TypingEvent,
  "typing-stop": TypingEvent,
  "mark-read": MarkReadEvent,
  "task-status-updated": TaskStatusEvent,
}

# Clients may send these events with a bare string instead of an object.
_SHORTHAND = {"authenticate": "userId", "join-room": "roomId", "leave-room": "roomId"}


def parse_event(name: str, data: Any) -> _Event:
  """Validate a client payload for `name`; raises KeyError or pydantic.ValidationError."""
  model = EVENT_MODELS[name]
  if isinstance(data, str) and name in _SHORTHAND:
    data = {_SHORTHAND[name]: data}
  return model.model_validate(data if data is not None else {})
