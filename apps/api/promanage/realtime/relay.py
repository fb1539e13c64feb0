from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promanage import store
from promanage.models import ChatMessage, utcnow
from promanage.notifications.service import NotificationService, TaskCompletedPayload, completion_notice
from promanage.realtime.events import (
  AuthenticateEvent,
  MarkReadEvent,
  RoomEvent,
  SendMessageEvent,
  TaskStatusEvent,
  TypingEvent,
  parse_event,
)

logger = structlog.get_logger(__name__)


def message_out(m: ChatMessage, ev: SendMessageEvent) -> dict[str, Any]:
  return {
    "id": m.id,
    "room_id": m.room_id,
    "sender_id": m.sender_id,
    "message_text": m.message_text,
    "message_type": m.message_type,
    "file_url": m.file_url,
    "file_name": m.file_name,
    "file_size": m.file_size,
    "created_at": m.created_at.isoformat() if m.created_at else None,
    "sender": {"id": ev.senderId, "full_name": ev.senderName, "role": ev.senderRole},
  }


class Relay:
  """
  Chat/presence relay on top of a Socket.IO server.

  `connections` maps connection id -> user id for identified connections. It is
  only touched from handlers running on the server's event loop.
  """

  def __init__(
    self,
    sio: Any,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: NotificationService,
    clock: Callable[[], datetime] = utcnow,
  ) -> None:
    self.sio = sio
    self.session_factory = session_factory
    self.notifier = notifier
    self.clock = clock
    self.connections: dict[str, str] = {}

  def register(self) -> None:
    handlers = {
      "connect": self.on_connect,
      "disconnect": self.on_disconnect,
      "ping": self.on_ping,
      "authenticate": self.on_authenticate,
      "join-room": self.on_join_room,
      "leave-room": self.on_leave_room,
      "send-message": self.on_send_message,
      "typing-start": self.on_typing_start,
      "typing-stop": self.on_typing_stop,
      "mark-read": self.on_mark_read,
      "task-status-updated": self.on_task_status_updated,
    }
    for event, handler in handlers.items():
      self.sio.on(event, handler)

  def online_user_ids(self) -> list[str]:
    return sorted(set(self.connections.values()))

  def _parse(self, sid: str, name: str, data: Any):
    try:
      return parse_event(name, data)
    except ValidationError as exc:
      logger.warning("socket_payload_invalid", sid=sid, socket_event=name, errors=exc.error_count())
      return None

  async def _set_presence(self, user_id: str, online: bool) -> None:
    try:
      async with self.session_factory() as db:
        await store.upsert_presence(db, user_id=user_id, is_online=online, now=self.clock())
        await db.commit()
    except Exception:
      logger.exception("presence_update_failed", user_id=user_id, online=online)

  async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
    logger.info("socket_connected", sid=sid)

  async def on_ping(self, sid: str, data: Any = None) -> None:
    await self.sio.emit("pong", to=sid)

  async def on_authenticate(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "authenticate", data)
    if not isinstance(ev, AuthenticateEvent):
      return
    self.connections[sid] = ev.userId
    await self._set_presence(ev.userId, True)
    await self.sio.emit("user-online", {"userId": ev.userId, "isOnline": True})
    logger.info("socket_authenticated", sid=sid, user_id=ev.userId)

  async def on_join_room(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "join-room", data)
    if not isinstance(ev, RoomEvent):
      return
    await self.sio.enter_room(sid, ev.roomId)
    logger.info("room_joined", sid=sid, user_id=self.connections.get(sid), room_id=ev.roomId)

  async def on_leave_room(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "leave-room", data)
    if not isinstance(ev, RoomEvent):
      return
    await self.sio.leave_room(sid, ev.roomId)
    logger.info("room_left", sid=sid, user_id=self.connections.get(sid), room_id=ev.roomId)

  async def on_send_message(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "send-message", data)
    if not isinstance(ev, SendMessageEvent):
      await self.sio.emit("message-error", {"error": "Invalid message payload"}, to=sid)
      return
    fd = ev.fileData
    try:
      async with self.session_factory() as db:
        saved = await store.insert_chat_message(
          db,
          room_id=ev.roomId,
          sender_id=ev.senderId,
          message_text=ev.message,
          message_type=ev.messageType,
          file_url=fd.url if fd else None,
          file_name=fd.name if fd else None,
          file_size=fd.size if fd else None,
        )
        await db.commit()
    except Exception as exc:
      logger.exception("chat_message_failed", sid=sid, room_id=ev.roomId)
      await self.sio.emit("message-error", {"error": str(exc) or "Failed to send message"}, to=sid)
      return
    await self.sio.emit("new-message", message_out(saved, ev), room=ev.roomId)
    logger.info("chat_message_sent", room_id=ev.roomId, sender_id=ev.senderId)

  async def on_typing_start(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "typing-start", data)
    if isinstance(ev, TypingEvent):
      await self.sio.emit("user-typing", {"userId": ev.userId, "userName": ev.userName}, room=ev.roomId, skip_sid=sid)

  async def on_typing_stop(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "typing-stop", data)
    if isinstance(ev, TypingEvent):
      await self.sio.emit("user-stopped-typing", {"userId": ev.userId}, room=ev.roomId, skip_sid=sid)

  async def on_mark_read(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "mark-read", data)
    if not isinstance(ev, MarkReadEvent):
      return
    try:
      async with self.session_factory() as db:
        await store.touch_participant_read(db, room_id=ev.roomId, user_id=ev.userId, now=self.clock())
        await db.commit()
    except Exception:
      logger.exception("mark_read_failed", room_id=ev.roomId, user_id=ev.userId)
      return
    await self.sio.emit("messages-read", {"roomId": ev.roomId, "userId": ev.userId}, room=ev.roomId, skip_sid=sid)

  async def on_task_status_updated(self, sid: str, data: Any) -> None:
    ev = self._parse(sid, "task-status-updated", data)
    if not isinstance(ev, TaskStatusEvent):
      return
    try:
      if ev.newStatus == "done":
        await self._task_done(ev)
      elif ev.newStatus == "in-progress":
        await self._task_started(ev)
    except Exception:
      logger.exception("task_status_side_effects_failed", task_id=ev.taskId, status=ev.newStatus)

  async def _task_done(self, ev: TaskStatusEvent) -> None:
    async with self.session_factory() as db:
      info = await store.load_task_completion(db, ev.taskId)
    if info is None or info.creator is None:
      logger.warning("task_completion_unroutable", task_id=ev.taskId)
      return
    employee = info.assignee_name or "Team member"
    title, message = completion_notice(employee, info.title)
    project_id = info.project_id or ev.projectId
    await self.notifier.create_inapp(
      user_id=info.creator.id,
      type="task_completed",
      title=title,
      message=message,
      link=f"/projects/{project_id}/tasks" if project_id else None,
      task_id=info.task_id,
      project_id=project_id,
    )
    if not info.creator.email:
      logger.info("task_completed_email_skipped", task_id=ev.taskId, reason="creator has no email")
      return
    result = await self.notifier.notify_task_completed(
      TaskCompletedPayload(title=info.title, project_name=info.project_name, project_id=project_id, task_id=info.task_id),
      info.creator.email,
      info.creator.full_name,
      employee,
    )
    if not result.success:
      logger.warning("task_completed_email_failed", task_id=ev.taskId, error=result.error)

  async def _task_started(self, ev: TaskStatusEvent) -> None:
    async with self.session_factory() as db:
      info = await store.load_task_completion(db, ev.taskId)
    if info is None or info.creator is None:
      logger.warning("task_progress_unroutable", task_id=ev.taskId)
      return
    project_id = info.project_id or ev.projectId
    await self.notifier.create_inapp(
      user_id=info.creator.id,
      type="task_in_progress",
      title="Task In Progress",
      message=f"{info.assignee_name or 'Team member'} started working on \"{info.title}\"",
      link=f"/projects/{project_id}/tasks" if project_id else None,
      task_id=info.task_id,
      project_id=project_id,
    )

  async def on_disconnect(self, sid: str, *args: Any) -> None:
    user_id = self.connections.pop(sid, None)
    if not user_id:
      logger.info("socket_disconnected", sid=sid)
      return
    if user_id in self.connections.values():
      logger.info("socket_disconnected", sid=sid, user_id=user_id, still_connected=True)
      return
    await self._set_presence(user_id, False)
    await self.sio.emit("user-offline", {"userId": user_id, "isOnline": False})
    logger.info("socket_disconnected", sid=sid, user_id=user_id)
