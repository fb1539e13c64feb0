from __future__ import annotations

import pytest
from sqlalchemy import select

from promanage.models import ChatMessage, ChatParticipant, UserPresence
from tests.conftest import make_profile, make_project, make_task, notifications_for


@pytest.mark.anyio
async def test_messages_only_reach_joined_room(components) -> None:
  sio = components.sio
  sender = await make_profile(components, full_name="Sam")
  for sid in ("s1", "s2", "s3"):
    await sio.connect(sid)
  await sio.trigger("join-room", "s1", {"roomId": "room-a"})
  await sio.trigger("join-room", "s2", "room-a")
  await sio.trigger("join-room", "s3", {"roomId": "room-b"})

  await sio.trigger(
    "send-message",
    "s1",
    {"roomId": "room-a", "senderId": sender.id, "message": "hello", "senderName": "Sam", "senderRole": "manager"},
  )

  got = sio.events("s2", "new-message")
  assert len(got) == 1
  payload = got[0][1]
  assert payload["message_text"] == "hello"
  assert payload["room_id"] == "room-a"
  assert payload["sender"] == {"id": sender.id, "full_name": "Sam", "role": "manager"}
  assert len(sio.events("s1", "new-message")) == 1
  assert sio.events("s3", "new-message") == []

  async with components.session_factory() as db:
    rows = (await db.execute(select(ChatMessage))).scalars().all()
  assert [(m.room_id, m.message_text) for m in rows] == [("room-a", "hello")]


@pytest.mark.anyio
async def test_leave_room_stops_delivery(components) -> None:
  sio = components.sio
  sender = await make_profile(components)
  await sio.connect("s1")
  await sio.connect("s2")
  await sio.trigger("join-room", "s1", "room-a")
  await sio.trigger("join-room", "s2", "room-a")
  await sio.trigger("leave-room", "s2", "room-a")

  await sio.trigger("send-message", "s1", {"roomId": "room-a", "senderId": sender.id, "message": "anyone?"})

  assert sio.events("s2", "new-message") == []


@pytest.mark.anyio
async def test_invalid_message_gets_error_to_sender_only(components) -> None:
  sio = components.sio
  await sio.connect("s1")
  await sio.connect("s2")
  await sio.trigger("join-room", "s2", "room-a")

  await sio.trigger("send-message", "s1", {"message": "no room"})

  assert sio.events("s1", "message-error") == [("message-error", {"error": "Invalid message payload"})]
  assert sio.events("s2") == []


@pytest.mark.anyio
async def test_typing_and_read_receipts_skip_the_sender(components) -> None:
  sio = components.sio
  owner = await make_profile(components, role="manager")
  _, room = await make_project(components, owner=owner)
  await sio.connect("s1")
  await sio.connect("s2")
  await sio.trigger("join-room", "s1", room.id)
  await sio.trigger("join-room", "s2", room.id)

  await sio.trigger("typing-start", "s1", {"roomId": room.id, "userId": owner.id, "userName": "Boss"})
  await sio.trigger("typing-stop", "s1", {"roomId": room.id, "userId": owner.id})
  await sio.trigger("mark-read", "s1", {"roomId": room.id, "userId": owner.id})

  assert [e[0] for e in sio.events("s2")] == ["user-typing", "user-stopped-typing", "messages-read"]
  assert sio.events("s1") == []
  async with components.session_factory() as db:
    part = (await db.execute(select(ChatParticipant).where(ChatParticipant.user_id == owner.id))).scalar_one()
  assert part.last_read_at is not None


@pytest.mark.anyio
async def test_presence_lifecycle(client, components) -> None:
  sio = components.sio
  user = await make_profile(components)
  await sio.connect("s1")
  await sio.connect("s2")

  await sio.trigger("authenticate", "s1", user.id)

  assert sio.events("s2", "user-online") == [("user-online", {"userId": user.id, "isOnline": True})]
  assert components.relay.online_user_ids() == [user.id]
  res = await client.get("/api/online-users")
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["count"] == 1
  assert body["users"][0]["user_id"] == user.id

  await sio.disconnect("s1")

  assert sio.events("s2", "user-offline") == [("user-offline", {"userId": user.id, "isOnline": False})]
  assert components.relay.online_user_ids() == []
  async with components.session_factory() as db:
    presence = await db.get(UserPresence, user.id)
  assert presence is not None and presence.is_online is False


@pytest.mark.anyio
async def test_ping_answers_only_the_caller(components) -> None:
  sio = components.sio
  await sio.connect("s1")
  await sio.connect("s2")
  await sio.trigger("ping", "s1")
  assert sio.events("s1") == [("pong", None)]
  assert sio.events("s2") == []


@pytest.mark.anyio
async def test_task_done_without_creator_email_writes_inapp_only(components) -> None:
  sio = components.sio
  creator = await make_profile(components, role="manager", no_email=True)
  worker = await make_profile(components, full_name="Priya")
  project, _ = await make_project(components, owner=creator)
  task = await make_task(components, project=project, creator=creator, assignee=worker, title="Deploy", status="done")
  await sio.connect("s1")

  await sio.trigger("task-status-updated", "s1", {"taskId": task.id, "newStatus": "done", "projectId": project.id})

  rows = await notifications_for(components, creator.id)
  assert len(rows) == 1
  assert rows[0].type == "task_completed"
  assert rows[0].message == 'Priya completed "Deploy"'
  assert components.mailer.outbox == []


@pytest.mark.anyio
async def test_task_done_emails_creator_with_address(components) -> None:
  sio = components.sio
  creator = await make_profile(components, role="manager", email="boss@example.com")
  worker = await make_profile(components, full_name="Priya")
  task = await make_task(components, creator=creator, assignee=worker, title="Deploy", status="done")
  await sio.connect("s1")

  await sio.trigger("task-status-updated", "s1", {"taskId": task.id, "newStatus": "done"})

  assert len(await notifications_for(components, creator.id)) == 1
  assert [(m.to, m.subject) for m in components.mailer.outbox] == [("boss@example.com", "Task Completed: Deploy")]


@pytest.mark.anyio
async def test_task_started_notifies_creator_in_app(components) -> None:
  sio = components.sio
  creator = await make_profile(components, role="manager")
  worker = await make_profile(components, full_name="Priya")
  task = await make_task(components, creator=creator, assignee=worker, title="Deploy", status="in-progress")
  await sio.connect("s1")

  await sio.trigger("task-status-updated", "s1", {"taskId": task.id, "newStatus": "in-progress"})
  await sio.trigger("task-status-updated", "s1", {"taskId": "missing", "newStatus": "done"})

  rows = await notifications_for(components, creator.id)
  assert [r.type for r in rows] == ["task_in_progress"]
  assert components.mailer.outbox == []


@pytest.mark.anyio
async def test_user_stays_online_while_another_connection_is_open(components) -> None:
  sio = components.sio
  user = await make_profile(components)
  for sid in ("tab1", "tab2", "watcher"):
    await sio.connect(sid)
  await sio.trigger("authenticate", "tab1", user.id)
  await sio.trigger("authenticate", "tab2", user.id)

  await sio.disconnect("tab1")

  assert sio.events("watcher", "user-offline") == []
  assert components.relay.online_user_ids() == [user.id]
  async with components.session_factory() as db:
    presence = await db.get(UserPresence, user.id)
  assert presence is not None and presence.is_online is True

  await sio.disconnect("tab2")

  assert sio.events("watcher", "user-offline") == [("user-offline", {"userId": user.id, "isOnline": False})]


@pytest.mark.anyio
async def test_malformed_payloads_are_dropped_quietly(components) -> None:
  sio = components.sio
  await sio.connect("s1")
  await sio.connect("s2")
  await sio.trigger("join-room", "s2", "room-a")

  await sio.trigger("typing-start", "s1", {"userId": "u1"})
  await sio.trigger("authenticate", "s1", {"nope": True})
  await sio.trigger("task-status-updated", "s1", "not-an-object")

  assert sio.events("s2") == []
  assert components.relay.online_user_ids() == []
