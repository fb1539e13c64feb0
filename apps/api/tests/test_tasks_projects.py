from __future__ import annotations

import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from promanage.models import ActivityLog, ChatParticipant, ChatRoom, Task
from promanage.routers import tasks as tasks_router
from tests.conftest import auth_headers, make_profile, make_project, make_task, notifications_for


async def _drain_background() -> None:
  if tasks_router._background:
    await asyncio.gather(*list(tasks_router._background))


@pytest.mark.anyio
async def test_create_project_opens_chat_room(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  headers = auth_headers(components, manager)

  res = await client.post("/api/projects", json={"name": "Apollo", "priority": "high"}, headers=headers)
  assert res.status_code == 201, res.text
  project = res.json()
  assert project["chatRoomId"]
  assert project["managerId"] == manager.id

  res = await client.get(f"/api/projects/{project['id']}/chat-room", headers=headers)
  assert res.status_code == 200, res.text
  room = res.json()
  assert room == {**room, "id": project["chatRoomId"], "name": "Apollo Chat", "roomType": "project"}

  res = await client.get("/api/projects", headers=headers)
  assert [p["id"] for p in res.json()] == [project["id"]]

  async with components.session_factory() as db:
    members = (await db.execute(select(ChatParticipant.user_id).where(ChatParticipant.room_id == room["id"]))).scalars().all()
    logged = (await db.execute(select(ActivityLog.action_type).where(ActivityLog.user_id == manager.id))).scalars().all()
  assert members == [manager.id]
  assert logged == ["project_created"]


@pytest.mark.anyio
async def test_project_visibility(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  rival = await make_profile(components, role="manager")
  worker = await make_profile(components)
  outsider = await make_profile(components)
  project, _ = await make_project(components, owner=manager)
  await make_task(components, project=project, creator=manager, assignee=worker)

  res = await client.get(f"/api/projects/{project.id}", headers=auth_headers(components, worker))
  assert res.status_code == 200, res.text
  res = await client.get("/api/projects", headers=auth_headers(components, worker))
  assert [p["id"] for p in res.json()] == [project.id]

  for who in (outsider, rival):
    res = await client.get(f"/api/projects/{project.id}", headers=auth_headers(components, who))
    assert res.status_code == 404, res.text
  res = await client.get("/api/projects", headers=auth_headers(components, outsider))
  assert res.json() == []

  res = await client.post("/api/projects", json={"name": "Nope"}, headers=auth_headers(components, worker))
  assert res.status_code == 403, res.text


@pytest.mark.anyio
async def test_assigning_a_task_notifies_and_joins_chat(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager", full_name="Meera")
  dev = await make_profile(components, email="dev@example.com", full_name="Dev")
  project, room = await make_project(components, owner=manager, name="Apollo")

  res = await client.post(
    "/api/tasks",
    json={"projectId": project.id, "title": "Ship v2", "assigneeId": dev.id, "deadline": "2026-11-01"},
    headers=auth_headers(components, manager),
  )
  assert res.status_code == 201, res.text
  task = res.json()
  assert task["createdBy"] == manager.id
  assert task["deadline"].startswith("2026-11-01T00:00:00")

  rows = await notifications_for(components, dev.id)
  assert [(r.type, r.title, r.link) for r in rows] == [("task_assigned", "New Task: Ship v2", "/employee-tasks")]
  assert rows[0].message == "You have been assigned a new task in Apollo"

  async with components.session_factory() as db:
    members = set((await db.execute(select(ChatParticipant.user_id).where(ChatParticipant.room_id == room.id))).scalars())
  assert members == {manager.id, dev.id}

  await _drain_background()
  assert [(m.to, m.subject) for m in components.mailer.outbox] == [("dev@example.com", "New Task Assigned: Ship v2")]


@pytest.mark.anyio
async def test_create_task_validation(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  project, _ = await make_project(components, owner=manager)
  headers = auth_headers(components, manager)

  res = await client.post("/api/tasks", json={"projectId": "missing", "title": "x"}, headers=headers)
  assert res.status_code == 404, res.text
  res = await client.post("/api/tasks", json={"projectId": project.id, "title": "x", "assigneeId": "ghost"}, headers=headers)
  assert res.status_code == 400, res.text
  assert res.json()["detail"] == "Invalid assignee"
  res = await client.post("/api/tasks", json={"projectId": project.id, "title": "x", "status": "blocked"}, headers=headers)
  assert res.status_code == 422, res.text


@pytest.mark.anyio
async def test_create_task_with_ai_analysis(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  project, _ = await make_project(components, owner=manager)

  res = await client.post(
    "/api/tasks",
    json={"projectId": project.id, "title": "Fix production outage", "priority": "low", "useAI": True},
    headers=auth_headers(components, manager),
  )
  assert res.status_code == 201, res.text
  task = res.json()
  assert task["priority"] == "high"
  assert task["deadline"] is not None
  assert task["aiAnalysis"]["priority"] == "high"
  assert task["deadline"].startswith(task["aiAnalysis"]["suggestedDeadline"])


@pytest.mark.anyio
async def test_status_changes_and_completion_notice(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager", email="boss@example.com")
  dev = await make_profile(components, full_name="Priya")
  stranger = await make_profile(components)
  task = await make_task(components, creator=manager, assignee=dev, title="Deploy")
  headers = auth_headers(components, dev)

  res = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "blocked"}, headers=headers)
  assert res.status_code == 400, res.text
  assert res.json()["detail"] == "Invalid status"

  res = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "done"}, headers=auth_headers(components, stranger))
  assert res.status_code == 404, res.text

  res = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "done"}, headers=headers)
  assert res.status_code == 200, res.text
  assert res.json()["completedAt"] is not None

  rows = await notifications_for(components, manager.id)
  assert [(r.type, r.message) for r in rows] == [("task_completed", 'Priya completed "Deploy"')]
  await _drain_background()
  assert [m.subject for m in components.mailer.outbox] == ["Task Completed: Deploy"]

  # Re-sending done is not a new transition.
  res = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "done"}, headers=headers)
  assert res.status_code == 200, res.text
  assert len(await notifications_for(components, manager.id)) == 1

  res = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "in-progress"}, headers=headers)
  assert res.json()["completedAt"] is None


@pytest.mark.anyio
async def test_reassignment_notifies_both_sides(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  first = await make_profile(components, no_email=True)
  second = await make_profile(components, no_email=True)
  project, _ = await make_project(components, owner=manager)
  task = await make_task(components, project=project, creator=manager, assignee=first, title="Audit")

  res = await client.put(f"/api/tasks/{task.id}", json={"assigneeId": second.id}, headers=auth_headers(components, manager))
  assert res.status_code == 200, res.text
  assert res.json()["assigneeId"] == second.id

  assert [r.type for r in await notifications_for(components, first.id)] == ["task_unassigned"]
  assert [r.type for r in await notifications_for(components, second.id)] == ["task_assigned"]
  assert components.mailer.outbox == []


@pytest.mark.anyio
async def test_employee_sees_only_own_tasks(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  dev = await make_profile(components)
  other = await make_profile(components)
  mine = await make_task(components, creator=manager, assignee=dev, title="Mine")
  await make_task(components, creator=manager, assignee=other, title="Theirs")

  res = await client.get("/api/tasks", headers=auth_headers(components, dev))
  assert [t["id"] for t in res.json()] == [mine.id]

  res = await client.get("/api/tasks", params={"status": "todo"}, headers=auth_headers(components, manager))
  assert len(res.json()) == 2

  res = await client.delete(f"/api/tasks/{mine.id}", headers=auth_headers(components, dev))
  assert res.status_code == 403, res.text
  res = await client.delete(f"/api/tasks/{mine.id}", headers=auth_headers(components, manager))
  assert res.json() == {"success": True, "message": "Task deleted successfully"}


@pytest.mark.anyio
async def test_delete_project_removes_children(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  project, _ = await make_project(components, owner=manager)
  await make_task(components, project=project, creator=manager)

  res = await client.delete(f"/api/projects/{project.id}", headers=auth_headers(components, manager))
  assert res.status_code == 200, res.text
  assert res.json() == {"success": True, "message": "Project deleted successfully"}

  async with components.session_factory() as db:
    assert (await db.execute(select(func.count()).select_from(Task))).scalar_one() == 0
    assert (await db.execute(select(func.count()).select_from(ChatRoom))).scalar_one() == 0
    assert (await db.execute(select(func.count()).select_from(ChatParticipant))).scalar_one() == 0


@pytest.mark.anyio
async def test_managers_only_reach_their_own_tasks(client: AsyncClient, components) -> None:
  alice = await make_profile(components, role="manager")
  bob = await make_profile(components, role="manager")
  alice_project, _ = await make_project(components, owner=alice)
  private = await make_task(components, project=alice_project, creator=alice, title="alice private")
  bob_headers = auth_headers(components, bob)

  res = await client.get("/api/tasks", headers=bob_headers)
  assert res.status_code == 200, res.text
  assert res.json() == []

  res = await client.get(f"/api/tasks/{private.id}", headers=bob_headers)
  assert res.status_code == 404, res.text
  res = await client.put(f"/api/tasks/{private.id}", json={"title": "mine now"}, headers=bob_headers)
  assert res.status_code == 404, res.text
  res = await client.delete(f"/api/tasks/{private.id}", headers=bob_headers)
  assert res.status_code == 404, res.text
  res = await client.post("/api/tasks", json={"projectId": alice_project.id, "title": "sneaky"}, headers=bob_headers)
  assert res.status_code == 404, res.text

  res = await client.get("/api/tasks", headers=auth_headers(components, alice))
  assert [t["title"] for t in res.json()] == ["alice private"]
