from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from tests.conftest import auth_headers, make_profile, make_project, make_task, notifications_for


@pytest.mark.anyio
async def test_task_assigned_email(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager", full_name="Meera")
  dev = await make_profile(components, email="dev@example.com", full_name="Dev")
  nomail = await make_profile(components, no_email=True)
  project, _ = await make_project(components, owner=manager, name="Apollo")
  task = await make_task(components, project=project, creator=manager, assignee=dev, title="Ship it")

  res = await client.post("/api/notifications/task-assigned", json={"taskId": task.id, "assigneeId": dev.id})
  assert res.status_code == 200, res.text
  assert res.json() == {"success": True}
  email = components.mailer.outbox[0]
  assert (email.to, email.subject) == ("dev@example.com", "New Task Assigned: Ship it")
  assert "Apollo" in email.html

  res = await client.post("/api/notifications/task-assigned", json={"taskId": task.id, "assigneeId": nomail.id})
  assert res.json() == {"success": False, "error": "Assignee email not found"}

  res = await client.post("/api/notifications/task-assigned", json={"taskId": "missing", "assigneeId": dev.id})
  assert res.status_code == 404, res.text
  assert res.json()["detail"] == "Task not found"

  res = await client.post("/api/notifications/task-assigned", json={"taskId": task.id, "assigneeId": "missing"})
  assert res.status_code == 404, res.text
  assert res.json()["detail"] == "Assignee not found"


@pytest.mark.anyio
async def test_task_completed_email(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager", email="boss@example.com")
  silent = await make_profile(components, role="manager", no_email=True)
  dev = await make_profile(components, full_name="Dev")
  task = await make_task(components, creator=manager, assignee=dev, title="Ship it", status="done")
  orphan = await make_task(components, creator=silent, assignee=dev, title="Quiet", status="done")

  res = await client.post("/api/notifications/task-completed", json={"taskId": task.id})
  assert res.json() == {"success": True}
  assert components.mailer.outbox[0].subject == "Task Completed: Ship it"
  assert "Dev" in components.mailer.outbox[0].html

  res = await client.post("/api/notifications/task-completed", json={"taskId": orphan.id})
  assert res.json() == {"success": False, "error": "Manager email not found"}


@pytest.mark.anyio
async def test_deadline_reminder_requires_a_deadline(client: AsyncClient, components) -> None:
  dev = await make_profile(components)
  undated = await make_task(components, assignee=dev)
  dated = await make_task(components, assignee=dev, title="Dated", deadline=datetime.now(timezone.utc) + timedelta(days=2))

  res = await client.post("/api/notifications/deadline-reminder", json={"taskId": undated.id})
  assert res.status_code == 404, res.text
  assert res.json()["detail"] == "Task not found or has no deadline"

  res = await client.post("/api/notifications/deadline-reminder", json={"taskId": dated.id})
  assert res.json() == {"success": True}
  assert components.mailer.outbox[0].subject == "⏰ Deadline Reminder: Dated"


@pytest.mark.anyio
async def test_daily_digest_endpoints(client: AsyncClient, components) -> None:
  keen = await make_profile(components)
  bored = await make_profile(components, prefs={"dailyDigest": False})

  res = await client.post("/api/notifications/daily-digest", json={"userId": "missing"})
  assert res.status_code == 404, res.text

  res = await client.post("/api/notifications/daily-digest", json={"userId": bored.id})
  assert res.json() == {"success": False, "message": "Daily digest disabled for user"}

  res = await client.post("/api/notifications/daily-digest", json={"userId": keen.id})
  assert res.json() == {"success": True}

  res = await client.post("/api/notifications/daily-digest-all")
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["message"] == "Sent 1 daily digests"
  assert body["results"] == [{"userId": keen.id, "success": True}]
  assert [m.to for m in components.mailer.outbox] == [keen.email, keen.email]


@pytest.mark.anyio
async def test_send_and_inbox(client: AsyncClient, components) -> None:
  manager = await make_profile(components, role="manager")
  dev = await make_profile(components)
  other = await make_profile(components)

  res = await client.post(
    "/api/notifications/send",
    json={"userId": dev.id, "type": "announcement", "title": "Standup moved", "message": "Now at 10", "link": "/calendar"},
  )
  assert res.status_code == 401, res.text

  for title in ("Standup moved", "Retro on Friday"):
    res = await client.post(
      "/api/notifications/send",
      json={"userId": dev.id, "type": "announcement", "title": title, "message": "details"},
      headers=auth_headers(components, manager),
    )
    assert res.status_code == 200, res.text
    assert res.json()["emailSent"] is True

  dev_headers = auth_headers(components, dev)
  res = await client.get("/api/notifications", headers=dev_headers)
  assert res.status_code == 200, res.text
  inbox = res.json()
  assert len(inbox) == 2
  assert all(n["isRead"] is False for n in inbox)

  first = inbox[0]["id"]
  res = await client.patch(f"/api/notifications/{first}/read", headers=auth_headers(components, other))
  assert res.status_code == 404, res.text

  res = await client.patch(f"/api/notifications/{first}/read", headers=dev_headers)
  assert res.status_code == 200, res.text
  assert res.json()["isRead"] is True

  res = await client.get("/api/notifications", params={"unreadOnly": "true"}, headers=dev_headers)
  assert len(res.json()) == 1

  res = await client.patch("/api/notifications/read-all", headers=dev_headers)
  assert res.json() == {"success": True, "updated": 1}
  assert all(n.is_read for n in await notifications_for(components, dev.id))
