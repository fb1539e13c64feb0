from __future__ import annotations

from datetime import date, datetime, timezone

from promanage.notifications.mailer import html_to_text
from promanage.notifications.templates import long_date, render, render_welcome, short_date


def test_task_assigned_escapes_user_content() -> None:
  html = render(
    "task_assigned",
    {
      "userName": "Ana <admin>",
      "taskTitle": "<script>alert(1)</script>",
      "taskDescription": "a & b",
      "priority": "HIGH",
      "projectName": "Apollo",
      "link": "http://app.test/employee-tasks",
    },
  )
  assert "<script>" not in html
  assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
  assert "Ana &lt;admin&gt;" in html
  assert "a &amp; b" in html
  assert 'class="priority-high"' in html
  assert 'href="http://app.test/employee-tasks"' in html


def test_kind_is_normalised_and_unknown_kinds_fall_back_to_generic() -> None:
  assert "New Task Assigned" in render("Task-Assigned", {"taskTitle": "X"})
  html = render("something_else", {"message": "Heads up", "userName": "Ravi"})
  assert "Heads up" in html
  assert "Hello Ravi" in html


def test_date_formats() -> None:
  assert long_date(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)) == "Monday, October 19, 2026"
  assert long_date("2026-10-19T09:00:00Z") == "Monday, October 19, 2026"
  assert long_date(None) == ""
  assert short_date(date(2026, 3, 5)) == "3/5/2026"


def test_daily_digest_lists_upcoming_and_stats() -> None:
  html = render(
    "daily_digest",
    {
      "userName": "Mia",
      "stats": {"total": 5, "pending": 3, "completed": 1, "overdue": 1},
      "upcomingTasks": [{"title": "Ship v2", "deadline": date(2026, 10, 20)}],
      "date": date(2026, 10, 18),
      "unsubscribeLink": "http://app.test/settings",
    },
  )
  text = html_to_text(html)
  assert "Upcoming Tasks:" in text
  assert "Ship v2" in text
  assert "Due: 10/20/2026" in text
  assert "Sunday, October 18, 2026" in text
  assert 'href="http://app.test/settings"' in html


def test_digest_without_upcoming_tasks_omits_section() -> None:
  html = render("daily_digest", {"userName": "Mia", "stats": {}, "upcomingTasks": []})
  assert "Upcoming Tasks:" not in html


def test_welcome_email_links_to_login() -> None:
  html = render_welcome(full_name="Lee <b>", email="lee@example.com", login_link="http://app.test/login?role=employee")
  assert "Welcome, Lee &lt;b&gt;!" in html
  assert "lee@example.com" in html
  assert 'href="http://app.test/login?role=employee"' in html
