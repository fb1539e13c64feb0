from __future__ import annotations

from datetime import date, datetime
from html import escape
from typing import Any, Callable

BRAND = "ProManage+"

_LOGO = """
<svg width="40" height="40" viewBox="0 0 40 40" fill="none" xmlns="http://www.w3.org/2000/svg">
  <rect width="40" height="40" rx="8" fill="url(#gradient)"/>
  <path d="M20 8L28 14V26L20 32L12 26V14L20 8Z" fill="white" opacity="0.9"/>
  <circle cx="20" cy="20" r="4" fill="#06b6d4"/>
  <defs>
    <linearGradient id="gradient" x1="0" y1="0" x2="40" y2="40">
      <stop offset="0%" stop-color="#06b6d4"/>
      <stop offset="100%" stop-color="#3b82f6"/>
    </linearGradient>
  </defs>
</svg>
"""

_STYLE = """
<style>
  body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; background: #f3f4f6; margin: 0; padding: 0; }
  .container { max-width: 600px; margin: 20px auto; background: white; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
  .header { background: linear-gradient(135deg, #06b6d4 0%, #3b82f6 100%); padding: 30px; text-align: center; color: white; }
  .logo-container { display: flex; align-items: center; justify-content: center; gap: 12px; margin-bottom: 16px; }
  .brand-name { font-size: 24px; font-weight: 700; color: white; }
  .header h1 { margin: 0; font-size: 28px; font-weight: 700; }
  .content { padding: 40px 30px; }
  .button { display: inline-block; background: linear-gradient(135deg, #06b6d4 0%, #3b82f6 100%); color: white !important; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: 600; margin: 20px 0; }
  .info-box { background: #f3f4f6; border-left: 4px solid #06b6d4; padding: 16px; margin: 20px 0; border-radius: 6px; }
  .footer { background: #1f2937; color: #9ca3af; padding: 20px; text-align: center; font-size: 13px; }
  .priority-high { color: #ef4444; font-weight: bold; }
  .priority-medium { color: #f59e0b; font-weight: bold; }
  .priority-low { color: #6b7280; font-weight: bold; }
  table { width: 100%; border-collapse: collapse; }
</style>
"""

_GREEN = "linear-gradient(135deg, #10b981 0%, #059669 100%)"
_AMBER = "linear-gradient(135deg, #f59e0b 0%, #d97706 100%)"


def _e(value: Any) -> str:
  return escape("" if value is None else str(value), quote=True)


def long_date(value: date | datetime | str | None) -> str:
  if value is None or value == "":
    return ""
  if isinstance(value, str):
    try:
      value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
      return value
  return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def short_date(value: date | datetime | None) -> str:
  if value is None:
    return ""
  return f"{value.month}/{value.day}/{value.year}"


def _shell(*, heading: str, body: str, header_style: str = "", subheading: str = "", year: int | None = None) -> str:
  style_attr = f' style="background: {header_style};"' if header_style else ""
  sub = f'<p style="margin: 8px 0 0 0; opacity: 0.9;">{subheading}</p>' if subheading else ""
  return f"""{_STYLE}
<div class="container">
  <div class="header"{style_attr}>
    <div class="logo-container">{_LOGO}<span class="brand-name">{BRAND}</span></div>
    <h1>{heading}</h1>
    {sub}
  </div>
  <div class="content">
    {body}
  </div>
  <div class="footer">
    <p style="margin: 0;">This is an automated email from <strong>{BRAND}</strong></p>
    <p style="margin: 8px 0 0 0;">&copy; {year or date.today().year} {BRAND}. All rights reserved.</p>
  </div>
</div>
"""


def _button(link: Any, label: str, background: str = "") -> str:
  if not link:
    return ""
  style_attr = f' style="background: {background};"' if background else ""
  return f'<a href="{_e(link)}" class="button"{style_attr}>{label}</a>'


def _row(label: str, value_html: str) -> str:
  return (
    "<tr>"
    f'<td style="padding: 8px 0; color: #6b7280;"><strong>{label}:</strong></td>'
    f'<td style="padding: 8px 0; color: #1f2937;">{value_html}</td>'
    "</tr>"
  )


def _task_assigned(data: dict[str, Any]) -> str:
  priority = str(data.get("priority") or "medium").lower()
  if priority not in ("low", "medium", "high"):
    priority = "medium"
  description = data.get("taskDescription")
  rows = [_row("Priority", f'<span class="priority-{priority}">{_e(priority.upper())}</span>')]
  if data.get("deadline"):
    rows.append(_row("Deadline", _e(long_date(data["deadline"]))))
  rows.append(_row("Project", _e(data.get("projectName") or "N/A")))
  rows.append(_row("Assigned by", _e(data.get("managerName") or "Your Manager")))
  body = (
    f'<h2 style="color: #1f2937; margin-top: 0;">Hello {_e(data.get("userName"))},</h2>'
    '<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">You have been assigned a new task!</p>'
    '<div class="info-box">'
    f'<h3 style="margin: 0 0 12px 0; color: #1f2937;">{_e(data.get("taskTitle"))}</h3>'
    + (f'<p style="color: #6b7280; margin: 0;">{_e(description)}</p>' if description else "")
    + "</div>"
    f'<table style="margin: 20px 0;">{"".join(rows)}</table>'
    + _button(data.get("link"), "View Task Details")
  )
  return _shell(heading="&#9989; New Task Assigned", body=body)


def _task_completed(data: dict[str, Any]) -> str:
  user_name = _e(data.get("userName"))
  body = (
    f'<h2 style="color: #1f2937; margin-top: 0;">Great news, {_e(data.get("managerName"))}!</h2>'
    f'<p style="font-size: 16px; color: #4b5563; line-height: 1.6;"><strong>{user_name}</strong> has completed the following task:</p>'
    '<div class="info-box" style="border-left-color: #10b981;">'
    f'<h3 style="margin: 0 0 12px 0; color: #1f2937;">{_e(data.get("taskTitle"))}</h3>'
    f'<p style="color: #6b7280; margin: 0;">Project: {_e(data.get("projectName") or "N/A")}</p>'
    "</div>"
    '<table style="margin: 20px 0;">'
    + _row("Completed by", user_name)
    + _row("Completed on", _e(long_date(data.get("completedOn") or date.today())))
    + "</table>"
    + _button(data.get("link"), "View Task", _GREEN)
  )
  return _shell(heading="&#127881; Task Completed!", body=body, header_style=_GREEN)


def _deadline_reminder(data: dict[str, Any]) -> str:
  body = (
    f'<h2 style="color: #1f2937; margin-top: 0;">Hello {_e(data.get("userName"))},</h2>'
    '<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">'
    f'<strong>Reminder:</strong> The following task is due <strong>{_e(data.get("daysRemaining"))}</strong>!</p>'
    '<div class="info-box" style="border-left-color: #f59e0b; background: #fef3c7;">'
    f'<h3 style="margin: 0 0 12px 0; color: #1f2937;">{_e(data.get("taskTitle"))}</h3>'
    f'<p style="color: #92400e; margin: 0;"><strong>Deadline:</strong> {_e(long_date(data.get("deadline")))}</p>'
    "</div>"
    '<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">Please ensure you complete this task on time.</p>'
    + _button(data.get("link"), "View Task", _AMBER)
  )
  return _shell(heading="&#9200; Deadline Reminder", body=body, header_style=_AMBER)


def _stat_cell(value: Any, label: str, background: str, color: str, label_color: str) -> str:
  return (
    f'<td style="padding: 12px; background: {background}; border-radius: 8px; text-align: center;">'
    f'<div style="font-size: 32px; font-weight: bold; color: {color};">{_e(value)}</div>'
    f'<div style="color: {label_color}; margin-top: 4px;">{label}</div>'
    "</td>"
  )


def _daily_digest(data: dict[str, Any]) -> str:
  stats = data.get("stats") or {}
  upcoming = data.get("upcomingTasks") or []
  spacer = '<td style="width: 16px;"></td>'
  table = (
    '<table style="margin: 24px 0;"><tr>'
    + _stat_cell(stats.get("total", 0), "Total Tasks", "#f3f4f6", "#06b6d4", "#6b7280")
    + spacer
    + _stat_cell(stats.get("pending", 0), "Pending", "#fef3c7", "#f59e0b", "#92400e")
    + '</tr><tr><td style="height: 16px;"></td></tr><tr>'
    + _stat_cell(stats.get("completed", 0), "Completed Today", "#d1fae5", "#10b981", "#065f46")
    + spacer
    + _stat_cell(stats.get("overdue", 0), "Overdue", "#fee2e2", "#ef4444", "#991b1b")
    + "</tr></table>"
  )
  upcoming_html = ""
  if upcoming:
    items = "".join(
      '<div style="background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 12px 0; border-left: 3px solid #06b6d4;">'
      f'<strong style="color: #1f2937;">{_e(t.get("title"))}</strong>'
      f'<div style="font-size: 13px; color: #6b7280; margin-top: 4px;">Due: {_e(short_date(t.get("deadline")))}</div>'
      "</div>"
      for t in upcoming
    )
    upcoming_html = f'<h3 style="color: #1f2937; margin-top: 32px;">Upcoming Tasks:</h3>{items}'
  settings_link = data.get("unsubscribeLink")
  manage = (
    f'<p style="font-size: 13px; color: #6b7280;">Manage your email preferences in <a href="{_e(settings_link)}">Settings</a>.</p>'
    if settings_link
    else ""
  )
  body = (
    f'<h2 style="color: #1f2937; margin-top: 0;">Hello {_e(data.get("userName"))},</h2>'
    '<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">Here\'s your daily summary:</p>'
    + table
    + upcoming_html
    + _button(data.get("link"), "Go to Dashboard")
    + manage
  )
  return _shell(
    heading="&#128202; Daily Summary",
    body=body,
    subheading=_e(long_date(data.get("date") or date.today())),
  )


def _generic(data: dict[str, Any]) -> str:
  greeting = f'<h2 style="color: #1f2937; margin-top: 0;">Hello {_e(data["userName"])},</h2>' if data.get("userName") else ""
  body = (
    greeting
    + f'<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">{_e(data.get("message"))}</p>'
    + _button(data.get("link"), "View Details")
  )
  return _shell(heading="&#128276; Notification", body=body)


TEMPLATES: dict[str, Callable[[dict[str, Any]], str]] = {
  "task_assigned": _task_assigned,
  "task_completed": _task_completed,
  "deadline_reminder": _deadline_reminder,
  "daily_digest": _daily_digest,
  "generic": _generic,
}


def render(kind: str, data: dict[str, Any]) -> str:
  fn = TEMPLATES.get((kind or "").strip().lower().replace("-", "_"), _generic)
  return fn(data or {})


def render_welcome(*, full_name: str, email: str, login_link: str) -> str:
  body = (
    f'<h2 style="color: #1f2937; margin-top: 0;">Welcome, {_e(full_name)}!</h2>'
    '<p style="font-size: 16px; color: #4b5563; line-height: 1.6;">Your manager has created a ProManage+ account for you.</p>'
    '<div class="info-box">'
    f'<p style="margin: 0; color: #1f2937;"><strong>Email:</strong> {_e(email)}</p>'
    '<p style="margin: 8px 0 0 0; color: #6b7280;">Use the password shared by your manager to sign in, then change it from your profile.</p>'
    "</div>"
    + _button(login_link, "Sign in to ProManage+")
  )
  return _shell(heading="&#128075; Welcome to ProManage+", body=body)
