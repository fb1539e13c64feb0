from __future__ import annotations

import asyncio
import json
import re
from datetime import date, timedelta
from typing import Any, Callable

import structlog

from promanage.ai.providers import AIProvider

logger = structlog.get_logger(__name__)

PRIORITIES = ("high", "medium", "low")
COMPLEXITIES = ("simple", "moderate", "complex")
DEFAULT_DAYS = 7
DEFAULT_SUGGESTIONS = [
  "Break down the task into smaller steps",
  "Set clear milestones and checkpoints",
  "Review progress regularly",
]
DEFAULT_TIPS = [
  "Break down into smaller steps",
  "Set clear milestones",
  "Review progress regularly",
]

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def fallback_analysis(today: date, reasoning: str = "AI service unavailable. Using default values.") -> dict[str, Any]:
  return {
    "priority": "medium",
    "estimatedDays": DEFAULT_DAYS,
    "complexity": "moderate",
    "suggestedDeadline": (today + timedelta(days=DEFAULT_DAYS)).isoformat(),
    "reasoning": reasoning,
    "suggestions": list(DEFAULT_SUGGESTIONS),
  }


def _task_block(title: str, description: str | None, *, empty: str = "No description") -> str:
  return f"Task: {title}\nDescription: {description or empty}"


def sanitize_analysis(raw: Any, today: date) -> dict[str, Any]:
  if not isinstance(raw, dict):
    raise ValueError("AI analysis is not an object")
  out = dict(raw)
  if out.get("priority") not in PRIORITIES:
    out["priority"] = "medium"
  if out.get("complexity") not in COMPLEXITIES:
    out["complexity"] = "moderate"
  days = out.get("estimatedDays")
  if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= 30:
    days = DEFAULT_DAYS
  out["estimatedDays"] = days
  deadline = out.get("suggestedDeadline")
  if not isinstance(deadline, str) or not _ISO_DATE_RE.match(deadline) or deadline < today.isoformat():
    out["suggestedDeadline"] = (today + timedelta(days=days)).isoformat()
  suggestions = out.get("suggestions")
  if not isinstance(suggestions, list) or not suggestions:
    out["suggestions"] = list(DEFAULT_SUGGESTIONS)
  else:
    out["suggestions"] = [str(s) for s in suggestions][:3]
  reasoning = out.get("reasoning")
  if not isinstance(reasoning, str) or len(reasoning) < 10:
    out["reasoning"] = "Task analyzed based on title and description provided."
  return out


class TaskAI:
  """Prompt-and-parse helpers over an AIProvider; every method degrades to fixed defaults."""

  def __init__(self, provider: AIProvider, *, timeout_seconds: float = 30, today: Callable[[], date] = date.today) -> None:
    self.provider = provider
    self.timeout_seconds = timeout_seconds
    self.today = today

  async def _ask(self, prompt: str, context: dict[str, Any]) -> str:
    return await asyncio.wait_for(self.provider.generate(prompt=prompt, context=context), timeout=self.timeout_seconds)

  async def analyze_task(self, title: str, description: str | None) -> dict[str, Any]:
    today = self.today()
    prompt = (
      "Analyze this project management task and provide structured predictions in JSON format:\n\n"
      f"Task Title: {title}\nTask Description: {description or 'No description provided'}\n\n"
      "Provide analysis in this exact JSON format:\n"
      '{"priority": "medium", "estimatedDays": 7, "complexity": "moderate", "suggestedDeadline": "YYYY-MM-DD", '
      '"reasoning": "Brief explanation in 1-2 sentences", "suggestions": ["Tip 1", "Tip 2", "Tip 3"]}\n\n'
      "Rules:\n"
      '- priority: must be "high", "medium", or "low"\n'
      "- estimatedDays: number between 1 and 30\n"
      '- complexity: must be "simple", "moderate", or "complex"\n'
      f"- suggestedDeadline: format as YYYY-MM-DD ({today.isoformat()} or later)\n"
      "- reasoning: 1-2 sentences explaining the analysis\n"
      "- suggestions: exactly 3 actionable tips (each under 100 characters)\n\n"
      "Return ONLY valid JSON."
    )
    try:
      raw = await self._ask(prompt, {"kind": "analyze", "json": True, "title": title, "description": description})
      data = sanitize_analysis(json.loads(raw), today)
    except Exception as exc:
      logger.warning("ai_analysis_failed", error=str(exc) or exc.__class__.__name__)
      return {"success": False, "error": str(exc) or "AI analysis failed", "data": fallback_analysis(today)}
    return {"success": True, "data": data}

  async def suggest_priority(self, title: str, description: str | None) -> dict[str, Any]:
    prompt = (
      f"{_task_block(title, description)}\n\n"
      'Based on this task, what priority should it have? Respond with ONLY one word: "high", "medium", or "low"'
    )
    try:
      raw = await self._ask(prompt, {"kind": "priority", "title": title, "description": description})
    except Exception as exc:
      logger.warning("ai_priority_failed", error=str(exc) or exc.__class__.__name__)
      return {"success": False, "priority": "medium"}
    priority = raw.strip().strip('."').lower()
    return {"success": True, "priority": priority if priority in PRIORITIES else "medium"}

  async def suggest_deadline(self, title: str, description: str | None) -> dict[str, Any]:
    today = self.today()
    prompt = (
      f"{_task_block(title, description)}\n\n"
      "How many days will this task take to complete? Consider complexity and typical project timelines. "
      "Respond with ONLY a number between 1 and 30."
    )
    try:
      raw = await self._ask(prompt, {"kind": "deadline", "title": title, "description": description})
    except Exception as exc:
      logger.warning("ai_deadline_failed", error=str(exc) or exc.__class__.__name__)
      return {
        "success": False,
        "estimatedDays": DEFAULT_DAYS,
        "suggestedDeadline": (today + timedelta(days=DEFAULT_DAYS)).isoformat(),
      }
    digits = re.sub(r"[^\d]", "", raw or "")
    days = int(digits) if digits else 0
    if not 1 <= days <= 30:
      days = DEFAULT_DAYS
    return {"success": True, "estimatedDays": days, "suggestedDeadline": (today + timedelta(days=days)).isoformat()}

  async def get_tips(self, title: str, description: str | None) -> dict[str, Any]:
    prompt = (
      f"{_task_block(title, description)}\n\n"
      "Provide exactly 3 short, practical tips for completing this task effectively. "
      "Each tip should be concise (under 100 characters) and actionable.\n\n"
      'Format: Return a JSON object like {"tips": ["Tip 1 here", "Tip 2 here", "Tip 3 here"]}'
    )
    try:
      raw = await self._ask(prompt, {"kind": "tips", "json": True, "title": title, "description": description})
      parsed = json.loads(raw)
    except Exception as exc:
      logger.warning("ai_tips_failed", error=str(exc) or exc.__class__.__name__)
      return {"success": False, "tips": list(DEFAULT_TIPS)}
    tips = parsed if isinstance(parsed, list) else (parsed.get("tips") if isinstance(parsed, dict) else None) or []
    cleaned = [str(t).strip() for t in tips if isinstance(t, str) and 0 < len(t.strip()) < 150][:3]
    return {"success": True, "tips": (cleaned + DEFAULT_TIPS)[:3]}
