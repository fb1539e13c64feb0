from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from promanage.config import Settings

SYSTEM_PROMPT = (
  "You are a project management AI assistant. Provide accurate, structured analysis for task management. "
  "Always respond in valid JSON format when requested."
)


class AIUnavailable(RuntimeError):
  pass


class AIProvider(Protocol):
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str: ...


_HIGH_WORDS = ("urgent", "asap", "critical", "outage", "security", "bug", "fix", "broken", "blocker", "production")
_LOW_WORDS = ("cleanup", "clean up", "docs", "documentation", "typo", "nice to have", "refactor", "polish")
_COMPLEX_WORDS = ("migration", "integrate", "integration", "architecture", "redesign", "platform", "infrastructure")


@dataclass
class LocalDeterministicProvider:
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    # Offline heuristics so the AI endpoints stay useful without an API key.
    kind = context.get("kind", "analyze")
    title = str(context.get("title") or "")
    description = str(context.get("description") or "")
    hay = f"{title}\n{description}".lower()

    priority = "medium"
    if any(w in hay for w in _HIGH_WORDS):
      priority = "high"
    elif any(w in hay for w in _LOW_WORDS):
      priority = "low"

    complexity = "moderate"
    if any(w in hay for w in _COMPLEX_WORDS) or len(description) > 600:
      complexity = "complex"
    elif len(description) < 80:
      complexity = "simple"
    days = {"simple": 3, "moderate": 7, "complex": 14}[complexity]

    if kind == "priority":
      return priority
    if kind == "deadline":
      return str(days)
    if kind == "tips":
      return json.dumps(
        {
          "tips": [
            f"Define what done means for \"{title[:40]}\"",
            "Split the work into steps you can finish in a day",
            "Share progress with your manager midway",
          ]
        }
      )
    return json.dumps(
      {
        "priority": priority,
        "estimatedDays": days,
        "complexity": complexity,
        "reasoning": f"Estimated from the task wording: {complexity} scope with {priority} urgency.",
        "suggestions": [
          "Break the task into smaller steps",
          "Agree on acceptance criteria before starting",
          "Review progress at the halfway point",
        ],
      }
    )


@dataclass
class OpenAICompatibleProvider:
  api_key: str
  base_url: str
  model: str
  timeout_seconds: float = 30

  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    headers = {"Authorization": f"Bearer {self.api_key}"}
    body: dict[str, Any] = {
      "model": self.model,
      "messages": [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
      ],
      "temperature": 0.7,
      "max_tokens": 1024,
      "top_p": 0.9,
    }
    if context.get("json"):
      body["response_format"] = {"type": "json_object"}
    async with httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self.timeout_seconds) as client:
      # OpenAI-compatible chat completions API (Groq, OpenAI).
      r = await client.post("/chat/completions", json=body)
      r.raise_for_status()
      data = r.json()
      return data["choices"][0]["message"]["content"]


class DisabledAIProvider:
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    raise AIUnavailable("AI service unavailable")


def get_ai_provider(cfg: Settings) -> AIProvider:
  name = (cfg.ai_provider or "").strip().lower()
  if name in ("groq", "openai"):
    if not cfg.ai_api_key:
      return DisabledAIProvider()
    return OpenAICompatibleProvider(
      api_key=cfg.ai_api_key,
      base_url=cfg.ai_base_url,
      model=cfg.ai_model,
      timeout_seconds=float(cfg.ai_timeout_seconds),
    )
  if name == "local":
    return LocalDeterministicProvider()
  return DisabledAIProvider()
