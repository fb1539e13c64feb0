from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class IdentityProviderError(RuntimeError):
  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code


@dataclass(frozen=True)
class IdentityUser:
  id: str
  email: str | None = None
  metadata: dict[str, Any] | None = None


class IdentityProvider(Protocol):
  async def get_user(self, token: str) -> IdentityUser | None: ...

  async def create_user(
    self, *, email: str, password: str | None, metadata: dict[str, Any], email_confirm: bool = True
  ) -> IdentityUser: ...

  async def invite_user(self, *, email: str, metadata: dict[str, Any], redirect_to: str) -> IdentityUser: ...

  async def generate_recovery_link(self, *, email: str, redirect_to: str | None = None) -> str: ...


def normalize_base_url(base_url: str) -> str:
  b = (base_url or "").strip().rstrip("/")
  if b and not (b.startswith("http://") or b.startswith("https://")):
    b = "https://" + b
  return b


def _error_message(res: httpx.Response) -> str:
  try:
    data = res.json()
  except ValueError:
    return res.text or f"HTTP {res.status_code}"
  if isinstance(data, dict):
    for key in ("msg", "message", "error_description", "error"):
      if isinstance(data.get(key), str) and data[key]:
        return data[key]
  return f"HTTP {res.status_code}"


def _user_from(data: Any) -> IdentityUser:
  if isinstance(data, dict) and isinstance(data.get("user"), dict):
    data = data["user"]
  if not isinstance(data, dict) or not data.get("id"):
    raise IdentityProviderError("Identity provider returned no user")
  return IdentityUser(id=str(data["id"]), email=data.get("email"), metadata=data.get("user_metadata") or {})


@dataclass
class SupabaseIdentityProvider:
  """Supabase GoTrue client: user-token verification plus the admin user endpoints."""

  base_url: str
  service_key: str
  timeout_seconds: float = 15

  def _client(self, bearer: str | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
      base_url=normalize_base_url(self.base_url) + "/auth/v1",
      timeout=self.timeout_seconds,
      headers={
        "apikey": self.service_key,
        "Authorization": f"Bearer {bearer or self.service_key}",
        "User-Agent": "ProManage/1.0",
      },
    )

  async def get_user(self, token: str) -> IdentityUser | None:
    async with self._client(bearer=token) as client:
      try:
        res = await client.get("/user")
      except httpx.HTTPError as exc:
        raise IdentityProviderError(f"Identity provider unreachable: {exc}") from exc
    if res.status_code in (401, 403, 404):
      return None
    if res.status_code >= 400:
      raise IdentityProviderError(_error_message(res), status_code=res.status_code)
    return _user_from(res.json())

  async def _admin_post(self, path: str, payload: dict[str, Any], *, params: dict[str, str] | None = None) -> Any:
    async with self._client() as client:
      try:
        res = await client.post(path, json=payload, params=params)
      except httpx.HTTPError as exc:
        raise IdentityProviderError(f"Identity provider unreachable: {exc}") from exc
    if res.status_code >= 400:
      raise IdentityProviderError(_error_message(res), status_code=res.status_code)
    return res.json() if res.content else {}

  async def create_user(
    self, *, email: str, password: str | None, metadata: dict[str, Any], email_confirm: bool = True
  ) -> IdentityUser:
    payload: dict[str, Any] = {"email": email, "email_confirm": email_confirm, "user_metadata": metadata}
    if password:
      payload["password"] = password
    return _user_from(await self._admin_post("/admin/users", payload))

  async def invite_user(self, *, email: str, metadata: dict[str, Any], redirect_to: str) -> IdentityUser:
    data = await self._admin_post("/invite", {"email": email, "data": metadata}, params={"redirect_to": redirect_to})
    return _user_from(data)

  async def generate_recovery_link(self, *, email: str, redirect_to: str | None = None) -> str:
    payload: dict[str, Any] = {"type": "recovery", "email": email}
    if redirect_to:
      payload["redirect_to"] = redirect_to
    data = await self._admin_post("/admin/generate_link", payload)
    link = data.get("action_link") if isinstance(data, dict) else None
    if not link and isinstance(data, dict):
      link = (data.get("properties") or {}).get("action_link")
    if not link:
      raise IdentityProviderError("Identity provider returned no recovery link")
    return str(link)


class UnconfiguredIdentityProvider:
  async def get_user(self, token: str) -> IdentityUser | None:
    raise IdentityProviderError("Identity provider not configured")

  async def create_user(
    self, *, email: str, password: str | None, metadata: dict[str, Any], email_confirm: bool = True
  ) -> IdentityUser:
    raise IdentityProviderError("Identity provider not configured")

  async def invite_user(self, *, email: str, metadata: dict[str, Any], redirect_to: str) -> IdentityUser:
    raise IdentityProviderError("Identity provider not configured")

  async def generate_recovery_link(self, *, email: str, redirect_to: str | None = None) -> str:
    raise IdentityProviderError("Identity provider not configured")


def build_identity_provider(supabase_url: str | None, service_key: str | None, *, timeout_seconds: float = 15) -> IdentityProvider:
  if not supabase_url or not service_key:
    logger.warning("identity_provider_unconfigured")
    return UnconfiguredIdentityProvider()
  return SupabaseIdentityProvider(base_url=supabase_url, service_key=service_key, timeout_seconds=timeout_seconds)
