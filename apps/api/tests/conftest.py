from __future__ import annotations

import secrets
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from promanage.ai.providers import LocalDeterministicProvider
from promanage.components import Components, build_components
from promanage.config import Settings
from promanage.db import init_models, make_engine, make_sessionmaker
from promanage.identity import IdentityProviderError, IdentityUser
from promanage.main import create_app
from promanage.models import Base, ChatParticipant, ChatRoom, Notification, Profile, Project, Task
from promanage.notifications.mailer import LocalMailer
from promanage.rate_limit import limiter


class FakeIdentity:
  """In-memory identity provider: bearer tokens map straight to users."""

  def __init__(self) -> None:
    self.tokens: dict[str, IdentityUser] = {}
    self.created: list[dict[str, Any]] = []
    self.invited: list[dict[str, Any]] = []
    self.invite_error: str | None = None
    self.create_error: str | None = None

  async def get_user(self, token: str) -> IdentityUser | None:
    return self.tokens.get(token)

  async def create_user(self, *, email: str, password: str | None, metadata: dict[str, Any], email_confirm: bool = True) -> IdentityUser:
    if self.create_error:
      raise IdentityProviderError(self.create_error, status_code=422)
    self.created.append({"email": email, "password": password, "metadata": metadata, "email_confirm": email_confirm})
    return IdentityUser(id=str(uuid.uuid4()), email=email, metadata=metadata)

  async def invite_user(self, *, email: str, metadata: dict[str, Any], redirect_to: str) -> IdentityUser:
    if self.invite_error:
      raise IdentityProviderError(self.invite_error, status_code=400)
    self.invited.append({"email": email, "metadata": metadata, "redirect_to": redirect_to})
    return IdentityUser(id=str(uuid.uuid4()), email=email, metadata=metadata)

  async def generate_recovery_link(self, *, email: str, redirect_to: str | None = None) -> str:
    return f"https://auth.test/recover?email={email}"


class FakeSocketServer:
  """Records what a Socket.IO AsyncServer would deliver to each connection."""

  def __init__(self) -> None:
    self.handlers: dict[str, Any] = {}
    self.rooms: dict[str, set[str]] = {}
    self.connected: set[str] = set()
    self.delivered: dict[str, list[tuple[str, Any]]] = {}

  def on(self, event: str, handler: Any) -> None:
    self.handlers[event] = handler

  async def enter_room(self, sid: str, room: str) -> None:
    self.rooms.setdefault(room, set()).add(sid)

  async def leave_room(self, sid: str, room: str) -> None:
    self.rooms.get(room, set()).discard(sid)

  async def emit(self, event: str, data: Any = None, to: str | None = None, room: str | None = None, skip_sid: str | None = None) -> None:
    target = to or room
    sids = set(self.connected) if target is None else set(self.rooms.get(target, set()))
    for sid in sids:
      if sid != skip_sid:
        self.delivered.setdefault(sid, []).append((event, data))

  async def connect(self, sid: str) -> None:
    self.connected.add(sid)
    # Every connection is implicitly in a room named after itself.
    self.rooms.setdefault(sid, set()).add(sid)
    await self.handlers["connect"](sid, {})

  async def disconnect(self, sid: str) -> None:
    self.connected.discard(sid)
    for members in self.rooms.values():
      members.discard(sid)
    await self.handlers["disconnect"](sid)

  async def trigger(self, event: str, sid: str, data: Any = None) -> None:
    await self.handlers[event](sid, data)

  def events(self, sid: str, name: str | None = None) -> list[tuple[str, Any]]:
    got = self.delivered.get(sid, [])
    return [e for e in got if name is None or e[0] == name]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return Settings(
    _env_file=None,
    database_url="sqlite+aiosqlite://",
    mail_provider="local",
    ai_provider="local",
    client_url="http://app.test",
    scheduler_timezone="Asia/Kolkata",
    enable_cron_jobs=False,
    redis_url=None,
  )


@pytest.fixture
async def session_factory():
  engine = make_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
  await init_models(engine)
  yield make_sessionmaker(engine)
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
  await engine.dispose()


@pytest.fixture
def components(settings: Settings, session_factory) -> Components:
  return build_components(
    settings,
    session_factory=session_factory,
    mailer=LocalMailer(),
    identity=FakeIdentity(),
    ai_provider=LocalDeterministicProvider(),
    sio=FakeSocketServer(),
  )


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
  limiter.reset_prefix("")
  yield
  limiter.reset_prefix("")


@pytest.fixture
async def client(components: Components) -> AsyncClient:
  transport = ASGITransport(app=create_app(components))
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def make_profile(
  components: Components,
  *,
  email: str | None = None,
  full_name: str = "Test User",
  role: str = "employee",
  manager_id: str | None = None,
  prefs: dict[str, Any] | None = None,
  no_email: bool = False,
) -> Profile:
  p = Profile(
    email=None if no_email else (email or f"{uuid.uuid4().hex[:8]}@example.com"),
    full_name=full_name,
    role=role,
    manager_id=manager_id,
    notification_preferences=prefs if prefs is not None else {},
  )
  async with components.session_factory() as db:
    db.add(p)
    await db.commit()
  return p


def auth_headers(components: Components, profile: Profile) -> dict[str, str]:
  token = secrets.token_urlsafe(16)
  components.identity.tokens[token] = IdentityUser(id=profile.id, email=profile.email)
  return {"Authorization": f"Bearer {token}"}


async def make_project(components: Components, *, owner: Profile, name: str = "Apollo") -> tuple[Project, ChatRoom]:
  async with components.session_factory() as db:
    p = Project(name=name, created_by=owner.id, manager_id=owner.id)
    db.add(p)
    await db.flush()
    room = ChatRoom(name=f"{name} Chat", room_type="project", project_id=p.id, created_by=owner.id)
    db.add(room)
    await db.flush()
    db.add(ChatParticipant(room_id=room.id, user_id=owner.id))
    await db.commit()
  return p, room


async def make_task(
  components: Components,
  *,
  project: Project | None = None,
  creator: Profile | None = None,
  assignee: Profile | None = None,
  title: str = "Write report",
  status: str = "todo",
  deadline: datetime | None = None,
  updated_at: datetime | None = None,
) -> Task:
  t = Task(
    project_id=project.id if project else None,
    title=title,
    created_by=creator.id if creator else None,
    assignee_id=assignee.id if assignee else None,
    status=status,
    deadline=deadline,
  )
  if updated_at is not None:
    t.updated_at = updated_at
  async with components.session_factory() as db:
    db.add(t)
    await db.commit()
  return t


async def notifications_for(components: Components, user_id: str) -> list[Notification]:
  async with components.session_factory() as db:
    res = await db.execute(select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at.asc()))
    return list(res.scalars().all())
