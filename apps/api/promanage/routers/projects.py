from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from promanage import store
from promanage.activity import record_activity
from promanage.components import Components
from promanage.deps import get_components, get_current_user, get_db, require_manager
from promanage.models import ChatMessage, ChatParticipant, ChatRoom, Profile, Project, Task
from promanage.schemas import ChatRoomOut, ProjectCreateIn, ProjectOut, ProjectUpdateIn

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _project_out(p: Project, room: ChatRoom | None) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    status=p.status,
    priority=p.priority,
    startDate=p.start_date,
    endDate=p.end_date,
    createdBy=p.created_by,
    managerId=p.manager_id,
    chatRoomId=room.id if room else None,
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


def _room_out(r: ChatRoom) -> ChatRoomOut:
  return ChatRoomOut(id=r.id, name=r.name, roomType=r.room_type, projectId=r.project_id, createdAt=r.created_at)


def _visible_project_ids(user: Profile) -> Any:
  # Employees see projects they have work in or whose chat they belong to.
  via_tasks = select(Task.project_id).where(Task.assignee_id == user.id)
  via_chat = (
    select(ChatRoom.project_id)
    .join(ChatParticipant, ChatParticipant.room_id == ChatRoom.id)
    .where(ChatParticipant.user_id == user.id, ChatRoom.project_id.is_not(None))
  )
  return via_tasks.union(via_chat)


async def _get_project_or_404(db: AsyncSession, project_id: str, user: Profile) -> Project:
  p = await db.get(Project, project_id)
  if p is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
  if user.role == "manager":
    allowed = user.id in (p.created_by, p.manager_id)
  else:
    res = await db.execute(select(Project.id).where(Project.id == p.id, Project.id.in_(_visible_project_ids(user))))
    allowed = res.first() is not None
  if not allowed:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
  return p


@router.get("", response_model=list[ProjectOut])
async def list_projects(user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectOut]:
  q = select(Project, ChatRoom).outerjoin(ChatRoom, ChatRoom.project_id == Project.id)
  if user.role == "manager":
    q = q.where(or_(Project.created_by == user.id, Project.manager_id == user.id))
  else:
    q = q.where(Project.id.in_(_visible_project_ids(user)))
  res = await db.execute(q.order_by(Project.created_at.desc()))
  return [_project_out(p, room) for p, room in res.all()]


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  p = await _get_project_or_404(db, project_id, user)
  return _project_out(p, await store.project_room(db, p.id))


@router.get("/{project_id}/chat-room", response_model=ChatRoomOut)
async def get_project_chat_room(
  project_id: str, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)
) -> ChatRoomOut:
  p = await _get_project_or_404(db, project_id, user)
  room = await store.project_room(db, p.id)
  if room is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat room not found")
  return _room_out(room)


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
  payload: ProjectCreateIn,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> ProjectOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name is required")
  p = Project(
    name=name,
    description=payload.description,
    status=payload.status,
    priority=payload.priority,
    start_date=payload.startDate,
    end_date=payload.endDate,
    created_by=user.id,
    manager_id=user.id,
  )
  db.add(p)
  await db.flush()
  room = ChatRoom(name=f"{name} Chat", room_type="project", project_id=p.id, created_by=user.id)
  db.add(room)
  await db.flush()
  db.add(ChatParticipant(room_id=room.id, user_id=user.id))
  await db.commit()
  await db.refresh(p)
  logger.info("project_created", project_id=p.id, room_id=room.id, manager_id=user.id)

  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="project_created",
    entity_type="project",
    entity_id=p.id,
    description=f"Created project \"{p.name}\"",
  )
  return _project_out(p, room)


@router.put("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> ProjectOut:
  p = await _get_project_or_404(db, project_id, user)
  fields = payload.model_fields_set
  if payload.name is not None:
    p.name = payload.name.strip()
  if "description" in fields:
    p.description = payload.description
  if payload.status is not None:
    p.status = payload.status
  if payload.priority is not None:
    p.priority = payload.priority
  if "startDate" in fields:
    p.start_date = payload.startDate
  if "endDate" in fields:
    p.end_date = payload.endDate
  await db.commit()
  await db.refresh(p)

  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="project_updated",
    entity_type="project",
    entity_id=p.id,
    description=f"Updated project \"{p.name}\"",
    metadata={"fields": sorted(fields)},
  )
  return _project_out(p, await store.project_room(db, p.id))


@router.delete("/{project_id}")
async def delete_project(
  project_id: str,
  user: Profile = Depends(require_manager),
  db: AsyncSession = Depends(get_db),
  components: Components = Depends(get_components),
) -> dict[str, Any]:
  p = await _get_project_or_404(db, project_id, user)
  name = p.name
  # Explicit child deletes; SQLite does not enforce ON DELETE CASCADE by default.
  room_ids = select(ChatRoom.id).where(ChatRoom.project_id == p.id)
  await db.execute(delete(ChatMessage).where(ChatMessage.room_id.in_(room_ids)))
  await db.execute(delete(ChatParticipant).where(ChatParticipant.room_id.in_(room_ids)))
  await db.execute(delete(ChatRoom).where(ChatRoom.project_id == p.id))
  await db.execute(delete(Task).where(Task.project_id == p.id))
  await db.delete(p)
  await db.commit()

  await record_activity(
    components.session_factory,
    user_id=user.id,
    action_type="project_deleted",
    entity_type="project",
    entity_id=project_id,
    description=f"Deleted project \"{name}\"",
  )
  return {"success": True, "message": "Project deleted successfully"}
