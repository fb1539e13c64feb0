from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from promanage.components import Components
from promanage.config import settings
from promanage.deps import get_components
from promanage.rate_limit import rate_limited
from promanage.schemas import AIAnalyzeOut, AITaskIn

router = APIRouter(
  prefix="/api/ai",
  tags=["ai"],
  dependencies=[Depends(rate_limited("ai", lambda: settings.rate_limit_ai_per_minute))],
)


@router.post("/analyze-task", response_model=AIAnalyzeOut, response_model_exclude_none=True)
async def analyze_task(payload: AITaskIn, components: Components = Depends(get_components)) -> dict[str, Any]:
  title = (payload.title or "").strip()
  if not title:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task title is required")
  return await components.ai.analyze_task(title, payload.description or "")


@router.post("/suggest-priority")
async def suggest_priority(payload: AITaskIn, components: Components = Depends(get_components)) -> dict[str, Any]:
  return await components.ai.suggest_priority((payload.title or "").strip(), payload.description or "")


@router.post("/suggest-deadline")
async def suggest_deadline(payload: AITaskIn, components: Components = Depends(get_components)) -> dict[str, Any]:
  return await components.ai.suggest_deadline((payload.title or "").strip(), payload.description or "")


@router.post("/get-tips")
@router.post("/task-tips", include_in_schema=False)
async def get_tips(payload: AITaskIn, components: Components = Depends(get_components)) -> dict[str, Any]:
  return await components.ai.get_tips((payload.title or "").strip(), payload.description or "")
