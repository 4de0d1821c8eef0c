from __future__ import annotations

from datetime import date as dt_date
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class GeneratePayload(BaseModel):
    sessions: Optional[List[Dict[str, Any]]] = None


class StatusPayload(BaseModel):
    status: str


class ItemTickPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    completed_count: Optional[int] = Field(None, alias="completedCount")


class BacklogTickPayload(BaseModel):
    count: Optional[int] = None


class TemplatePayload(BaseModel):
    sessions: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)


class WaterPayload(BaseModel):
    amount: Optional[float] = None
    date: Optional[dt_date] = None


class WorkoutPayload(BaseModel):
    date: Optional[dt_date] = None


class WaterTargetPayload(BaseModel):
    target: float
