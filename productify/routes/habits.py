from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends

from productify.deps import require_user_email, path_day, current_day
from productify.schemas import WaterPayload, WorkoutPayload, WaterTargetPayload
from productify.services import habits

router = APIRouter()


@router.get("/v1/habits/{day}")
async def get_habits(day: date = Depends(path_day), user_email: str = Depends(require_user_email)):
    return await habits.get_day(user_email, day)


@router.post("/v1/habits/water")
async def add_water(payload: WaterPayload | None = None, user_email: str = Depends(require_user_email)):
    day = (payload.date if payload else None) or current_day()
    return await habits.add_water(user_email, day, payload.amount if payload else None)


@router.post("/v1/habits/workout")
async def toggle_workout(payload: WorkoutPayload | None = None, user_email: str = Depends(require_user_email)):
    day = (payload.date if payload else None) or current_day()
    return await habits.toggle_workout(user_email, day)


@router.get("/v1/settings/water-target")
async def get_water_target(user_email: str = Depends(require_user_email)):
    return {"target": await habits.get_water_target(user_email)}


@router.put("/v1/settings/water-target")
async def set_water_target(payload: WaterTargetPayload, user_email: str = Depends(require_user_email)):
    return {"target": await habits.set_water_target(user_email, payload.target)}
