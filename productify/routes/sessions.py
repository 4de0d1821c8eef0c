from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from productify.deps import require_user_email, path_day
from productify.schemas import GeneratePayload, StatusPayload, ItemTickPayload
from productify.services import materializer, session_state, time_tracker

router = APIRouter()


@router.get("/v1/sessions/active")
async def get_active_session(user_email: str = Depends(require_user_email)):
    session = await time_tracker.get_active(user_email)
    return {"session": jsonable_encoder(session) if session else None}


@router.get("/v1/sessions/month/{year}/{month}")
async def month_summary(year: int, month: int, user_email: str = Depends(require_user_email)):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Invalid month")
    return await materializer.month_summary(user_email, year, month)


@router.get("/v1/sessions/{day}")
async def list_sessions(day: date = Depends(path_day), user_email: str = Depends(require_user_email)):
    return jsonable_encoder(await materializer.list_sessions(user_email, day))


@router.post("/v1/sessions/generate/{day}")
async def generate_sessions(
    payload: GeneratePayload | None = None,
    day: date = Depends(path_day),
    user_email: str = Depends(require_user_email),
):
    override = payload.sessions if payload else None
    sessions = await materializer.materialize(user_email, day, override)
    return jsonable_encoder(sessions)


@router.put("/v1/sessions/items/{item_id}/tick")
async def tick_item(
    item_id: str,
    payload: ItemTickPayload | None = None,
    user_email: str = Depends(require_user_email),
):
    completed_count = payload.completed_count if payload else None
    return jsonable_encoder(await session_state.tick_item(user_email, item_id, completed_count))


@router.put("/v1/sessions/{session_id}/status")
async def set_status(session_id: str, payload: StatusPayload, user_email: str = Depends(require_user_email)):
    return jsonable_encoder(await session_state.set_status(user_email, session_id, payload.status))


@router.put("/v1/sessions/{session_id}/track/start")
async def start_tracking(session_id: str, user_email: str = Depends(require_user_email)):
    return jsonable_encoder(await time_tracker.start(user_email, session_id))


@router.put("/v1/sessions/{session_id}/track/stop")
async def stop_tracking(session_id: str, user_email: str = Depends(require_user_email)):
    return jsonable_encoder(await time_tracker.stop(user_email, session_id))
