from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from productify.deps import require_user_email, current_day
from productify.schemas import BacklogTickPayload
from productify.services import backlog

router = APIRouter()


@router.get("/v1/backlog")
async def list_backlog(user_email: str = Depends(require_user_email)):
    return {"items": await backlog.list_pending(user_email)}


@router.get("/v1/backlog/history")
async def backlog_history(
    limit: int = Query(backlog.HISTORY_LIMIT, ge=1, le=500),
    user_email: str = Depends(require_user_email),
):
    return {"items": await backlog.list_history(user_email, limit)}


@router.post("/v1/backlog/process")
async def process_backlog(user_email: str = Depends(require_user_email)):
    created = await backlog.process(user_email, current_day())
    return {"processed": len(created), "items": created}


@router.put("/v1/backlog/{entry_id}/tick")
async def tick_entry(
    entry_id: str,
    payload: BacklogTickPayload | None = None,
    user_email: str = Depends(require_user_email),
):
    count = payload.count if payload and payload.count is not None else 1
    return await backlog.tick(user_email, entry_id, count)


@router.put("/v1/backlog/{entry_id}/resolve")
async def resolve_entry(entry_id: str, user_email: str = Depends(require_user_email)):
    return await backlog.resolve(user_email, entry_id)
