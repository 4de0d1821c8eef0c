from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from productify.deps import require_user_email, path_day
from productify.services import stats

router = APIRouter()


@router.get("/v1/stats/range")
async def stats_range(
    start: date = Query(...),
    end: date = Query(...),
    user_email: str = Depends(require_user_email),
):
    if end < start:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    return {"items": await stats.compute_range(user_email, start, end)}


@router.get("/v1/stats/{day}")
async def stats_for_day(day: date = Depends(path_day), user_email: str = Depends(require_user_email)):
    return await stats.compute_stats(user_email, day)
