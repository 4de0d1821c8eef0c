from __future__ import annotations

from fastapi import APIRouter, Depends

from productify.deps import require_user_email
from productify.schemas import TemplatePayload
from productify.services import templates

router = APIRouter()


@router.get("/v1/templates")
async def list_template(user_email: str = Depends(require_user_email)):
    return {"items": await templates.list_template(user_email)}


@router.put("/v1/templates")
async def replace_template(payload: TemplatePayload, user_email: str = Depends(require_user_email)):
    items = await templates.replace_template(user_email, payload.sessions)
    return {"items": items}
