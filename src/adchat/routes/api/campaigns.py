"""Campaign creation with unique name allocation."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from adchat.auth.dependencies import UserContext, require_user
from adchat.campaigns.naming import CampaignNameAllocator, build_namer
from adchat.config import get_settings
from adchat.errors import CampaignCreationError, NameConflictError
from adchat.gateway.factory import build_gateway

router = APIRouter(tags=["api-campaigns"])


class CreateCampaignRequest(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    prompt: str = ""
    goal_type: str | None = Field(default=None, alias="goalType")


def get_allocator() -> CampaignNameAllocator:
    settings = get_settings()
    gateway = build_gateway(settings) if settings.campaign_namer == "gateway" else None
    return CampaignNameAllocator(build_namer(gateway), settings.name_allocation_attempts)


@router.post("/campaigns")
async def create_campaign(
    body: CreateCampaignRequest,
    ctx: UserContext = Depends(require_user),  # noqa: B008
    allocator: CampaignNameAllocator = Depends(get_allocator),  # noqa: B008
) -> JSONResponse:
    try:
        if body.name and body.name.strip():
            allocation = await allocator.create_named(
                ctx.user_id, body.name, source=body.prompt, goal=body.goal_type
            )
        else:
            allocation = await allocator.allocate(
                ctx.user_id, body.prompt, goal=body.goal_type
            )
    except NameConflictError as exc:
        return JSONResponse(
            status_code=409,
            content={"error": "name_conflict", "message": str(exc), "avoided": exc.avoided},
        )
    except CampaignCreationError as exc:
        return JSONResponse(
            status_code=500,
            content={"error": "campaign_creation_failed", "message": str(exc)},
        )
    return JSONResponse(
        status_code=201,
        content={
            "campaign": allocation.campaign.to_dict(),
            "conversationId": allocation.conversation.id,
            "adId": allocation.ad_id,
            "attempts": allocation.attempts,
        },
    )
