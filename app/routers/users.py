"""
Extension-facing routes: registration, model lookup, usage and chunk processing.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_usage_ledger, get_video_processor
from app.errors import ValidationError, InternalError
from app.services.usage_ledger import UsageLedger
from app.services.user_service import UserService
from app.services.video_processor import VideoProcessor

router = APIRouter(prefix="/api")


class ExtensionModel(BaseModel):
    """Bodies use the extension's camelCase names."""
    model_config = ConfigDict(populate_by_name=True)


class RegisterUserRequest(ExtensionModel):
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    email: Optional[str] = None


class TrackUsageRequest(ExtensionModel):
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    videos_processed: Optional[int] = Field(None, alias="videosProcessed", ge=0)
    tokens_used: int = Field(0, alias="tokensUsed", ge=0)
    cost_incurred: float = Field(0.0, alias="costIncurred", ge=0)


class ProcessVideoRequest(ExtensionModel):
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    video_id: Optional[str] = Field(None, alias="videoId")
    transcript: Optional[str] = None
    prompt: Optional[str] = None
    max_tokens: Optional[int] = Field(None, alias="maxTokens")


@router.post("/user")
async def register_user(body: RegisterUserRequest, db: AsyncSession = Depends(get_db)):
    """Get or create the user for an extension install."""
    service = UserService(db)
    user, created = await service.get_or_create(body.extension_user_id, body.email)
    return {"success": True, "created": created, "user": await service.serialize(user)}


@router.get("/user/{extension_user_id}/model")
async def get_user_model(extension_user_id: str, db: AsyncSession = Depends(get_db)):
    """The model assigned to the user's tier and whether they need their own key."""
    result = await UserService(db).get_user_model(extension_user_id)
    return {"success": True, **result}


@router.post("/user/usage")
async def track_usage(
    body: TrackUsageRequest,
    db: AsyncSession = Depends(get_db),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """
    Usage report from a bring-your-own-key client.

    These clients call the AI provider themselves, so the report is the
    only record of their usage.
    """
    if not body.extension_user_id:
        raise ValidationError("Extension user ID is required")
    user = await UserService(db).require(body.extension_user_id)
    recorded = await ledger.record_usage(
        user_id=user.id,
        extension_user_id=user.extension_user_id,
        video_id=None,
        tokens_used=body.tokens_used,
        cost_incurred=body.cost_incurred,
        videos_processed=body.videos_processed,
    )
    if not recorded:
        raise InternalError("Failed to track usage")
    return {"success": True, "message": "Usage tracked"}


@router.get("/user/{extension_user_id}/stats")
async def get_user_stats(
    extension_user_id: str,
    db: AsyncSession = Depends(get_db),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    stats = await ledger.get_user_stats(db, extension_user_id)
    return {"success": True, "stats": stats}


@router.post("/process-video")
async def process_video(
    body: ProcessVideoRequest,
    processor: VideoProcessor = Depends(get_video_processor),
):
    """Summarize one transcript chunk with the shared key (managed/trial tiers)."""
    result = await processor.process_chunk(
        extension_user_id=body.extension_user_id,
        video_id=body.video_id,
        transcript=body.transcript,
        prompt=body.prompt,
        requested_max_tokens=body.max_tokens,
    )
    return {"success": True, **result}
