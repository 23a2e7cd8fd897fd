"""
Health check.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Database reachability plus which integrations are configured (never their values)."""
    try:
        await db.execute(text("SELECT 1"))
        database = {"status": "ok"}
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        database = {"status": "error", "error": str(e)}

    state = request.app.state
    response = {
        "status": "healthy" if database["status"] == "ok" else "degraded",
        "service": "summarizer-pro-backend",
        "version": "1.0.0",
        "checks": {
            "database": database,
            "stripe": {"configured": bool(settings.STRIPE_SECRET_KEY and settings.STRIPE_WEBHOOK_SECRET)},
            "ai_provider": {"env_fallback_key": bool(settings.OPENROUTER_API_KEY)},
            "background_tasks": {"pending": state.task_runner.pending},
            "usage_dedup": {"tracked_videos": state.usage_ledger.tracked_videos},
            "config_cache": {"cached_users": state.config_cache.cached_users},
        },
    }
    status_code = 200 if response["status"] == "healthy" else 503
    return JSONResponse(response, status_code=status_code)
