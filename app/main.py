import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import init_db, async_session
from app.dependencies import configure_services
from app.errors import AppError, app_error_handler
from app.routers import (
    users,
    stripe_routes,
    webhook,
    admin_api,
    health,
)
from app.services.model_config_service import seed_model_configs
from app.services.settings_service import SettingsService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed defaults, and drain background writes on shutdown."""
    await init_db()

    async with async_session() as db:
        await seed_model_configs(db)
        await SettingsService(db).ensure_defaults()

    logger.info("Summarizer backend started")
    yield

    # Let in-flight usage writes land before the loop goes away
    await app.state.task_runner.drain()


app = FastAPI(
    title="Summarizer Pro",
    description="Backend for the YouTube summarizer extension: tiers, billing and usage metering",
    version="1.0.0",
    lifespan=lifespan,
)

configure_services(app, async_session)

# The extension calls from its own origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(users.router, tags=["users"])
app.include_router(stripe_routes.router, tags=["stripe"])
app.include_router(webhook.router, tags=["webhook"])
app.include_router(admin_api.router)
app.include_router(health.router, tags=["health"])

app.add_exception_handler(AppError, app_error_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unexpected: log the traceback, answer with a generic 500."""
    logger.exception(
        f"Unhandled error: {type(exc).__name__}: {exc}",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "type": "internal_error",
                "message": "Internal server error",
                "category": "internal",
            },
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.DEFAULT_HOST, port=settings.DEFAULT_PORT)
