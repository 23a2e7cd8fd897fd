"""
Shared process-wide services and the FastAPI dependencies that hand them out.

The config cache, usage ledger and task runner hold in-process state, so
one instance of each lives on app.state for the life of the process.
Tests rebuild them against their own database with configure_services().
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.gateway import StripeGateway
from app.billing.plans import PlanCatalog
from app.billing.reconciler import BillingReconciler
from app.database import get_db
from app.providers.openrouter import OpenRouterClient
from app.services.background import TaskRunner
from app.services.config_cache import ConfigCache
from app.services.usage_ledger import UsageLedger
from app.services.video_processor import VideoProcessor


def configure_services(
    app,
    session_factory: async_sessionmaker,
    gateway=None,
    ai_client: Optional[OpenRouterClient] = None,
    catalog: Optional[PlanCatalog] = None,
    config_cache: Optional[ConfigCache] = None,
    usage_ledger: Optional[UsageLedger] = None,
):
    """Attach the shared services to app.state."""
    app.state.config_cache = config_cache or ConfigCache(session_factory)
    app.state.usage_ledger = usage_ledger or UsageLedger(session_factory)
    app.state.task_runner = TaskRunner()
    app.state.ai_client = ai_client or OpenRouterClient()
    app.state.payment_gateway = gateway or StripeGateway()
    app.state.plan_catalog = catalog or PlanCatalog.from_settings()


def get_config_cache(request: Request) -> ConfigCache:
    return request.app.state.config_cache


def get_usage_ledger(request: Request) -> UsageLedger:
    return request.app.state.usage_ledger


def get_task_runner(request: Request) -> TaskRunner:
    return request.app.state.task_runner


def get_payment_gateway(request: Request):
    return request.app.state.payment_gateway


def get_plan_catalog(request: Request) -> PlanCatalog:
    return request.app.state.plan_catalog


def get_video_processor(request: Request) -> VideoProcessor:
    state = request.app.state
    return VideoProcessor(
        config_cache=state.config_cache,
        usage_ledger=state.usage_ledger,
        ai_client=state.ai_client,
        task_runner=state.task_runner,
    )


def get_reconciler(request: Request, db: AsyncSession = Depends(get_db)) -> BillingReconciler:
    state = request.app.state
    return BillingReconciler(db, state.payment_gateway, state.plan_catalog, state.config_cache)
