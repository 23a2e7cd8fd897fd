"""
Admin API for master key operations.

Lets an operator (or the summarizer CLI) manage the service without the
dashboard:
1. Read and update system settings (shared OpenRouter key, per-tier key rules)
2. Read and update the tier -> model table
3. List users, change a user's tier, approve or reject student status, purge a user
4. Inspect and clear usage history, dashboard totals
5. Read the audit trail of all of the above

Authentication: Bearer token with ADMIN_API_KEY value. An optional
X-Admin-Email header names the operator in the audit trail.
"""
from typing import Optional

from fastapi import APIRouter, Request, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_admin_key, mask_secret
from app.database import get_db
from app.dependencies import get_config_cache, get_usage_ledger
from app.errors import NotFoundError
from app.models import AdminAction
from app.services.admin_log_service import AdminLogService, serialize_action
from app.services.config_cache import ConfigCache
from app.services.model_config_service import ModelConfigService, missing_model_error
from app.services.settings_service import SettingsService
from app.services.usage_ledger import UsageLedger
from app.services.user_service import UserService


router = APIRouter(prefix="/api/admin", tags=["Admin"])


class UpdateSettingRequest(BaseModel):
    """New value for a setting. Secrets are encrypted before storage."""
    value: str


class UpdateModelRequest(BaseModel):
    """Fields to change on a tier's model. Omitted fields stay as they are."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: Optional[str] = Field(None, alias="modelId")
    model_name: Optional[str] = Field(None, alias="modelName")
    max_output_tokens: Optional[int] = Field(None, alias="maxOutputTokens")
    cost_per_1m_input: Optional[float] = Field(None, alias="costPer1MInput")
    cost_per_1m_output: Optional[float] = Field(None, alias="costPer1MOutput")
    context_window: Optional[int] = Field(None, alias="contextWindow")


class UpdateTierRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str
    plan_name: Optional[str] = Field(None, alias="planName")


class RejectStudentRequest(BaseModel):
    reason: Optional[str] = None


def serialize_model(row) -> dict:
    return {
        "tier": row.tier,
        "modelId": row.model_id,
        "modelName": row.model_name,
        "maxOutputTokens": row.max_output_tokens,
        "costPer1MInput": float(row.cost_per_1m_input),
        "costPer1MOutput": float(row.cost_per_1m_output),
        "contextWindow": row.context_window,
        "updatedBy": row.updated_by,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


@router.get("/settings")
async def list_settings(request: Request, db: AsyncSession = Depends(get_db)):
    """
    List all system settings. Secret values are masked.

    **Request:**
    ```
    GET /api/admin/settings
    Authorization: Bearer <ADMIN_API_KEY>
    ```
    """
    await verify_admin_key(request)
    return {"success": True, "settings": await SettingsService(db).list_settings()}


@router.get("/settings/{key}")
async def get_setting(key: str, request: Request, db: AsyncSession = Depends(get_db)):
    await verify_admin_key(request)
    service = SettingsService(db)
    setting = await service.get(key)
    if setting is None:
        raise NotFoundError(f"Unknown setting: {key}", context={"setting_key": key})
    value = await service.get_value(key) if setting.is_secret else setting.setting_value
    return {
        "success": True,
        "key": key,
        "value": mask_secret(value) if setting.is_secret else value,
        "isSecret": setting.is_secret,
    }


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    body: UpdateSettingRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    config_cache: ConfigCache = Depends(get_config_cache),
):
    """
    Update a setting.

    Updating openrouter_api_key takes effect on the very next request.

    **Request:**
    ```
    PUT /api/admin/settings/openrouter_api_key
    Authorization: Bearer <ADMIN_API_KEY>
    Content-Type: application/json

    {"value": "sk-or-v1-..."}
    ```
    """
    updated_by = await verify_admin_key(request)
    setting = await SettingsService(db, config_cache).update(key, body.value, updated_by)
    return {"success": True, "key": setting.setting_key, "message": f"Setting {key} updated"}


@router.get("/models")
async def list_models(request: Request, db: AsyncSession = Depends(get_db)):
    await verify_admin_key(request)
    rows = await ModelConfigService(db).list_models()
    return {"success": True, "models": [serialize_model(row) for row in rows]}


@router.get("/models/{tier}")
async def get_model(tier: str, request: Request, db: AsyncSession = Depends(get_db)):
    await verify_admin_key(request)
    row = await ModelConfigService(db).get_row(tier)
    if row is None:
        raise missing_model_error(tier)
    return {"success": True, "model": serialize_model(row)}


@router.put("/models/{tier}")
async def update_model(
    tier: str,
    body: UpdateModelRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    config_cache: ConfigCache = Depends(get_config_cache),
):
    """
    Change the model or pricing for a tier.

    **Request:**
    ```
    PUT /api/admin/models/managed
    Authorization: Bearer <ADMIN_API_KEY>
    Content-Type: application/json

    {"modelId": "anthropic/claude-sonnet-4.5", "costPer1MInput": 3, "costPer1MOutput": 15}
    ```
    """
    updated_by = await verify_admin_key(request)
    row = await ModelConfigService(db, config_cache).update_model(
        tier,
        updated_by=updated_by,
        **body.model_dump(exclude_none=True),
    )
    return {"success": True, "model": serialize_model(row)}


@router.put("/users/{extension_user_id}/tier")
async def update_user_tier(
    extension_user_id: str,
    body: UpdateTierRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    config_cache: ConfigCache = Depends(get_config_cache),
):
    """Set a user's tier directly (support, comps). Billing events may change it again."""
    updated_by = await verify_admin_key(request)
    service = UserService(db, config_cache)
    user = await service.update_tier(
        extension_user_id, body.tier, updated_by, plan_name=body.plan_name,
    )
    return {"success": True, "user": await service.serialize(user)}


@router.get("/users")
async def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """
    List users, newest first, with lifetime usage totals.

    **Request:**
    ```
    GET /api/admin/users?page=2&limit=50
    Authorization: Bearer <ADMIN_API_KEY>
    ```
    """
    await verify_admin_key(request)
    users, total_users = await UserService(db).list_users(page=page, limit=limit)
    return {
        "success": True,
        "users": users,
        "pagination": {
            "page": page,
            "limit": limit,
            "totalUsers": total_users,
            "totalPages": (total_users + limit - 1) // limit,
        },
    }


@router.post("/users/{extension_user_id}/student/approve")
async def approve_student(extension_user_id: str, request: Request, db: AsyncSession = Depends(get_db)):
    """Verify a user as a student. The verification expires after STUDENT_VERIFICATION_DAYS."""
    updated_by = await verify_admin_key(request)
    service = UserService(db)
    user = await service.approve_student(extension_user_id, updated_by)
    return {"success": True, "user": await service.serialize(user)}


@router.post("/users/{extension_user_id}/student/reject")
async def reject_student(
    extension_user_id: str,
    request: Request,
    body: Optional[RejectStudentRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Deny or revoke student status.

    **Request:**
    ```
    POST /api/admin/users/abc123/student/reject
    Authorization: Bearer <ADMIN_API_KEY>
    Content-Type: application/json

    {"reason": "Document unreadable"}
    ```
    """
    updated_by = await verify_admin_key(request)
    service = UserService(db)
    user = await service.reject_student(
        extension_user_id, updated_by, reason=body.reason if body else None,
    )
    return {"success": True, "user": await service.serialize(user)}


@router.delete("/users/{extension_user_id}")
async def purge_user(
    extension_user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    config_cache: ConfigCache = Depends(get_config_cache),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """Hard-delete a user and their usage history. Stripe is not touched."""
    updated_by = await verify_admin_key(request)
    await UserService(db, config_cache).purge_user(extension_user_id, updated_by, usage_ledger=ledger)
    return {"success": True, "message": f"User {extension_user_id} deleted"}


@router.get("/usage")
async def usage_analytics(
    request: Request,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """Per-day usage totals across all users."""
    await verify_admin_key(request)
    daily = await ledger.get_usage_analytics(db, days=days)
    return {
        "success": True,
        "days": days,
        "totals": {
            "videos_processed": sum(d["videos_processed"] for d in daily),
            "tokens_used": sum(d["tokens_used"] for d in daily),
            "api_calls": sum(d["api_calls"] for d in daily),
            "cost_incurred": sum(d["cost_incurred"] for d in daily),
        },
        "daily": daily,
    }


@router.delete("/usage")
async def clear_usage(
    request: Request,
    extension_user_id: Optional[str] = Query(None, alias="extensionUserId"),
    db: AsyncSession = Depends(get_db),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """
    Clear usage history for one user, or for everyone when no user is given.

    **Request:**
    ```
    DELETE /api/admin/usage?extensionUserId=abc123
    Authorization: Bearer <ADMIN_API_KEY>
    ```
    """
    updated_by = await verify_admin_key(request)
    deleted = await ledger.reset_usage(db, extension_user_id)
    db.add(AdminAction(
        admin_email=updated_by,
        action="RESET_USAGE",
        target_entity="user_usage",
        details={"extension_user_id": extension_user_id, "rows_deleted": deleted},
    ))
    await db.commit()
    return {"success": True, "deleted": deleted}


@router.get("/stats")
async def dashboard_stats(request: Request, db: AsyncSession = Depends(get_db)):
    """User counts per tier, verified students, and usage totals (all time and today)."""
    await verify_admin_key(request)
    return {"success": True, "stats": await UserService(db).dashboard_stats()}


@router.get("/logs")
async def admin_logs(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    action: Optional[str] = Query(None),
    admin_email: Optional[str] = Query(None, alias="adminEmail"),
    db: AsyncSession = Depends(get_db),
):
    """
    Audit trail of admin changes, most recent first.

    **Request:**
    ```
    GET /api/admin/logs?limit=20&action=UPDATE_TIER
    Authorization: Bearer <ADMIN_API_KEY>
    ```
    """
    await verify_admin_key(request)
    actions = await AdminLogService(db).list_actions(limit=limit, action=action, admin_email=admin_email)
    return {"success": True, "logs": [serialize_action(a) for a in actions]}
