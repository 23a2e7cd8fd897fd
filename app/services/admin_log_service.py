"""
Admin log service - read access to the admin_actions audit trail.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.models import AdminAction


def serialize_action(action: AdminAction) -> dict:
    return {
        "id": action.id,
        "adminEmail": action.admin_email,
        "action": action.action,
        "targetEntity": action.target_entity,
        "details": action.details,
        "createdAt": action.created_at.isoformat() if action.created_at else None,
    }


class AdminLogService:
    """Service for reading the audit trail every admin mutation writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_actions(
        self,
        limit: int = 100,
        action: Optional[str] = None,
        admin_email: Optional[str] = None,
    ) -> list[AdminAction]:
        """
        Most recent actions first.

        Args:
            limit: Maximum rows returned
            action: Only this action type (UPDATE_SETTING, PURGE_USER, ...)
            admin_email: Only actions by this operator
        """
        query = select(AdminAction)
        if action:
            query = query.where(AdminAction.action == action.upper())
        if admin_email:
            query = query.where(AdminAction.admin_email == admin_email)
        result = await self.db.execute(
            query.order_by(AdminAction.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
