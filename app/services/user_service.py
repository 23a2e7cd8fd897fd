"""
User service - registration, tier changes and per-user lookups.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, case

from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models import User, UsageRecord, AdminAction, TIERS, utc_now, ensure_utc
from app.services.config_cache import load_user_config
from app.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


def serialize_user(user: User) -> dict:
    """Camel-cased user fields as the extension reads them.

    Reads the student flag as stored; go through UserService.serialize so an
    expired verification is healed first.
    """
    def iso(value):
        value = ensure_utc(value)
        return value.isoformat() if value else None

    return {
        "id": user.id,
        "extensionUserId": user.extension_user_id,
        "email": user.email,
        "tier": user.tier,
        "planName": user.plan_name,
        "subscriptionStatus": user.subscription_status,
        "subscriptionStartDate": iso(user.subscription_start_date),
        "subscriptionEndDate": iso(user.subscription_end_date),
        "subscriptionCancelAt": iso(user.subscription_cancel_at),
        "trialEndDate": iso(user.trial_end_date),
        "studentVerified": bool(user.student_verified),
        "studentVerifiedAt": iso(user.student_verified_at),
        "studentVerificationExpiresAt": iso(user.student_verification_expires_at),
        "createdAt": iso(user.created_at),
    }


class UserService:
    """Service for user rows outside the billing reconciler."""

    def __init__(self, db: AsyncSession, config_cache=None):
        self.db = db
        self.config_cache = config_cache

    async def get_by_extension_id(self, extension_user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.extension_user_id == extension_user_id)
        )
        return result.scalar_one_or_none()

    async def require(self, extension_user_id: str) -> User:
        user = await self.get_by_extension_id(extension_user_id)
        if user is None:
            raise NotFoundError("User not found", context={"extension_user_id": extension_user_id})
        return user

    async def get_or_create(self, extension_user_id: str, email: Optional[str] = None) -> tuple[User, bool]:
        """
        Return (user, created). New users always start on the free tier;
        tiers only change through billing or an administrator.
        """
        if not extension_user_id:
            raise ValidationError("Extension user ID is required")

        user = await self.get_by_extension_id(extension_user_id)
        if user is not None:
            if email and not user.email:
                user.email = email
                user.updated_at = utc_now()
                await self.db.commit()
            return user, False

        user = User(extension_user_id=extension_user_id, email=email or None, tier="free")
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("New user created", extra={"extension_user_id": extension_user_id})
        return user, True

    async def update_tier(
        self,
        extension_user_id: str,
        tier: str,
        updated_by: str,
        plan_name: Optional[str] = None,
    ) -> User:
        """Set a user's tier. The cached config is evicted before returning."""
        if tier not in TIERS:
            raise ValidationError(
                f"Invalid tier '{tier}'. Valid tiers: {', '.join(TIERS)}",
                context={"tier": tier},
            )
        user = await self.require(extension_user_id)
        previous = user.tier
        user.tier = tier
        if plan_name is not None:
            user.plan_name = plan_name
        user.updated_at = utc_now()
        self.db.add(AdminAction(
            admin_email=updated_by,
            action="UPDATE_TIER",
            target_entity="users",
            details={"extension_user_id": extension_user_id, "from": previous, "to": tier},
        ))
        await self.db.commit()
        await self.db.refresh(user)

        if self.config_cache is not None:
            self.config_cache.invalidate_user(extension_user_id)

        logger.info(
            f"User tier updated: {previous} -> {tier}",
            extra={"extension_user_id": extension_user_id, "updated_by": updated_by},
        )
        return user

    async def get_user_model(self, extension_user_id: str) -> dict:
        """The user's tier model, and whether they must bring their own key."""
        config = await load_user_config(self.db, extension_user_id)
        if config is None:
            raise NotFoundError("User not found", context={"extension_user_id": extension_user_id})
        requires_api_key = await SettingsService(self.db).requires_own_api_key(config.tier)
        return {
            "user": {
                "extensionUserId": config.extension_user_id,
                "tier": config.tier,
                "planName": config.plan_name,
            },
            "model": config.model.to_dict() if config.model else None,
            "requiresApiKey": requires_api_key,
        }

    async def is_student_verified(self, user: User, now: Optional[datetime] = None) -> bool:
        """
        Current student status. An expired verification is flipped to false
        and persisted on read.
        """
        if not user.student_verified:
            return False
        expires_at = ensure_utc(user.student_verification_expires_at)
        now = now or utc_now()
        if expires_at is not None and expires_at <= now:
            user.student_verified = False
            user.updated_at = now
            await self.db.commit()
            logger.info(
                "Student verification expired",
                extra={"extension_user_id": user.extension_user_id},
            )
            return False
        return True

    async def purge_user(self, extension_user_id: str, updated_by: str, usage_ledger=None) -> User:
        """Hard-delete a user and their usage history."""
        user = await self.require(extension_user_id)
        user_id = user.id
        await self.db.execute(delete(UsageRecord).where(UsageRecord.user_id == user_id))
        await self.db.delete(user)
        self.db.add(AdminAction(
            admin_email=updated_by,
            action="PURGE_USER",
            target_entity="users",
            details={"extension_user_id": extension_user_id, "user_id": user_id},
        ))
        await self.db.commit()

        if self.config_cache is not None:
            self.config_cache.invalidate_user(extension_user_id)
        if usage_ledger is not None:
            usage_ledger.forget(user_id)

        logger.warning("User purged", extra={"extension_user_id": extension_user_id, "updated_by": updated_by})
        return user

    async def serialize(self, user: User) -> dict:
        """serialize_user with the student flag checked against its expiry."""
        await self.is_student_verified(user)
        return serialize_user(user)

    async def approve_student(self, extension_user_id: str, updated_by: str, now: Optional[datetime] = None) -> User:
        """Mark a user as a verified student until STUDENT_VERIFICATION_DAYS from now."""
        user = await self.require(extension_user_id)
        now = now or utc_now()
        expires_at = now + timedelta(days=settings.STUDENT_VERIFICATION_DAYS)
        user.student_verified = True
        user.student_verified_at = now
        user.student_verification_expires_at = expires_at
        user.updated_at = now
        self.db.add(AdminAction(
            admin_email=updated_by,
            action="APPROVE_STUDENT",
            target_entity="users",
            details={"extension_user_id": extension_user_id, "expires_at": expires_at.isoformat()},
        ))
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(
            "Student verification approved",
            extra={"extension_user_id": extension_user_id, "updated_by": updated_by},
        )
        return user

    async def reject_student(
        self,
        extension_user_id: str,
        updated_by: str,
        reason: Optional[str] = None,
    ) -> User:
        """Revoke or deny student status. Existing subscriptions are left alone."""
        user = await self.require(extension_user_id)
        user.student_verified = False
        user.student_verified_at = None
        user.student_verification_expires_at = None
        user.updated_at = utc_now()
        self.db.add(AdminAction(
            admin_email=updated_by,
            action="REJECT_STUDENT",
            target_entity="users",
            details={"extension_user_id": extension_user_id, "reason": reason},
        ))
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(
            "Student verification rejected",
            extra={"extension_user_id": extension_user_id, "updated_by": updated_by},
        )
        return user

    async def list_users(self, page: int = 1, limit: int = 50) -> tuple[list[dict], int]:
        """
        One page of users, newest first, with lifetime usage totals.

        Returns (users, total_users).
        """
        totals = (
            select(
                UsageRecord.user_id,
                func.sum(UsageRecord.videos_processed).label("total_videos"),
                func.sum(UsageRecord.cost_incurred).label("total_cost"),
            )
            .group_by(UsageRecord.user_id)
            .subquery()
        )
        result = await self.db.execute(
            select(User, totals.c.total_videos, totals.c.total_cost)
            .outerjoin(totals, totals.c.user_id == User.id)
            .order_by(User.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        users = []
        for user, total_videos, total_cost in result.all():
            row = await self.serialize(user)
            row["stripeCustomerId"] = user.stripe_customer_id
            row["stripeSubscriptionId"] = user.stripe_subscription_id
            row["totalVideos"] = int(total_videos or 0)
            row["totalCost"] = float(total_cost or 0)
            users.append(row)

        total_users = (await self.db.execute(select(func.count(User.id)))).scalar_one()
        return users, total_users

    async def dashboard_stats(self, today: Optional[date] = None) -> dict:
        """User counts by tier plus today's and all-time usage."""
        today = today or utc_now().date()

        tier_counts = dict((await self.db.execute(
            select(User.tier, func.count(User.id)).group_by(User.tier)
        )).all())
        now = utc_now()
        student_users = (await self.db.execute(
            select(func.count(User.id)).where(
                User.student_verified.is_(True),
                (User.student_verification_expires_at.is_(None)) | (User.student_verification_expires_at > now),
            )
        )).scalar_one()

        usage = (await self.db.execute(
            select(
                func.coalesce(func.sum(UsageRecord.videos_processed), 0),
                func.coalesce(func.sum(UsageRecord.cost_incurred), 0),
                func.coalesce(func.sum(case((UsageRecord.date == today, UsageRecord.videos_processed), else_=0)), 0),
                func.coalesce(func.sum(case((UsageRecord.date == today, UsageRecord.cost_incurred), else_=0)), 0),
            )
        )).one()

        stats = {"total_users": sum(tier_counts.values())}
        for tier in TIERS:
            stats[f"{tier}_users"] = tier_counts.get(tier, 0)
        stats.update({
            "student_users": student_users,
            "total_videos": int(usage[0]),
            "total_cost": float(usage[1]),
            "videos_today": int(usage[2]),
            "cost_today": float(usage[3]),
        })
        return stats
