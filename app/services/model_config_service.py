"""
Model/tier resolver - maps a subscription tier to its AI model and pricing.

Pricing is never defaulted: a tier without a model_configs row is a hard
stop, because cost accounting with made-up pricing is worse than failing.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.errors import NotFoundError, ValidationError
from app.models import ModelConfig, AdminAction, TIERS, utc_now
from app.providers.pricing import ModelPricing, DEFAULT_MODEL_CONFIGS

logger = logging.getLogger(__name__)

PAID_TIERS = ("premium", "unlimited", "managed")


def missing_model_error(tier: str) -> NotFoundError:
    """NotFoundError for a tier with no model row, logged loudly for paid tiers."""
    if tier in PAID_TIERS:
        logger.error(
            f"No model configured for paid tier {tier}",
            extra={"tier": tier},
        )
    return NotFoundError(
        f"No model configured for tier '{tier}'",
        context={"tier": tier},
    )


class ModelConfigService:
    """Service for reading and editing the tier -> model table."""

    def __init__(self, db: AsyncSession, config_cache=None):
        self.db = db
        self.config_cache = config_cache

    async def get_row(self, tier: str) -> Optional[ModelConfig]:
        result = await self.db.execute(
            select(ModelConfig).where(ModelConfig.tier == tier)
        )
        return result.scalar_one_or_none()

    async def resolve_model(self, tier: str) -> ModelPricing:
        """
        Model and pricing for a tier.

        Raises:
            NotFoundError: no model_configs row for the tier
        """
        row = await self.get_row(tier)
        if row is None:
            raise missing_model_error(tier)
        return ModelPricing.from_row(row)

    async def list_models(self) -> list[ModelConfig]:
        """All rows, in tier order (unknown tiers last)."""
        result = await self.db.execute(select(ModelConfig))
        order = {tier: i for i, tier in enumerate(TIERS)}
        return sorted(result.scalars().all(), key=lambda row: (order.get(row.tier, len(TIERS)), row.tier))

    async def update_model(
        self,
        tier: str,
        updated_by: str,
        model_id: Optional[str] = None,
        model_name: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        cost_per_1m_input: Optional[float] = None,
        cost_per_1m_output: Optional[float] = None,
        context_window: Optional[int] = None,
    ) -> ModelConfig:
        """
        Update a tier's model. Only the given fields change.

        Every cached user config embeds its tier's pricing, so all user
        entries are evicted on success.
        """
        row = await self.get_row(tier)
        if row is None:
            raise missing_model_error(tier)

        if max_output_tokens is not None and max_output_tokens <= 0:
            raise ValidationError("max_output_tokens must be positive")
        for name, value in (("cost_per_1m_input", cost_per_1m_input), ("cost_per_1m_output", cost_per_1m_output)):
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative")

        changes = {}
        for field, value in (
            ("model_id", model_id),
            ("model_name", model_name),
            ("max_output_tokens", max_output_tokens),
            ("cost_per_1m_input", cost_per_1m_input),
            ("cost_per_1m_output", cost_per_1m_output),
            ("context_window", context_window),
        ):
            if value is not None:
                setattr(row, field, value)
                changes[field] = value

        row.updated_by = updated_by
        row.updated_at = utc_now()
        self.db.add(AdminAction(
            admin_email=updated_by,
            action="UPDATE_MODEL",
            target_entity="model_configs",
            details={"tier": tier, **changes},
        ))
        await self.db.commit()
        await self.db.refresh(row)

        if self.config_cache is not None:
            self.config_cache.invalidate_all_users()

        logger.info(f"Model config updated for tier {tier}", extra={"tier": tier, "updated_by": updated_by})
        return row


async def seed_model_configs(db: AsyncSession, overwrite: bool = False) -> int:
    """
    Write the default tier -> model rows.

    Existing rows are left alone unless `overwrite` is set. Returns the number
    of rows written.
    """
    written = 0
    for tier, (model_id, model_name, max_tokens, cost_in, cost_out, context_window) in DEFAULT_MODEL_CONFIGS.items():
        result = await db.execute(select(ModelConfig).where(ModelConfig.tier == tier))
        row = result.scalar_one_or_none()
        if row is not None and not overwrite:
            continue
        if row is None:
            row = ModelConfig(tier=tier)
            db.add(row)
        row.model_id = model_id
        row.model_name = model_name
        row.max_output_tokens = max_tokens
        row.cost_per_1m_input = cost_in
        row.cost_per_1m_output = cost_out
        row.context_window = context_window
        row.updated_by = "system"
        row.updated_at = utc_now()
        written += 1
    await db.commit()
    if written:
        logger.info(f"Seeded {written} model configs")
    return written
