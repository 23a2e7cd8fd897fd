"""
Configuration cache.

Keeps the shared AI-provider key and per-user (user x model) config in
memory so processing a chunk doesn't cost a database round trip.

Two independent TTLs: the key rarely changes (5 min), a user's tier can
change at any moment through billing (2 min). TTL is only the upper bound:
every successful admin key update or tier change evicts its entry
synchronously, so the next request always sees the new value.

State is process-local and mutated without locks. That is safe on a single
asyncio loop because no get/set/invalidate suspends mid-mutation.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cachetools import TTLCache
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models import User, ModelConfig
from app.providers.pricing import ModelPricing
from app.services.settings_service import API_KEY_SETTING, read_setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiKeyResolution:
    """The effective AI-provider key and where it came from."""
    key: Optional[str]
    source: Optional[str]  # "setting", "environment" or None


@dataclass(frozen=True)
class UserConfig:
    """Everything the processor needs about a user, joined with the tier's model."""
    user_id: str
    extension_user_id: str
    tier: str
    plan_name: Optional[str]
    model: Optional[ModelPricing]  # None when the tier has no model_configs row


class ConfigCache:
    """Cached lookups for the API key and per-user config."""

    API_KEY = "api_key"

    def __init__(
        self,
        session_factory: async_sessionmaker,
        api_key_ttl: Optional[float] = None,
        user_config_ttl: Optional[float] = None,
        fallback_api_key: Optional[str] = None,
        max_users: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.fallback_api_key = settings.OPENROUTER_API_KEY if fallback_api_key is None else fallback_api_key
        self._api_key = TTLCache(
            maxsize=1,
            ttl=api_key_ttl if api_key_ttl is not None else settings.API_KEY_CACHE_TTL,
            timer=clock,
        )
        # Bounded: least recently used users are dropped first once full
        self._users = TTLCache(
            maxsize=max_users or settings.USER_CONFIG_CACHE_SIZE,
            ttl=user_config_ttl if user_config_ttl is not None else settings.USER_CONFIG_CACHE_TTL,
            timer=clock,
        )

    # ---------------------------------------------------------------- api key

    async def get_api_key(self) -> ApiKeyResolution:
        """
        Effective AI-provider key: the admin-set setting if non-empty, else the
        OPENROUTER_API_KEY environment fallback.

        A result with no key is not cached, so fixing the configuration takes
        effect on the next request.
        """
        cached = self._api_key.get(self.API_KEY)
        if cached is not None:
            return cached

        resolution = await self._fetch_api_key()
        if resolution.key:
            self._api_key[self.API_KEY] = resolution
        return resolution

    async def _fetch_api_key(self) -> ApiKeyResolution:
        async with self.session_factory() as db:
            try:
                value = await read_setting(db, API_KEY_SETTING)
            except ValueError as e:
                # Undecryptable setting: fall through to the env fallback
                logger.error(f"Cannot read {API_KEY_SETTING} setting: {e}")
                value = None
        if value:
            return ApiKeyResolution(value, "setting")
        if self.fallback_api_key:
            return ApiKeyResolution(self.fallback_api_key, "environment")
        return ApiKeyResolution(None, None)

    def invalidate_api_key(self):
        if self._api_key.pop(self.API_KEY, None) is not None:
            logger.info("API key cache entry evicted")

    # ------------------------------------------------------------ user config

    async def get_user_config(self, extension_user_id: str) -> Optional[UserConfig]:
        """User x model config for a user, or None if the user doesn't exist."""
        cached = self._users.get(extension_user_id)
        if cached is not None:
            return cached

        config = await self._fetch_user_config(extension_user_id)
        if config is not None:
            self._users[extension_user_id] = config
        return config

    async def _fetch_user_config(self, extension_user_id: str) -> Optional[UserConfig]:
        async with self.session_factory() as db:
            return await load_user_config(db, extension_user_id)

    def invalidate_user(self, extension_user_id: str):
        if self._users.pop(extension_user_id, None) is not None:
            logger.info("User config cache entry evicted", extra={"extension_user_id": extension_user_id})

    @property
    def cached_users(self) -> int:
        """Live user entries. Expired ones are dropped by the count."""
        return len(self._users)

    def invalidate_all_users(self):
        """Drop every user entry (a tier's model/pricing changed)."""
        self._users.clear()

    def clear(self):
        self._api_key.clear()
        self._users.clear()


async def load_user_config(db: AsyncSession, extension_user_id: str) -> Optional[UserConfig]:
    """Load the user x model_configs join for one user."""
    result = await db.execute(
        select(User, ModelConfig)
        .outerjoin(ModelConfig, ModelConfig.tier == User.tier)
        .where(User.extension_user_id == extension_user_id)
    )
    row = result.first()
    if row is None:
        return None
    user, model_config = row
    return UserConfig(
        user_id=user.id,
        extension_user_id=user.extension_user_id,
        tier=user.tier,
        plan_name=user.plan_name,
        model=ModelPricing.from_row(model_config) if model_config else None,
    )
