"""
System settings service - runtime-tunable key/value configuration.

Secret values (the shared OpenRouter key) are stored Fernet-encrypted.
Updating the key setting evicts the cached key so the next request sees
the new value immediately instead of after the cache TTL.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.auth import encrypt_secret, decrypt_secret, mask_secret
from app.errors import NotFoundError, ValidationError
from app.models import SystemSetting, AdminAction, TIERS, utc_now

logger = logging.getLogger(__name__)

API_KEY_SETTING = "openrouter_api_key"
REQUIRE_API_KEY_PREFIX = "require_api_key_for_"

# Settings created on first boot, with their defaults
DEFAULT_SETTINGS = {
    API_KEY_SETTING: ("", True, "Shared OpenRouter API key for managed/trial tiers"),
    **{
        f"{REQUIRE_API_KEY_PREFIX}{tier}": (
            "false" if tier in ("trial", "managed") else "true",
            False,
            f"Whether {tier} users must bring their own API key",
        )
        for tier in TIERS
    },
}


async def read_setting(db: AsyncSession, key: str) -> Optional[str]:
    """Read a setting value, decrypting secrets. None if the row is missing."""
    result = await db.execute(
        select(SystemSetting).where(SystemSetting.setting_key == key)
    )
    setting = result.scalar_one_or_none()
    if not setting:
        return None
    if setting.is_secret and setting.setting_value:
        return decrypt_secret(setting.setting_value)
    return setting.setting_value


class SettingsService:
    """Service for reading and updating system settings."""

    def __init__(self, db: AsyncSession, config_cache=None):
        self.db = db
        self.config_cache = config_cache

    async def get(self, key: str) -> Optional[SystemSetting]:
        result = await self.db.execute(
            select(SystemSetting).where(SystemSetting.setting_key == key)
        )
        return result.scalar_one_or_none()

    async def get_value(self, key: str) -> Optional[str]:
        return await read_setting(self.db, key)

    async def list_settings(self) -> dict:
        """All settings keyed by name, secret values masked."""
        result = await self.db.execute(
            select(SystemSetting).order_by(SystemSetting.setting_key)
        )
        settings_out = {}
        for row in result.scalars().all():
            value = row.setting_value
            if row.is_secret and value:
                try:
                    value = mask_secret(decrypt_secret(value))
                except ValueError:
                    value = "<undecryptable>"
            settings_out[row.setting_key] = {
                "value": value,
                "isSecret": row.is_secret,
                "description": row.description,
                "updatedBy": row.updated_by,
                "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
            }
        return settings_out

    async def update(self, key: str, value: str, updated_by: str) -> SystemSetting:
        """
        Update a setting and record the admin action.

        Only known keys can be written. On success the matching cache entry
        is evicted before returning.
        """
        if key not in DEFAULT_SETTINGS:
            raise NotFoundError(f"Unknown setting: {key}", context={"setting_key": key})
        value = "" if value is None else str(value).strip()
        if key.startswith(REQUIRE_API_KEY_PREFIX) and value not in ("true", "false"):
            raise ValidationError(f"{key} must be 'true' or 'false'")

        setting = await self.get(key)
        _, is_secret, description = DEFAULT_SETTINGS[key]
        if setting is None:
            setting = SystemSetting(setting_key=key, is_secret=is_secret, description=description)
            self.db.add(setting)

        setting.setting_value = encrypt_secret(value) if (is_secret and value) else value
        setting.updated_by = updated_by
        setting.updated_at = utc_now()

        self.db.add(AdminAction(
            admin_email=updated_by,
            action="UPDATE_SETTING",
            target_entity="system_settings",
            # Never write secret values to the audit trail
            details={"setting_key": key, "value": mask_secret(value) if is_secret else value},
        ))
        await self.db.commit()
        await self.db.refresh(setting)

        if key == API_KEY_SETTING and self.config_cache is not None:
            self.config_cache.invalidate_api_key()

        logger.info(f"Setting updated: {key}", extra={"setting_key": key, "updated_by": updated_by})
        return setting

    async def requires_own_api_key(self, tier: str) -> bool:
        """Whether users on `tier` must supply their own key (default: yes)."""
        value = await self.get_value(f"{REQUIRE_API_KEY_PREFIX}{tier}")
        if value is None:
            return True
        return value == "true"

    async def ensure_defaults(self):
        """Insert any missing default settings. Existing values are untouched."""
        result = await self.db.execute(select(SystemSetting.setting_key))
        existing = set(result.scalars().all())
        for key, (value, is_secret, description) in DEFAULT_SETTINGS.items():
            if key in existing:
                continue
            self.db.add(SystemSetting(
                setting_key=key,
                setting_value=value,
                is_secret=is_secret,
                description=description,
                updated_by="system",
            ))
        await self.db.commit()
