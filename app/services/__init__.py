"""
Service layer for the summarizer backend.

Services encapsulate business logic and database operations,
providing a clean interface for routes and other consumers.
"""
from app.services.admin_log_service import AdminLogService
from app.services.background import TaskRunner
from app.services.config_cache import ConfigCache
from app.services.model_config_service import ModelConfigService, seed_model_configs
from app.services.settings_service import SettingsService
from app.services.usage_ledger import UsageLedger
from app.services.user_service import UserService
from app.services.video_processor import VideoProcessor

__all__ = [
    "AdminLogService",
    "TaskRunner",
    "ConfigCache",
    "ModelConfigService",
    "seed_model_configs",
    "SettingsService",
    "UsageLedger",
    "UserService",
    "VideoProcessor",
]
