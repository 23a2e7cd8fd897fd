import os
from dotenv import load_dotenv

load_dotenv()


def _require_env(key: str) -> str:
    """Get required environment variable or raise error."""
    value = os.getenv(key)
    if not value:
        raise ValueError(f"{key} environment variable is required")
    return value


def _csv_env(key: str, default: str) -> tuple[str, ...]:
    """Split a comma-separated environment variable into a tuple."""
    raw = os.getenv(key, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Settings:
    DATABASE_URL: str = _require_env("DATABASE_URL")
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "dev-encryption-key-32bytes!")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server settings
    DEFAULT_PORT: int = int(os.getenv("PORT", "3000"))
    DEFAULT_HOST: str = os.getenv("HOST", "127.0.0.1")
    FRONTEND_URL: str = os.getenv(
        "FRONTEND_URL", "https://yt-summarizer-and-note-taker-production.up.railway.app"
    )

    # Master key for the admin API (settings, models, tier changes, usage resets)
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    # AI provider (OpenRouter, OpenAI-compatible chat completions)
    OPENROUTER_BASE_URL: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    # Fallback key when no admin-set value exists in system_settings
    OPENROUTER_API_KEY: str = os.getenv("OPENROUTER_API_KEY", "")
    AI_REQUEST_TIMEOUT: float = float(os.getenv("AI_REQUEST_TIMEOUT", "120"))
    AI_TEMPERATURE: float = float(os.getenv("AI_TEMPERATURE", "0.3"))

    # Tiers whose requests we process with the shared key. Everyone else
    # calls the AI provider directly with their own key.
    MANAGED_TIERS: tuple[str, ...] = _csv_env("MANAGED_TIERS", "managed,trial")

    # Cache lifetimes (seconds)
    API_KEY_CACHE_TTL: float = float(os.getenv("API_KEY_CACHE_TTL", "300"))
    USER_CONFIG_CACHE_TTL: float = float(os.getenv("USER_CONFIG_CACHE_TTL", "120"))
    USER_CONFIG_CACHE_SIZE: int = int(os.getenv("USER_CONFIG_CACHE_SIZE", "10000"))

    # How long per-video dedup entries are kept in memory
    USAGE_DEDUP_RETENTION_DAYS: int = int(os.getenv("USAGE_DEDUP_RETENTION_DAYS", "2"))

    # How long a manual student approval lasts
    STUDENT_VERIFICATION_DAYS: int = int(os.getenv("STUDENT_VERIFICATION_DAYS", "365"))

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Stripe price ids, one per plan
    STRIPE_PRICES = {
        "free_plan": os.getenv("STRIPE_PRICE_FREE_PLAN", "price_1SFtGuSEC06Y8mAjEPUHZIkd"),
        "byok_premium_yearly": os.getenv("STRIPE_PRICE_BYOK_PREMIUM", "price_1SFqZbSEC06Y8mAj7VrCPBaZ"),
        "byok_unlimited_yearly": os.getenv("STRIPE_PRICE_BYOK_UNLIMITED", "price_1SFqaFSEC06Y8mAjeMdV3v9X"),
        "byok_lifetime": os.getenv("STRIPE_PRICE_BYOK_LIFETIME", "price_1SFqamSEC06Y8mAjmE94GJMI"),
        "managed_monthly": os.getenv("STRIPE_PRICE_MANAGED_MONTHLY", "price_1SFqbRSEC06Y8mAjmdQa5KuI"),
        "managed_annual": os.getenv("STRIPE_PRICE_MANAGED_ANNUAL", "price_1SFqbwSEC06Y8mAjBVToL29F"),
        "student_premium_byok": os.getenv("STRIPE_PRICE_STUDENT_PREMIUM", "price_1SFqcRSEC06Y8mAjWiOxN2L4"),
        "student_unlimited_byok": os.getenv("STRIPE_PRICE_STUDENT_UNLIMITED", "price_1SFqcvSEC06Y8mAj2iYzz9O9"),
        "student_monthly_managed": os.getenv("STRIPE_PRICE_STUDENT_MONTHLY", "price_1SFqdRSEC06Y8mAjDmaVPtyN"),
        "student_annual_managed": os.getenv("STRIPE_PRICE_STUDENT_ANNUAL", "price_1SFqe2SEC06Y8mAjIsvrQ1G1"),
    }

    # Trial offered on the managed monthly plan ($1 for 14 days)
    MANAGED_TRIAL_DAYS: int = int(os.getenv("MANAGED_TRIAL_DAYS", "14"))
    MANAGED_TRIAL_AMOUNT_CENTS: int = int(os.getenv("MANAGED_TRIAL_AMOUNT_CENTS", "100"))


settings = Settings()
