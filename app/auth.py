import base64
import secrets

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException, Request

from app.config import settings


def get_fernet():
    """Get Fernet instance for encrypting secret settings."""
    # Ensure key is 32 bytes, base64 encoded
    key = settings.ENCRYPTION_KEY.encode()
    if len(key) < 32:
        key = key.ljust(32, b"0")
    key = base64.urlsafe_b64encode(key[:32])
    return Fernet(key)


def encrypt_secret(value: str) -> str:
    """Encrypt a secret setting value (e.g. the shared OpenRouter key) for storage."""
    f = get_fernet()
    return f.encrypt(value.encode()).decode()


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a secret setting value.

    Raises ValueError if the value can't be decrypted with the current
    ENCRYPTION_KEY (usually: the key was rotated without re-saving settings).
    """
    f = get_fernet()
    try:
        return f.decrypt(encrypted_value.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Secret setting cannot be decrypted with the current ENCRYPTION_KEY") from e


def mask_secret(value: str) -> str:
    """Mask a secret for display."""
    if not value:
        return ""
    return value[:6] + "..." + value[-4:] if len(value) > 12 else "***"


async def verify_admin_key(request: Request) -> str:
    """Verify the admin master key from the Authorization header.

    Returns a label for the audit trail.
    """
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=503,
            detail="Admin API key not configured. Set ADMIN_API_KEY environment variable."
        )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Use: Authorization: Bearer <ADMIN_API_KEY>"
        )

    provided_key = auth_header[7:]
    if not secrets.compare_digest(provided_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid admin API key")

    return request.headers.get("x-admin-email") or "admin-api"
