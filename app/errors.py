"""
Application error taxonomy.

Every error the service raises on purpose is an AppError. The exception
handler registered in app.main turns it into a structured JSON body so the
extension can tell "your tier can't do this" apart from "the provider is
down" and "the server is misconfigured".
"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors rendered as structured responses."""

    status_code: int = 500
    error_type: str = "internal_error"
    category: str = "internal"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[dict] = None,
        recovery: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}
        self.recovery = recovery


class ValidationError(AppError):
    """Missing or malformed input. No side effects happened."""
    status_code = 400
    error_type = "validation_error"
    category = "validation"


class NotFoundError(AppError):
    """Unknown user, tier mapping, subscription, ..."""
    status_code = 404
    error_type = "not_found"
    category = "permanent"


class ForbiddenError(AppError):
    """Caller is not allowed to do this (tier or student status)."""
    status_code = 403
    error_type = "forbidden"
    category = "policy"


class UpstreamError(AppError):
    """
    The AI provider or Stripe answered with a failure.

    status_code is the provider's own status, and `upstream` is the
    provider's error body, both passed through to the caller.
    """
    status_code = 502
    error_type = "upstream_error"
    category = "upstream"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
        upstream: Optional[object] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, status_code=status_code, context=context)
        self.provider = provider
        self.upstream = upstream


class ConfigurationError(AppError):
    """The server is missing configuration it needs. Fails closed."""
    status_code = 500
    error_type = "configuration_error"
    category = "configuration"


class UnknownPriceError(ConfigurationError):
    """A Stripe price id has no entry in the plan catalog."""
    error_type = "unknown_price"

    def __init__(self, price_id: Optional[str]):
        super().__init__(
            f"No plan is configured for Stripe price '{price_id}'",
            context={"price_id": price_id},
        )
        self.price_id = price_id


class InternalError(AppError):
    """Something that should not happen did (e.g. empty completion)."""
    status_code = 500
    error_type = "internal_error"
    category = "internal"


class WebhookSignatureError(AppError):
    """Webhook payload could not be authenticated."""
    status_code = 400
    error_type = "invalid_signature"
    category = "validation"


def _default_recovery(exc: AppError) -> Optional[dict]:
    if exc.recovery is not None:
        return exc.recovery
    if isinstance(exc, UpstreamError):
        if exc.status_code in (429, 502, 503, 504):
            return {"action": "retry_with_backoff", "delay_ms": 1000}
        return None
    if isinstance(exc, ConfigurationError):
        return {"action": "contact_support"}
    return None


def error_body(exc: AppError) -> dict:
    """Build the JSON error envelope for an AppError."""
    error = {
        "code": exc.error_type.upper(),
        "type": exc.error_type,
        "message": exc.message,
        "category": exc.category,
    }
    recovery = _default_recovery(exc)
    if recovery:
        error["recovery"] = recovery
    if exc.context:
        error["context"] = exc.context
    if isinstance(exc, UpstreamError):
        if exc.provider:
            error["provider"] = exc.provider
        if exc.upstream is not None:
            error["upstream"] = exc.upstream
    return {"success": False, "error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render AppError subclasses as structured JSON responses."""
    log_fn = logger.error if exc.status_code >= 500 else logger.info
    log_fn(
        f"{exc.error_type}: {exc.message}",
        extra={
            "path": request.url.path,
            "status_code": exc.status_code,
            "error_type": exc.error_type,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))
