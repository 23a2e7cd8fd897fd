"""
OpenRouter chat-completion client.

One call per request, no retries: a retry could double-bill a paid
provider call. Non-2xx responses are raised as UpstreamError carrying the
provider's status code and error body untouched.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import settings
from app.errors import UpstreamError

logger = logging.getLogger(__name__)

PROVIDER = "openrouter"


@dataclass(frozen=True)
class CompletionUsage:
    """Token counts reported by the provider."""
    input_tokens: int
    output_tokens: int
    total_tokens: int


def extract_usage_from_response(response_data: dict) -> CompletionUsage:
    """Extract token counts from an OpenAI-compatible response."""
    usage = response_data.get("usage") or {}
    input_tokens = int(usage.get("prompt_tokens") or 0)
    output_tokens = int(usage.get("completion_tokens") or 0)
    total_tokens = int(usage.get("total_tokens") or (input_tokens + output_tokens))
    return CompletionUsage(input_tokens, output_tokens, total_tokens)


def extract_content(response_data: dict) -> Optional[str]:
    """Return choices[0].message.content, or None if absent."""
    choices = response_data.get("choices") or []
    if not choices:
        return None
    message = choices[0].get("message") or {}
    content = message.get("content")
    if not content:
        return None
    return content


def _error_message(response: httpx.Response) -> tuple[str, object]:
    """Pull a human-readable message and the raw body out of an error response."""
    try:
        body = response.json()
    except ValueError:
        text = response.text
        return (text or f"HTTP {response.status_code}"), text
    message = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = error
        message = message or body.get("message")
    return (message or f"HTTP {response.status_code}"), body


class OpenRouterClient:
    """Thin async client for the chat-completions endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT
        # Injected in tests (httpx.MockTransport)
        self.transport = transport

    async def chat_completion(
        self,
        api_key: str,
        model: str,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> dict:
        """
        POST /chat/completions and return the decoded JSON body.

        Raises:
            UpstreamError: non-2xx response (provider status preserved),
                timeout (504) or connection failure (502)
        """
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Provider timeout: {PROVIDER}",
                extra={"provider": PROVIDER, "model": model, "latency_ms": latency_ms},
            )
            raise UpstreamError(
                f"{PROVIDER} request timed out after {int(self.timeout)} seconds",
                status_code=504,
                provider=PROVIDER,
            )
        except httpx.ConnectError as e:
            logger.error(
                f"Provider connection error: {PROVIDER}",
                extra={"provider": PROVIDER, "model": model, "error": str(e)},
            )
            raise UpstreamError(
                f"Cannot connect to {PROVIDER}. The provider may be down or unreachable.",
                status_code=502,
                provider=PROVIDER,
            )

        latency_ms = int((time.time() - start_time) * 1000)

        if response.status_code >= 400:
            message, body = _error_message(response)
            logger.warning(
                f"Provider HTTP error: {PROVIDER}",
                extra={
                    "provider": PROVIDER,
                    "model": model,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                },
            )
            raise UpstreamError(
                message,
                status_code=response.status_code,
                provider=PROVIDER,
                upstream=body,
            )

        try:
            data = response.json()
        except ValueError:
            raise UpstreamError(
                f"{PROVIDER} returned a non-JSON response",
                status_code=502,
                provider=PROVIDER,
                upstream=response.text,
            )

        logger.info(
            f"Completion from {PROVIDER}",
            extra={"provider": PROVIDER, "model": model, "latency_ms": latency_ms},
        )
        return data
