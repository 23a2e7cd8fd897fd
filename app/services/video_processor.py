"""
Video chunk processor for provider-managed tiers.

One request = one transcript chunk. The user config and the shared API key
come from the config cache, the completion from one provider call, and the
cost from the tier's configured pricing. The usage write is handed to the
task runner and never awaited: the caller gets its summary as soon as the
cost is known, and a failed ledger write never fails the request.
"""

import asyncio
import logging
from typing import Optional

from app.config import settings
from app.errors import ValidationError, NotFoundError, ForbiddenError, ConfigurationError, InternalError
from app.providers.openrouter import OpenRouterClient, extract_content, extract_usage_from_response
from app.providers.pricing import clamp_max_tokens, calculate_cost
from app.services.background import TaskRunner
from app.services.config_cache import ConfigCache
from app.services.model_config_service import missing_model_error
from app.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class VideoProcessor:
    """Processes transcript chunks with the shared provider key."""

    def __init__(
        self,
        config_cache: ConfigCache,
        usage_ledger: UsageLedger,
        ai_client: OpenRouterClient,
        task_runner: TaskRunner,
        managed_tiers: Optional[tuple[str, ...]] = None,
        temperature: Optional[float] = None,
    ):
        self.config_cache = config_cache
        self.usage_ledger = usage_ledger
        self.ai_client = ai_client
        self.task_runner = task_runner
        self.managed_tiers = tuple(managed_tiers or settings.MANAGED_TIERS)
        self.temperature = settings.AI_TEMPERATURE if temperature is None else temperature

    async def process_chunk(
        self,
        extension_user_id: str,
        video_id: str,
        transcript: str,
        prompt: str,
        requested_max_tokens: Optional[int] = None,
    ) -> dict:
        """
        Summarize one transcript chunk.

        Returns:
            {content, usage{inputTokens, outputTokens, totalTokens, cost}, model, tier}

        Raises:
            ValidationError: missing user id, video id, transcript or prompt
            NotFoundError: unknown user, or no model for the user's tier
            ForbiddenError: tier must call the provider with its own key
            ConfigurationError: no shared API key is configured
            UpstreamError: provider failure, status passed through
            InternalError: provider answered without content
        """
        if not extension_user_id:
            raise ValidationError("Extension user ID is required")
        if not video_id:
            raise ValidationError("Video ID is required")
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is required")
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")

        user_config, key = await asyncio.gather(
            self.config_cache.get_user_config(extension_user_id),
            self.config_cache.get_api_key(),
        )

        if user_config is None:
            raise NotFoundError("User not found", context={"extension_user_id": extension_user_id})

        if user_config.tier not in self.managed_tiers:
            raise ForbiddenError(
                f"The {user_config.tier} tier uses your own API key. "
                "Call the AI provider directly from the extension.",
                context={"tier": user_config.tier, "managed_tiers": list(self.managed_tiers)},
            )

        if not key.key:
            # Log which sources were checked, never a key value
            logger.error(
                "No AI provider API key configured",
                extra={"checked": ["system_settings.openrouter_api_key", "OPENROUTER_API_KEY"]},
            )
            raise ConfigurationError(
                "AI provider API key is not configured "
                "(checked system setting 'openrouter_api_key' and env OPENROUTER_API_KEY)",
                context={"checked_sources": ["setting", "environment"]},
            )

        pricing = user_config.model
        if pricing is None:
            raise missing_model_error(user_config.tier)

        max_tokens = clamp_max_tokens(requested_max_tokens, pricing)
        messages = [
            {"role": "system", "content": prompt},
            {"role": "user", "content": transcript},
        ]

        response_data = await self.ai_client.chat_completion(
            api_key=key.key,
            model=pricing.model_id,
            messages=messages,
            max_tokens=max_tokens,
            temperature=self.temperature,
        )

        content = extract_content(response_data)
        if content is None:
            logger.error(
                "Provider response had no content",
                extra={"model": pricing.model_id, "extension_user_id": extension_user_id},
            )
            raise InternalError("AI provider returned an empty response", context={"model": pricing.model_id})

        usage = extract_usage_from_response(response_data)
        cost = calculate_cost(usage.input_tokens, usage.output_tokens, pricing)

        self.task_runner.spawn(
            self.usage_ledger.record_usage(
                user_id=user_config.user_id,
                extension_user_id=extension_user_id,
                video_id=video_id,
                tokens_used=usage.total_tokens,
                cost_incurred=cost,
            ),
            name=f"usage:{extension_user_id}",
        )

        logger.info(
            "Chunk processed",
            extra={
                "extension_user_id": extension_user_id,
                "tier": user_config.tier,
                "model": pricing.model_id,
                "total_tokens": usage.total_tokens,
                "key_source": key.source,
            },
        )

        return {
            "content": content,
            "usage": {
                "inputTokens": usage.input_tokens,
                "outputTokens": usage.output_tokens,
                "totalTokens": usage.total_tokens,
                "cost": cost,
            },
            "model": pricing.model_id,
            "tier": user_config.tier,
        }
