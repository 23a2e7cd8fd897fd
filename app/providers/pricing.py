"""
Tier pricing for cost accounting.
Prices are in dollars per 1M tokens.

Cost is always computed from the tier's configured pricing, never from what
the AI provider reports it charged. The two can drift slightly; the ledger
is an internal cost estimate, not a copy of the provider invoice.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ModelPricing:
    """Model and pricing assigned to a tier."""
    model_id: str
    model_name: str
    max_output_tokens: int
    cost_per_1m_input: float
    cost_per_1m_output: float
    context_window: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "ModelPricing":
        """Build from a ModelConfig row."""
        return cls(
            model_id=row.model_id,
            model_name=row.model_name,
            max_output_tokens=row.max_output_tokens,
            cost_per_1m_input=float(row.cost_per_1m_input),
            cost_per_1m_output=float(row.cost_per_1m_output),
            context_window=row.context_window,
        )

    def to_dict(self) -> dict:
        return {
            "modelId": self.model_id,
            "modelName": self.model_name,
            "maxOutputTokens": self.max_output_tokens,
            "costPer1MInput": self.cost_per_1m_input,
            "costPer1MOutput": self.cost_per_1m_output,
            "contextWindow": self.context_window,
        }


# Default rows for model_configs, written by seed_model_configs()
DEFAULT_MODEL_CONFIGS = {
    "free": ("google/gemini-2.5-flash-lite-preview-09-2025", "Gemini 2.5 Flash Lite", 8192, 0.10, 0.40, 1048576),
    "trial": ("google/gemini-2.5-flash-lite-preview-09-2025", "Gemini 2.5 Flash Lite", 8192, 0.10, 0.40, 1048576),
    "premium": ("google/gemini-2.5-flash-preview-09-2025", "Gemini 2.5 Flash", 8192, 0.30, 2.50, 1048576),
    "unlimited": ("anthropic/claude-sonnet-4.5", "Claude Sonnet 4.5", 8192, 3.00, 15.00, 1000000),
    "managed": ("anthropic/claude-sonnet-4.5", "Claude Sonnet 4.5", 8192, 3.00, 15.00, 1000000),
}


def clamp_max_tokens(requested: Optional[int], pricing: ModelPricing) -> int:
    """Clamp a requested output budget to the tier's maximum.

    Missing or non-positive requests get the full tier budget.
    """
    if not requested or requested <= 0:
        return pricing.max_output_tokens
    return min(requested, pricing.max_output_tokens)


def calculate_cost(input_tokens: int, output_tokens: int, pricing: ModelPricing) -> float:
    """
    Calculate the cost of a request in dollars.

    Args:
        input_tokens: Prompt tokens reported by the provider
        output_tokens: Completion tokens reported by the provider
        pricing: The tier's pricing

    Returns:
        Cost in dollars (float, unrounded so per-chunk fractions of a cent
        survive aggregation)
    """
    input_cost = (max(input_tokens or 0, 0) / 1_000_000) * pricing.cost_per_1m_input
    output_cost = (max(output_tokens or 0, 0) / 1_000_000) * pricing.cost_per_1m_output
    return input_cost + output_cost
