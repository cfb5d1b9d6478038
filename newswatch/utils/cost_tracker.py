"""Token and cost accounting for classifier calls.

Uses LiteLLM's pricing data; unknown models (private gateways) cost 0.
"""

import logging
from typing import Any

import litellm

logger = logging.getLogger(__name__)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Calculate cost for an API call using LiteLLM pricing.

    Args:
        model: Model identifier (e.g., "gpt-4o")
        input_tokens: Number of input/prompt tokens
        output_tokens: Number of output/completion tokens

    Returns:
        Cost in USD, 0.0 when the model has no published pricing
    """
    try:
        prompt_cost, completion_cost = litellm.cost_per_token(
            model=model,
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
        )
        return (prompt_cost or 0.0) + (completion_cost or 0.0)
    except Exception as e:
        logger.debug("No pricing for model %s: %s", model, e)
        return 0.0


def extract_usage_from_litellm_response(response: Any) -> tuple[int, int, float]:
    """Extract tokens and cost from LiteLLM response object.

    Args:
        response: LiteLLM completion response object

    Returns:
        Tuple of (input_tokens, output_tokens, cost_usd)
    """
    usage = getattr(response, "usage", None)
    input_tokens = getattr(usage, "prompt_tokens", 0) or 0
    output_tokens = getattr(usage, "completion_tokens", 0) or 0

    try:
        cost = litellm.completion_cost(completion_response=response)
        cost = cost if cost else 0.0
    except Exception as e:
        logger.debug("Failed to extract cost from LiteLLM response: %s", e)
        model = getattr(response, "model", "unknown") or "unknown"
        cost = calculate_cost(model, input_tokens, output_tokens)

    return input_tokens, output_tokens, cost
