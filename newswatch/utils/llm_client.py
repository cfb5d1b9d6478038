"""LLM client using LiteLLM.

Talks to any OpenAI-compatible chat completion endpoint; the base URL and
key come from settings instead of LiteLLM's own environment lookup.
"""

import logging
from typing import Any, Optional, Union

import litellm

# Suppress verbose LiteLLM logging
litellm.suppress_debug_info = True
logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def provider_model(model: str) -> str:
    """Prefix bare model names so LiteLLM routes them to the OpenAI-compatible client.

    A gateway behind OPENAI_BASE_URL may serve names LiteLLM does not know
    ("deepseek-v3", "qwen-max"); "openai/<name>" works for all of them.
    """
    return model if "/" in model else f"openai/{model}"


async def get_completion_async(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.2,
    api_key: Optional[str] = None,
    api_base: Optional[str] = None,
    timeout: Optional[float] = None,
    response_format: Optional[dict] = None,
    return_full_response: bool = False,
) -> Union[str, tuple[str, Any]]:
    """
    Get a chat completion via LiteLLM.

    Args:
        model: Model identifier, e.g. "gpt-4o" or "openai/deepseek-v3"
        messages: List of message dicts with role and content
        max_tokens: Maximum response tokens
        temperature: Sampling temperature
        api_key: Credential for the endpoint
        api_base: Base URL of the OpenAI-compatible endpoint
        timeout: Request timeout in seconds
        response_format: Optional response format (e.g., {"type": "json_object"})
        return_full_response: If True, return (text, response) tuple for cost tracking

    Returns:
        Response text content, or (text, response) tuple if return_full_response=True

    Raises:
        Exception: If the API call fails
    """
    kwargs: dict[str, Any] = {
        "model": provider_model(model),
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    if api_key:
        kwargs["api_key"] = api_key
    if api_base:
        kwargs["api_base"] = api_base
    if timeout:
        kwargs["timeout"] = timeout
    if response_format:
        kwargs["response_format"] = response_format

    response = await litellm.acompletion(**kwargs)
    text = response.choices[0].message.content if response.choices else None

    if return_full_response:
        return text, response
    return text
