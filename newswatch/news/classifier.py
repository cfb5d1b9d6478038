"""AI relevance classification for feed items.

Callers depend only on the Classifier capability (ready + evaluate).
DisabledClassifier is used when no credential is configured;
LiteLLMClassifier calls an OpenAI-compatible chat model.
"""

import json
import logging
import re
from typing import Any, Optional, Protocol

from ..config.settings import Settings
from ..prompts import render
from ..utils.cost_tracker import extract_usage_from_litellm_response
from ..utils.llm_client import get_completion_async
from .models import ItemContext, Verdict

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class ClassificationError(Exception):
    """The item could not be classified this cycle."""


class ClassifierDisabledError(ClassificationError):
    """No model credential is configured."""


class MalformedResponseError(ClassificationError):
    """The model answered, but not with a usable verdict."""


class Classifier(Protocol):
    def ready(self) -> bool: ...

    async def evaluate(self, context: ItemContext) -> Verdict: ...


class DisabledClassifier:
    """Stand-in used when OPENAI_API_KEY is missing. Every call fails."""

    def ready(self) -> bool:
        return False

    async def evaluate(self, context: ItemContext) -> Verdict:
        raise ClassifierDisabledError("classifier disabled: OPENAI_API_KEY is not set")


class LiteLLMClassifier:
    """
    Classifies items with a chat model via LiteLLM.

    The system prompt carries the relevance criteria; the user prompt
    carries one item. The model must answer with a JSON verdict.
    """

    def __init__(
        self,
        api_key: str,
        model_id: str = "gpt-4o",
        api_base: Optional[str] = None,
        timeout: float = 60.0,
        temperature: float = 0.2,
    ):
        """
        Initialize the classifier.

        Args:
            api_key: Credential for the model endpoint
            model_id: Model name served by the endpoint
            api_base: OpenAI-compatible base URL
            timeout: Per-request timeout in seconds
            temperature: Sampling temperature
        """
        self.api_key = api_key
        self.model_id = model_id
        self.api_base = api_base
        self.timeout = timeout
        self.temperature = temperature
        self.system_prompt = render("classifier_system")

    def ready(self) -> bool:
        return bool(self.api_key)

    async def evaluate(self, context: ItemContext) -> Verdict:
        """
        Ask the model whether the item is relevant.

        Raises:
            ClassifierDisabledError: If no credential is configured
            MalformedResponseError: If the answer is not a valid verdict
            ClassificationError: If the request itself fails
        """
        if not self.ready():
            raise ClassifierDisabledError("classifier disabled: OPENAI_API_KEY is not set")

        user_prompt = render(
            "classifier_user",
            title=context.title,
            link=context.link,
            published=context.published.isoformat(),
            summary=context.summary,
        )

        try:
            text, response = await get_completion_async(
                model=self.model_id,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                api_key=self.api_key,
                api_base=self.api_base,
                timeout=self.timeout,
                return_full_response=True,
            )
        except Exception as e:
            raise ClassificationError(f"model request failed: {e}") from e

        if not text:
            raise MalformedResponseError("model returned no content")

        input_tokens, output_tokens, cost = extract_usage_from_litellm_response(response)
        logger.debug(
            "[CLASSIFIER] %s: %d in / %d out tokens, $%.6f",
            self.model_id,
            input_tokens,
            output_tokens,
            cost,
        )

        try:
            return normalize_response(text)
        except MalformedResponseError:
            logger.warning("[CLASSIFIER] Unparseable model response: %r", text[:500])
            raise


def build_classifier(settings: Settings) -> Classifier:
    """Pick the live classifier when a credential is configured."""
    if not settings.classifier_enabled:
        logger.warning("[CLASSIFIER] OPENAI_API_KEY is not set, classification calls will fail")
        return DisabledClassifier()
    return LiteLLMClassifier(
        api_key=settings.openai_api_key,
        model_id=settings.openai_model,
        api_base=settings.openai_base_url or None,
        timeout=settings.classifier_timeout_seconds,
    )


def strip_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def normalize_response(text: str) -> Verdict:
    """
    Turn raw model output into a Verdict.

    Fences are stripped before parsing; prose around a single JSON object is
    tolerated. Null category/reason become "" and null tags become [].
    Anything that is not a JSON object with a boolean "relevant" is an
    error, never a default verdict.

    Raises:
        MalformedResponseError: If the output is not a valid verdict
    """
    cleaned = strip_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        match = _OBJECT_RE.search(cleaned)
        if not match:
            raise MalformedResponseError(f"invalid JSON: {e}") from e
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner:
            raise MalformedResponseError(f"invalid JSON: {inner}") from inner

    if not isinstance(data, dict):
        raise MalformedResponseError(f"expected a JSON object, got {type(data).__name__}")

    relevant = data.get("relevant")
    if not isinstance(relevant, bool):
        raise MalformedResponseError(f"'relevant' must be a boolean, got {relevant!r}")

    tags = data.get("tags")
    if tags is None:
        tags = []
    if not isinstance(tags, list):
        raise MalformedResponseError(f"'tags' must be a list, got {type(tags).__name__}")

    return Verdict(
        relevant=relevant,
        category=_as_text(data.get("category")),
        reason=_as_text(data.get("reason")),
        tags=[str(t) for t in tags if t is not None],
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
