"""LLM client module for style metric extraction.

Routes requests through LiteLLM; Langfuse callbacks are attached only when
``LANGFUSE_ENABLED`` is set.
"""

from __future__ import annotations

import logging
from typing import Any

import litellm
from litellm import acompletion

from writing_style.core.config import settings

if settings.LANGFUSE_ENABLED:
    litellm.success_callback = ["langfuse"]
    litellm.failure_callback = ["langfuse"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1200


def _prepend_system_message(
    system_prompt: str | None,
    messages: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Convert a separate system_prompt into an OpenAI-style system message.

    LiteLLM expects the system prompt as the first message with
    ``role: "system"`` rather than a separate ``system`` kwarg.
    """
    if not system_prompt:
        return list(messages)
    return [{"role": "system", "content": system_prompt}, *messages]


class LLMClient:
    """Async client for chat completions routed through LiteLLM."""

    def __init__(self, model: str | None = None) -> None:
        """Initialize LLM client.

        Args:
            model: Anthropic model name; defaults to ``STYLE_EXTRACTION_MODEL``.
        """
        self._api_key = settings.ANTHROPIC_API_KEY.get_secret_value()
        self._model = model or settings.STYLE_EXTRACTION_MODEL
        self._litellm_model = f"anthropic/{self._model}"

    @property
    def model(self) -> str:
        """The model name used for completions."""
        return self._model

    async def generate_response(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.0,
    ) -> str:
        """Generate a completion.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            system_prompt: Optional system prompt for context.
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature (0-1).

        Returns:
            Generated text response.

        Raises:
            litellm.exceptions.APIError: If the API call fails.
        """
        litellm_messages = _prepend_system_message(system_prompt, messages)

        logger.debug(
            "Calling LLM via LiteLLM",
            extra={
                "model": self._litellm_model,
                "message_count": len(messages),
                "has_system": system_prompt is not None,
            },
        )

        response = await acompletion(
            model=self._litellm_model,
            messages=litellm_messages,
            max_tokens=max_tokens,
            temperature=temperature,
            api_key=self._api_key,
        )

        text_content: str = str(response.choices[0].message.content or "")

        logger.debug(
            "LLM response received",
            extra={"response_length": len(text_content)},
        )
        return text_content
