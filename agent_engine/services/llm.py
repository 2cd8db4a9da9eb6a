"""Generative model client over litellm."""

import logging
from dataclasses import dataclass, field
from typing import Any

import litellm

from agent_engine.core.config import settings

litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a model call fails."""


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ChatResponse:
    content: str
    model: str
    usage: Usage = field(default_factory=Usage)


class LLMClient:
    """Single chat entry point used for planning, reasoning and AI tools."""

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.api_base = api_base if api_base is not None else settings.llm_api_base

    def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        temperature: float | None = None,
        timeout: float | None = None,
    ) -> ChatResponse:
        """Send a chat completion request.

        Args:
            model: Model name understood by litellm
            messages: Chat messages ({"role", "content"} dicts)
            max_tokens: Completion token budget
            temperature: Optional sampling temperature
            timeout: Optional request timeout in seconds

        Returns:
            ChatResponse with content and token usage

        Raises:
            LLMError: If the provider call fails
        """
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if timeout is not None:
            kwargs["timeout"] = timeout
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = litellm.completion(**kwargs)
        except litellm.exceptions.AuthenticationError as e:
            raise LLMError(f"Auth failed. Check API key.\n{e}") from e
        except litellm.exceptions.APIConnectionError as e:
            raise LLMError(
                f"Cannot connect: model={model}, base={self.api_base or 'default'}\n{e}"
            ) from e
        except Exception as e:
            raise LLMError(f"LLM error: {type(e).__name__}: {e}") from e

        usage = Usage()
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        content = response.choices[0].message.content or ""
        logger.debug(f"{model} returned {usage.total_tokens} tokens")
        return ChatResponse(content=content, model=model, usage=usage)
