"""Streaming LLM chat client used by the tool-calling loop."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from litellm import acompletion

from steward.config import settings
from steward.errors import UpstreamModelError

logger = logging.getLogger(__name__)


@dataclass
class ToolCallDelta:
    """A fragment of one tool call, identified by its index in the turn."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class ChatDelta:
    """One streamed chunk of a model turn."""

    content: str | None = None
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    finish_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.tool_calls


class ChatClient(Protocol):
    """Anything that can stream a chat completion with tool declarations."""

    def stream_chat(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> AsyncIterator[ChatDelta]: ...


def _get_model_name() -> str:
    """Get the appropriate model name based on provider."""
    if settings.llm_provider == "openai":
        return settings.openai_model
    else:
        return f"ollama/{settings.ollama_model}"


def _get_api_base() -> Optional[str]:
    """Get the API base URL for Ollama."""
    if settings.llm_provider == "ollama":
        return settings.ollama_host
    return None


def _to_delta(chunk: Any) -> ChatDelta:
    """Convert a litellm streaming chunk to a ChatDelta."""
    if not chunk.choices:
        return ChatDelta()
    choice = chunk.choices[0]
    delta = choice.delta
    tool_calls = []
    for tc in getattr(delta, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        tool_calls.append(
            ToolCallDelta(
                index=tc.index or 0,
                id=getattr(tc, "id", None),
                name=getattr(function, "name", None) if function else None,
                arguments=getattr(function, "arguments", None) if function else None,
            )
        )
    return ChatDelta(
        content=getattr(delta, "content", None),
        tool_calls=tool_calls,
        finish_reason=getattr(choice, "finish_reason", None),
    )


class LiteLLMChatClient:
    """ChatClient backed by litellm, for OpenAI or Ollama."""

    def __init__(self, temperature: float = 0.1, timeout: float | None = None):
        self.temperature = temperature
        self.timeout = timeout if timeout is not None else settings.llm_timeout

    async def stream_chat(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> AsyncIterator[ChatDelta]:
        try:
            response = await acompletion(
                model=_get_model_name(),
                messages=messages,
                tools=tools or None,
                tool_choice="auto" if tools else None,
                stream=True,
                api_base=_get_api_base(),
                api_key=settings.openai_api_key if settings.llm_provider == "openai" else None,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            raise UpstreamModelError(f"LLM call failed: {e}") from e

        try:
            async for chunk in response:
                yield _to_delta(chunk)
        except Exception as e:
            logger.error(f"LLM stream failed: {e}")
            raise UpstreamModelError(f"LLM stream failed: {e}") from e
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()
