"""AI client abstraction with an Anthropic API backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from agent_chat.config import AnthropicConfig
from agent_chat.errors import AIClientError
from agent_chat.log import get_logger

logger = get_logger(__name__)


@dataclass
class AIResponse:
    """Unified response from any AI backend."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None
    raw: Any = None  # Backend-specific raw response


class AIClient(ABC):
    """Abstract base class for AI backends."""

    @abstractmethod
    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> AIResponse:
        """Send a conversation to the model and return its reply.

        Raises AIClientError when the backend rejects or fails the request.
        """
        ...

    async def close(self) -> None:
        return None


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig):
        import anthropic

        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> AIResponse:
        logger.debug("api_request", model=model, message_count=len(messages))
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system,
                messages=messages,
                temperature=temperature,
            )
        except self._anthropic.APIStatusError as e:
            logger.error("api_error", model=model, status_code=e.status_code, error=str(e))
            raise AIClientError(f"http_{e.status_code}", str(e)) from e
        except self._anthropic.APIError as e:
            logger.error("api_error", model=model, error=str(e))
            raise AIClientError(type(e).__name__, str(e)) from e

        logger.debug(
            "api_response",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        text = "".join(b.text for b in response.content if b.type == "text")
        return AIResponse(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            raw=response,
        )

    async def close(self) -> None:
        await self._client.close()
