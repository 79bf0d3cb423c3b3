"""Chat-completion clients for OpenAI-compatible model endpoints."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

from mouse_bot.config import LLMConfig
from mouse_bot.errors import ModelInvocationError
from mouse_bot.log import get_logger
from mouse_bot.storage.config_repo import ConfigRepository
from mouse_bot.storage.models import ModelConfig

logger = get_logger(__name__)


@dataclass
class AIResponse:
    """Unified response from a chat-completion call."""

    text: str
    total_tokens: int = 0
    raw: dict[str, Any] | None = None  # Full response payload as returned by the endpoint


class AIClient(ABC):
    """Abstract base class for model backends."""

    @abstractmethod
    async def chat(self, model: str, messages: list[dict[str, Any]]) -> AIResponse:
        """Send a conversation to the model and return its reply."""
        ...


class OpenAIClient(AIClient):
    """Any endpoint speaking the OpenAI chat-completions protocol (OpenAI, DeepSeek, ...)."""

    def __init__(self, model_config: ModelConfig, llm_config: LLMConfig):
        self.model_id = model_config.id
        self._client = AsyncOpenAI(
            api_key=model_config.api_key,
            base_url=model_config.base_url or None,
            timeout=llm_config.timeout,
            max_retries=llm_config.max_retries,
        )

    async def chat(self, model: str, messages: list[dict[str, Any]]) -> AIResponse:
        logger.debug("api_request", model_id=self.model_id, model=model, message_count=len(messages))
        response = await self._client.chat.completions.create(model=model, messages=messages)

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        total_tokens = response.usage.total_tokens if response.usage else 0

        logger.debug("api_response", model_id=self.model_id, model=model, total_tokens=total_tokens)
        return AIResponse(text=text, total_tokens=total_tokens, raw=response.model_dump(mode="json"))


class ModelClientCache:
    """One client per model config id, created on first use.

    Entries are never evicted; a stale client after a key rotation surfaces as
    an upstream auth error on that flow.
    """

    def __init__(self, config_repo: ConfigRepository, llm_config: LLMConfig):
        self._config_repo = config_repo
        self._llm_config = llm_config
        self._clients: dict[str, AIClient] = {}

    async def get(self, model_id: str) -> AIClient:
        if not model_id:
            raise ModelInvocationError("Flow has no model_id configured")

        cached = self._clients.get(model_id)
        if cached is not None:
            return cached

        model_config = await self._config_repo.get_model(model_id)
        if model_config is None:
            raise ModelInvocationError(f"Model config not found: {model_id}")

        client = OpenAIClient(model_config, self._llm_config)
        # Concurrent first calls may both build a client; last writer wins
        self._clients[model_id] = client
        logger.info("model_client_created", model_id=model_id, base_url=model_config.base_url)
        return client
