# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable AI Backend
# =============================================================================
#
# Provides a common interface for chat completions, with concrete
# implementations for Anthropic (Claude) and OpenAI-compatible APIs
# (Groq, DeepSeek, Qwen, OpenAI).
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Matches FilingStore, BlobStore and EmbeddingProvider: any class with the
# right `complete()` method works, including the test doubles.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers. One request shape
# per provider, no wrapper translation to debug.
#
# DESIGN DECISION: Clients are built lazily on first `complete()` call.
# Providers are owned by the DI container (services/container.py) and
# constructed at startup; a missing API key only fails the first request
# that actually needs the model.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider  — system prompt as first message
#   └── create_llm_provider()     — factory from explicit settings
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

if TYPE_CHECKING:
    from filing_rag.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """One completion, with usage counts, whatever provider produced it."""

    content: str           # The generated text
    model: str             # Model identifier (e.g., "llama-3.1-8b-instant")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Protocol defining the LLM provider interface."""

    model: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (pass the system prompt via `system`).
            system: System prompt for the LLM. Handled differently per provider:
                - Anthropic: top-level `system=` kwarg
                - OpenAI: prepended as {"role": "system", ...} message
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.

        Returns:
            LLMResponse with generated text and usage metrics.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    The grounding instructions travel as Anthropic's top-level `system=`
    argument; the messages list only ever holds the user turn.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 1024,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client: AsyncAnthropic | None = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise ValueError("No Anthropic API key configured. Set LLM_API_KEY in .env")
            self._client = AsyncAnthropic(api_key=self._api_key)
            logger.info("Initialized AnthropicProvider (model=%s)", self.model)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }

        # Anthropic: system prompt is a top-level kwarg, not a message
        if system:
            kwargs["system"] = system

        response = await self._get_client().messages.create(**kwargs)

        # Extract text from the first content block
        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (Groq, DeepSeek, Qwen, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.groq.com/openai/v1
        LLM_API_KEY=your-key
        LLM_MODEL=llama-3.1-8b-instant
    """

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 1024,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "No API key configured for OpenAI-compatible provider. "
                    "Set LLM_API_KEY in .env"
                )
            client_kwargs: dict = {"api_key": self._api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**client_kwargs)

            logger.info(
                "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
                self.model,
                self._base_url or "https://api.openai.com/v1",
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._get_client().chat.completions.create(
            model=self.model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def create_llm_provider(settings: Settings) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider (Groq, DeepSeek, etc.)

    Called once by the DI container; the instance is shared process-wide.
    """
    if settings.llm_provider == "anthropic":
        return AnthropicProvider(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    raise ValueError(
        f"Unknown LLM provider '{settings.llm_provider}'. "
        "Supported: 'anthropic', 'openai_compatible'"
    )
