"""Chat client for OpenAI-compatible ``/chat/completions`` endpoints.

Used for the hosted providers that speak the OpenAI wire format but are not
served by a LangChain integration we ship (MiniMax, Kimi/Moonshot).
"""

from __future__ import annotations

from typing import Any

import httpx

from taskbots.agents.llm import (
    ChatMessage,
    LLMError,
    LLMResponse,
    format_message,
    parse_completion_message,
)
from taskbots.core.logging import get_logger

logger = get_logger("agents.openai_compat")

# provider → (base URL, default model)
PRESETS: dict[str, tuple[str, str]] = {
    "minimax": ("https://api.minimax.io/v1", "MiniMax-M2.1"),
    "kimi": ("https://api.moonshot.ai/v1", "kimi-latest"),
}


class OpenAICompatibleClient:
    """Async chat-completions client over ``httpx``.

    Args:
        api_key: Bearer token for the provider.
        model: Model identifier sent with every request.
        base_url: API root (``.../v1``).
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        timeout: Request timeout in seconds; LLM calls are slow.
        transport: Optional ``httpx`` transport (tests).
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key.strip()}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_preset(
        cls,
        provider: str,
        api_key: str,
        model: str = "",
        base_url: str = "",
        **kwargs: Any,
    ) -> "OpenAICompatibleClient":
        if provider not in PRESETS:
            raise ValueError(f"Unknown OpenAI-compatible provider: {provider!r}")
        preset_url, preset_model = PRESETS[provider]
        logger.info("Using %s model '%s'", provider, model or preset_model)
        return cls(api_key, model or preset_model, base_url or preset_url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [format_message(m) for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            body["tools"] = tools

        logger.debug("Sending chat request (messages=%d, tools=%d)", len(messages), len(tools or []))
        response = await self._client.post("/chat/completions", json=body)
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise LLMError(f"{self.model} returned no choices")
        choice = choices[0]
        return parse_completion_message(
            choice.get("message") or {},
            finish_reason=choice.get("finish_reason"),
            usage=data.get("usage"),
        )
