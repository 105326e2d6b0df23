"""LLM client factory and system prompts.

Provider routing is done via ``LLM_PROVIDER``:
  - "minimax" / "kimi"  → OpenAI-compatible HTTP endpoint (LLM_API_KEY)
  - "openai"            → LangChain ChatOpenAI     (OPENAI_API_KEY or LLM_API_KEY)
  - "anthropic"         → LangChain ChatAnthropic  (ANTHROPIC_API_KEY or LLM_API_KEY)
  - "ollama"            → LangChain ChatOllama     (OLLAMA_BASE_URL)

LLM_MODEL overrides the provider's default model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from langchain_core.language_models import BaseChatModel

from taskbots.agents.langchain_client import LangChainChatClient
from taskbots.agents.llm import LLMClient
from taskbots.agents.openai_compat import PRESETS, OpenAICompatibleClient
from taskbots.core.config import Settings, get_settings
from taskbots.core.logging import get_logger

logger = get_logger("agents.models")

PromptName = Literal[
    "researcher",
    "orchestrator",
    "router",
    "planner",
    "reviewer",
    "chat",
]

PROMPTS_DIR = Path(__file__).parent / "prompts"

_DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
    "ollama": "llama3.1",
}


# ---------------------------------------------------------------------------
# LangChain constructors
# ---------------------------------------------------------------------------

def _make_ollama(model: str, base_url: str, temperature: float = 0.3) -> BaseChatModel:
    """Create a ChatOllama instance. langchain-ollama must be installed."""
    try:
        from langchain_ollama import ChatOllama  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "langchain-ollama is not installed. Run: pip install langchain-ollama"
        ) from exc

    logger.info("Using Ollama model '%s' at %s", model, base_url)
    return ChatOllama(model=model, base_url=base_url, temperature=temperature)


def _make_anthropic(model: str, api_key: str, temperature: float = 0.3, max_tokens: int = 4096) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    logger.info("Using Anthropic model '%s'", model)
    return ChatAnthropic(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _make_openai(model: str, api_key: str, temperature: float = 0.3, max_tokens: int = 4096) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    logger.info("Using OpenAI model '%s'", model)
    return ChatOpenAI(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


# ---------------------------------------------------------------------------
# Key validation helpers
# ---------------------------------------------------------------------------

def _normalized_secret(value: str | None) -> str:
    return (value or "").strip()


def _require_key(provider: str, env_name: str, *candidates: str) -> str:
    for candidate in candidates:
        key = _normalized_secret(candidate)
        if key:
            return key
    raise ValueError(
        f"Missing {env_name} for LLM provider '{provider}'. "
        f"Set {env_name} (or LLM_API_KEY) in .env or switch LLM_PROVIDER."
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_llm(settings: Settings | None = None) -> LLMClient:
    """Create the chat client selected by ``LLM_PROVIDER``."""
    settings = settings or get_settings()
    provider = settings.llm_provider.lower().strip()

    if provider in PRESETS:
        key = _require_key(provider, "LLM_API_KEY", settings.llm_api_key)
        return OpenAICompatibleClient.from_preset(
            provider,
            key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    model = settings.llm_model or _DEFAULT_MODELS.get(provider, "")

    if provider == "ollama":
        chat_model = _make_ollama(model, settings.ollama_base_url, settings.llm_temperature)
    elif provider == "anthropic":
        key = _require_key(provider, "ANTHROPIC_API_KEY", settings.anthropic_api_key, settings.llm_api_key)
        chat_model = _make_anthropic(model, key, settings.llm_temperature, settings.llm_max_tokens)
    elif provider == "openai":
        key = _require_key(provider, "OPENAI_API_KEY", settings.openai_api_key, settings.llm_api_key)
        chat_model = _make_openai(model, key, settings.llm_temperature, settings.llm_max_tokens)
    else:
        raise ValueError(f"Unknown LLM provider: {provider!r}")

    return LangChainChatClient(chat_model)


def load_system_prompt(name: PromptName, agent_name: str = "") -> str:
    """Load a system prompt from ``prompts/<name>.txt``.

    ``{agent_name}`` placeholders are filled with the configured display name.
    """
    prompt_file = PROMPTS_DIR / f"{name}.txt"
    if not prompt_file.exists():
        raise FileNotFoundError(f"System prompt not found: {prompt_file}")
    text = prompt_file.read_text(encoding="utf-8")
    return text.replace("{agent_name}", agent_name or get_settings().agent_name)
