"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

# Role-dependent defaults.  The researcher runs sandboxed code with short
# timeouts; the orchestrator runs privileged jobs that may install packages.
_ROLE_DEFAULTS: dict[str, dict[str, int]] = {
    "researcher": {
        "code_exec_timeout_ms": 30_000,
        "max_tool_rounds": 3,
        "max_output_bytes": 50 * 1024,
    },
    "orchestrator": {
        "code_exec_timeout_ms": 300_000,
        "max_tool_rounds": 8,
        "max_output_bytes": 500 * 1024,
    },
}

LLM_PROVIDERS = ("minimax", "kimi", "openai", "anthropic", "ollama")


class ConfigError(Exception):
    """Raised at startup when required configuration is missing or invalid."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__("Missing or invalid configuration: " + ", ".join(missing))
        self.missing = missing


class Settings(BaseSettings):
    """Central configuration for taskbots. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Task Service ───────────────────────────────────────────────────
    task_service_url: str = ""
    task_service_api_key: str = ""
    # Project that chat-created tasks land in
    project_id: str = ""
    # Bot id of the researcher; the orchestrator delegates and reviews against it
    researcher_bot_id: str = ""

    # ── Agent identity ─────────────────────────────────────────────────
    # "researcher" (sandboxed) or "orchestrator" (privileged)
    agent_role: str = "researcher"
    agent_name: str = ""

    @field_validator("agent_role")
    @classmethod
    def _normalize_role(cls, value: str) -> str:
        return value.strip().lower()

    # ── LLM ────────────────────────────────────────────────────────────
    # minimax | kimi  → OpenAI-compatible HTTP endpoint (LLM_API_KEY)
    # openai | anthropic | ollama → LangChain chat model
    llm_provider: str = "minimax"
    llm_api_key: str = ""
    llm_model: str = ""
    llm_base_url: str = ""
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 120.0

    openai_api_key: str = ""
    anthropic_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # ── Web search ─────────────────────────────────────────────────────
    serper_api_key: str = ""

    # ── Execution ──────────────────────────────────────────────────────
    poll_interval_seconds: float = 30.0
    # Left at 0 to take the role default (see _ROLE_DEFAULTS)
    code_exec_timeout_ms: int = 0
    max_tool_rounds: int = 0
    max_output_bytes: int = 0
    max_description_length: int = 5000
    sandbox_isolate_network: bool = False
    work_dir_root: str = "tmp"

    @field_validator("work_dir_root")
    @classmethod
    def _resolve_work_dir(cls, value: str) -> str:
        return str(Path(value).expanduser().resolve())

    # ── Concurrency / shutdown ─────────────────────────────────────────
    max_concurrent_tasks: int = 3
    shutdown_timeout_seconds: float = 300.0
    drain_check_interval_seconds: float = 5.0

    # ── Telegram ───────────────────────────────────────────────────────
    telegram_enabled: bool = False
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # ── Git (orchestrator only; tool is offered when both are set) ────
    github_token: str = ""
    git_repo_url: str = ""
    git_author_name: str = "taskbots"
    git_author_email: str = "taskbots@local"

    # ── Web / operator API ─────────────────────────────────────────────
    web_enabled: bool = False
    web_host: str = "127.0.0.1"
    web_port: int = 8420

    # ── Webhook delivery pipeline ──────────────────────────────────────
    webhooks_enabled: bool = False
    webhook_db_path: str = "data/webhooks.db"
    webhook_poll_interval_seconds: float = 60.0
    webhook_timeout_seconds: float = 10.0
    webhook_batch_size: int = 50

    # ── Task Service HTTP client ───────────────────────────────────────
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/agent.log"
    # "text" or "json"
    log_format: str = "text"

    @model_validator(mode="after")
    def _apply_role_defaults(self) -> "Settings":
        defaults = _ROLE_DEFAULTS.get(self.agent_role, _ROLE_DEFAULTS["researcher"])
        for key, value in defaults.items():
            if not getattr(self, key):
                setattr(self, key, value)
        if not self.agent_name:
            self.agent_name = self.agent_role.capitalize() or "Agent"
        return self

    @property
    def is_orchestrator(self) -> bool:
        return self.agent_role == "orchestrator"

    @property
    def git_enabled(self) -> bool:
        return bool(self.github_token and self.git_repo_url)

    @property
    def telegram_active(self) -> bool:
        return self.telegram_enabled and bool(self.telegram_bot_token)

    def validate_for_role(self) -> None:
        """Fail fast: raise :class:`ConfigError` listing every missing variable."""
        missing: list[str] = []
        if self.agent_role not in _ROLE_DEFAULTS:
            missing.append(f"AGENT_ROLE (got {self.agent_role!r})")
        if not self.task_service_url:
            missing.append("TASK_SERVICE_URL")
        if not self.task_service_api_key:
            missing.append("TASK_SERVICE_API_KEY")

        provider = self.llm_provider.lower()
        if provider not in LLM_PROVIDERS:
            missing.append(f"LLM_PROVIDER (got {self.llm_provider!r})")
        elif provider in ("minimax", "kimi") and not self.llm_api_key:
            missing.append("LLM_API_KEY")
        elif provider == "openai" and not (self.openai_api_key or self.llm_api_key):
            missing.append("OPENAI_API_KEY")
        elif provider == "anthropic" and not (self.anthropic_api_key or self.llm_api_key):
            missing.append("ANTHROPIC_API_KEY")

        if self.agent_role == "researcher" and not self.serper_api_key:
            missing.append("SERPER_API_KEY")

        if self.is_orchestrator:
            if not self.researcher_bot_id:
                missing.append("RESEARCHER_BOT_ID")
            if self.telegram_enabled:
                if not self.telegram_bot_token:
                    missing.append("TELEGRAM_BOT_TOKEN")
                if not self.telegram_chat_id:
                    missing.append("TELEGRAM_CHAT_ID")
                if not self.project_id:
                    missing.append("PROJECT_ID")

        if missing:
            raise ConfigError(missing)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests)."""
    global _settings
    _settings = None
