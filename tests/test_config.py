"""Tests for settings loading and role validation."""

from __future__ import annotations

import pytest

from conftest import make_settings
from taskbots.core.config import ConfigError, Settings, get_settings, reset_settings


class TestRoleDefaults:
    def test_researcher_defaults(self):
        s = make_settings(agent_role="researcher")
        assert s.code_exec_timeout_ms == 30_000
        assert s.max_tool_rounds == 3
        assert s.max_output_bytes == 50 * 1024
        assert s.agent_name == "Researcher"

    def test_orchestrator_defaults(self):
        s = make_settings(agent_role="orchestrator")
        assert s.code_exec_timeout_ms == 300_000
        assert s.max_tool_rounds == 8
        assert s.max_output_bytes == 500 * 1024
        assert s.is_orchestrator

    def test_explicit_values_win(self):
        s = make_settings(agent_role="researcher", max_tool_rounds=5, agent_name="Scout")
        assert s.max_tool_rounds == 5
        assert s.agent_name == "Scout"

    def test_role_is_normalized(self):
        assert make_settings(agent_role="  Orchestrator ").agent_role == "orchestrator"

    def test_env_vars_are_read(self, monkeypatch):
        monkeypatch.setenv("AGENT_ROLE", "orchestrator")
        monkeypatch.setenv("MAX_CONCURRENT_TASKS", "7")
        s = Settings(_env_file=None)
        assert s.is_orchestrator
        assert s.max_concurrent_tasks == 7


class TestValidateForRole:
    def test_valid_researcher(self):
        make_settings(agent_role="researcher").validate_for_role()

    def test_missing_task_service(self):
        s = make_settings(task_service_url="", task_service_api_key="")
        with pytest.raises(ConfigError) as exc_info:
            s.validate_for_role()
        assert "TASK_SERVICE_URL" in exc_info.value.missing
        assert "TASK_SERVICE_API_KEY" in exc_info.value.missing

    def test_researcher_needs_search_key(self):
        s = make_settings(agent_role="researcher", serper_api_key="")
        with pytest.raises(ConfigError, match="SERPER_API_KEY"):
            s.validate_for_role()

    def test_unknown_role(self):
        with pytest.raises(ConfigError, match="AGENT_ROLE"):
            make_settings(agent_role="janitor").validate_for_role()

    def test_orchestrator_needs_researcher_id(self):
        s = make_settings(agent_role="orchestrator", researcher_bot_id="")
        with pytest.raises(ConfigError, match="RESEARCHER_BOT_ID"):
            s.validate_for_role()

    def test_orchestrator_telegram_requirements(self):
        s = make_settings(agent_role="orchestrator", telegram_enabled=True)
        with pytest.raises(ConfigError) as exc_info:
            s.validate_for_role()
        assert set(exc_info.value.missing) >= {"TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "PROJECT_ID"}

    def test_unknown_llm_provider(self):
        with pytest.raises(ConfigError, match="LLM_PROVIDER"):
            make_settings(llm_provider="nope").validate_for_role()

    def test_ollama_needs_no_key(self):
        make_settings(llm_provider="ollama", llm_api_key="").validate_for_role()


class TestDerivedFlags:
    def test_git_enabled_needs_both(self):
        assert not make_settings(github_token="t").git_enabled
        assert make_settings(github_token="t", git_repo_url="o/r").git_enabled

    def test_telegram_active(self):
        assert not make_settings(telegram_enabled=True).telegram_active
        assert make_settings(telegram_enabled=True, telegram_bot_token="x").telegram_active


class TestSingleton:
    def test_get_settings_is_cached(self, monkeypatch):
        reset_settings()
        monkeypatch.setenv("AGENT_NAME", "Cached")
        try:
            assert get_settings() is get_settings()
            assert get_settings().agent_name == "Cached"
        finally:
            reset_settings()
