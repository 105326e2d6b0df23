"""Tests for the Telegram front-end.

Handlers are exercised directly with minimal Update/Context mocks; no real
Telegram connection is made.
"""

from __future__ import annotations

from collections import deque
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeTaskService, StubLLM, make_settings
from infra.models import Task
from infra.task_service import TaskServiceError
from taskbots.agents.llm import LLMResponse
from taskbots.core.task_tracker import TaskTracker

CHAT_ID = 4242


# ── Fixtures ──────────────────────────────────────────────────────────────

def _make_update(text: str = "", chat_id: int = CHAT_ID):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.message = AsyncMock()
    update.message.text = text
    return update


def _settings(role: str = "orchestrator"):
    return make_settings(
        agent_role=role,
        telegram_enabled=True,
        telegram_bot_token="123:abc",
        telegram_chat_id=str(CHAT_ID),
        project_id="proj-1",
    )


def _reply(update) -> str:
    update.message.reply_text.assert_called_once()
    return update.message.reply_text.call_args[0][0]


@pytest.fixture
def bot_env():
    """Patch settings, client, model and tracker of the bot module."""
    from taskbots.telegram import bot

    api = FakeTaskService()
    llm = StubLLM()
    tracker = TaskTracker()
    with patch.object(bot, "get_settings", return_value=_settings()), \
            patch.object(bot, "_api", api), \
            patch.object(bot, "_llm", llm), \
            patch.object(bot, "tracker", tracker), \
            patch.object(bot, "_history", deque(maxlen=bot.MAX_HISTORY_MESSAGES)):
        yield bot, api, llm, tracker


# ── Helpers ───────────────────────────────────────────────────────────────

class TestHelpers:
    def test_parse_task_text(self):
        from taskbots.telegram.bot import parse_task_text

        assert parse_task_text("Buy milk\n2 liters\nsemi-skimmed") == ("Buy milk", "2 liters\nsemi-skimmed")
        assert parse_task_text("  ") == ("", "")
        title, _ = parse_task_text("x" * 500)
        assert len(title) == 200

    def test_truncate(self):
        from taskbots.telegram.bot import truncate

        assert truncate("short") == "short"
        long = truncate("y" * 5000)
        assert long.startswith("y" * 3800)
        assert long.endswith("\n\n(message truncated)")


# ── /task ─────────────────────────────────────────────────────────────────

class TestCmdTask:
    @pytest.mark.asyncio
    async def test_creates_and_tracks_task(self, bot_env):
        bot, api, _, tracker = bot_env
        update = _make_update("/task Compare laptops\nUnder 1000 EUR")

        await bot.cmd_task(update, MagicMock())

        (task,) = api.tasks.values()
        assert task.title == "Compare laptops"
        assert task.description == "Under 1000 EUR"
        assert task.project_id == "proj-1"
        assert task.quadrant == "q1"
        assert task.assigned_to_bot_id == api.bot.id
        assert tracker.get(task.id).chat_id == str(CHAT_ID)
        assert "Task created: Compare laptops" in _reply(update)

    @pytest.mark.asyncio
    async def test_missing_title_shows_usage(self, bot_env):
        bot, api, _, _ = bot_env
        update = _make_update("/task")
        await bot.cmd_task(update, MagicMock())
        assert _reply(update).startswith("Usage: /task")
        assert api.tasks == {}

    @pytest.mark.asyncio
    async def test_service_error_is_reported(self, bot_env):
        bot, api, _, tracker = bot_env
        api.create_task = AsyncMock(side_effect=TaskServiceError("Project not found", status_code=404))
        update = _make_update("/task Something")

        await bot.cmd_task(update, MagicMock())

        assert "Could not create task: Project not found" in _reply(update)
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_other_chats_are_ignored(self, bot_env):
        bot, api, _, _ = bot_env
        update = _make_update("/task Sneaky", chat_id=1)
        await bot.cmd_task(update, MagicMock())
        update.message.reply_text.assert_not_called()
        assert api.tasks == {}


# ── /status and /help ─────────────────────────────────────────────────────

class TestCmdStatus:
    @pytest.mark.asyncio
    async def test_no_active_tasks(self, bot_env):
        bot, _, _, _ = bot_env
        update = _make_update("/status")
        await bot.cmd_status(update, MagicMock())
        assert "No active tasks." in _reply(update)

    @pytest.mark.asyncio
    async def test_lists_active_tasks(self, bot_env):
        bot, api, _, _ = bot_env
        api.add_task(title="Research GPUs", status="IN_PROGRESS", progress=40)
        api.add_task(title="Finished", completed=True)
        update = _make_update("/status")

        await bot.cmd_status(update, MagicMock())

        text = _reply(update)
        assert "Active tasks (1)" in text
        assert "- Research GPUs [IN_PROGRESS] 40%" in text

    @pytest.mark.asyncio
    async def test_help(self, bot_env):
        bot, _, _, _ = bot_env
        update = _make_update("/help")
        await bot.cmd_help(update, MagicMock())
        assert _reply(update) == bot.HELP_TEXT


# ── Plain text ────────────────────────────────────────────────────────────

class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_orchestrator_chats_with_history(self, bot_env):
        bot, _, llm, _ = bot_env
        llm.responses = [LLMResponse(content="<think>hmm</think>Hello!"), LLMResponse(content="Still here.")]

        first = _make_update("hi")
        await bot.handle_message(first, MagicMock())
        assert _reply(first) == "Hello!"

        second = _make_update("you there?")
        await bot.handle_message(second, MagicMock())
        assert _reply(second) == "Still here."

        messages, tools = llm.calls[1]
        assert tools is None
        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[2].content == "Hello!"

    @pytest.mark.asyncio
    async def test_researcher_replies_with_hint(self, bot_env):
        bot, _, llm, _ = bot_env
        update = _make_update("hello")
        with patch.object(bot, "get_settings", return_value=_settings("researcher")):
            await bot.handle_message(update, MagicMock())
        assert "I only work on tasks" in _reply(update)
        assert llm.calls == []


# ── Notifications and app factory ─────────────────────────────────────────

class TestNotifyAndFactory:
    @pytest.mark.asyncio
    async def test_completion_notice_is_truncated(self):
        from taskbots.telegram import bot

        app = MagicMock()
        app.bot.send_message = AsyncMock()
        with patch.object(bot, "_telegram_app", app):
            await bot.notify_task_completed("42", Task(id="t1", title="Report"), "z" * 5000)

        kwargs = app.bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == "42"
        assert kwargs["text"].startswith("✅ Task completed: Report\n\n")
        assert kwargs["text"].endswith("(see full result in the task)")

    def test_factory_returns_none_when_disabled(self):
        from taskbots.telegram import bot

        with patch.object(bot, "get_settings", return_value=make_settings()):
            assert bot.create_telegram_app(FakeTaskService()) is None

    def test_factory_registers_handlers(self):
        from taskbots.telegram import bot

        with patch.object(bot, "get_settings", return_value=_settings()), \
                patch.object(bot, "_telegram_app", None), \
                patch.object(bot, "_api", None), \
                patch.object(bot, "_llm", None):
            app = bot.create_telegram_app(FakeTaskService(), StubLLM())
            assert app is not None
            commands = {
                command
                for handler in app.handlers[0]
                for command in getattr(handler, "commands", ())
            }
            assert commands == {"task", "status", "help", "start"}
