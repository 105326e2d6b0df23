"""Telegram front-end.

Commands:
  /task <title>   create a task for this bot (first line is the title, the
                  remaining lines the description)
  /status         list this bot's active tasks
  /help           usage

Plain text is answered conversationally by the orchestrator; the researcher
replies with a usage hint.  Only the configured chat is served.

Notifications (sent by the daemon's notification poll):
  * Task complete, with its result comment, for tasks created here
"""

from __future__ import annotations

import asyncio
from collections import deque

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from infra.models import Task
from infra.task_service import TaskServiceClient, TaskServiceError
from taskbots.agents.llm import ChatMessage, LLMClient
from taskbots.agents.models import load_system_prompt
from taskbots.core.config import get_settings
from taskbots.core.logging import get_logger
from taskbots.core.parsing import strip_think
from taskbots.core.task_tracker import tracker

logger = get_logger("telegram.bot")

TRUNCATE_AT = 3800
MAX_TITLE_CHARS = 200
MAX_HISTORY_MESSAGES = 20
STATUS_LIMIT = 20
TASK_QUADRANT = "q1"

HELP_TEXT = (
    "Commands:\n"
    "/task <title> - create a task (title on the first line, details below it)\n"
    "/status - list active tasks\n"
    "/help - show this message"
)

# ── Module-level state ───────────────────────────────────────────────────
_telegram_app: Application | None = None   # set by create_telegram_app()
_api: TaskServiceClient | None = None
_llm: LLMClient | None = None
_history: deque[ChatMessage] = deque(maxlen=MAX_HISTORY_MESSAGES)

# ── Helpers ──────────────────────────────────────────────────────────────


def _is_allowed(chat_id: int | str) -> bool:
    """Only the configured chat may talk to the bot."""
    allowed = get_settings().telegram_chat_id
    return bool(allowed) and str(chat_id) == str(allowed)


def truncate(text: str, limit: int = TRUNCATE_AT, note: str = "(message truncated)") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n\n{note}"


def parse_task_text(text: str) -> tuple[str, str]:
    """Split ``/task`` input into (title, description)."""
    lines = text.strip().splitlines()
    if not lines:
        return "", ""
    title = lines[0].strip()[:MAX_TITLE_CHARS]
    description = "\n".join(lines[1:]).strip()
    return title, description


def _command_body(message_text: str) -> str:
    """Text after the leading ``/command`` token, newlines preserved."""
    parts = (message_text or "").split(maxsplit=1)
    return parts[1] if len(parts) > 1 else ""


async def notify_task_completed(chat_id: str, task: Task, result_text: str) -> None:
    """Send a completion notice for ``task`` to ``chat_id``."""
    if _telegram_app is None:
        return
    body = truncate(result_text, note="(see full result in the task)")
    await _telegram_app.bot.send_message(
        chat_id=chat_id,
        text=f"✅ Task completed: {task.title}\n\n{body}",
    )


# ── Command handlers ─────────────────────────────────────────────────────

async def cmd_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /task: create a task in the configured project."""
    if not _is_allowed(update.effective_chat.id):
        return

    title, description = parse_task_text(_command_body(update.message.text))
    if not title:
        await update.message.reply_text("Usage: /task <title>\n<optional description lines>")
        return

    if _api is None:
        await update.message.reply_text("Task Service is not available.")
        return

    settings = get_settings()
    try:
        task = await _api.create_task(
            title,
            description=description or None,
            project_id=settings.project_id,
            quadrant=TASK_QUADRANT,
            assign_to_self=True,
        )
    except TaskServiceError as exc:
        logger.error("Task creation from chat failed: %s", exc)
        await update.message.reply_text(f"❌ Could not create task: {exc}")
        return

    tracker.track(task.id, update.effective_chat.id)
    logger.info("Task %s created from chat", task.id)
    await update.message.reply_text(
        f"\U0001f4cb Task created: {task.title}\nID: {task.id}\n\nI'll message you when it's done."
    )


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status: list active tasks assigned to this bot."""
    if not _is_allowed(update.effective_chat.id):
        return
    if _api is None:
        await update.message.reply_text("Task Service is not available.")
        return

    try:
        page = await _api.list_tasks(assigned_to_bot=True, completed=False, limit=STATUS_LIMIT)
    except TaskServiceError as exc:
        await update.message.reply_text(f"❌ Could not load tasks: {exc}")
        return

    if not page.tasks:
        await update.message.reply_text("\U0001f4a4 No active tasks.")
        return

    lines = [f"\U0001f4ca Active tasks ({len(page.tasks)}):"]
    lines += [f"- {t.title} [{t.status}] {t.progress}%" for t in page.tasks]
    await update.message.reply_text(truncate("\n".join(lines)))


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _is_allowed(update.effective_chat.id):
        return
    await update.message.reply_text(HELP_TEXT)


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Plain text: chat with the orchestrator, or a hint for the researcher."""
    if not _is_allowed(update.effective_chat.id):
        return
    text = (update.message.text or "").strip()
    if not text:
        return

    settings = get_settings()
    if not settings.is_orchestrator or _llm is None:
        await update.message.reply_text(
            "I only work on tasks. Use /task <title> to create one, or /help."
        )
        return

    _history.append(ChatMessage.user(text))
    messages = [ChatMessage.system(load_system_prompt("chat", settings.agent_name)), *_history]
    try:
        response = await _llm.chat(messages)
    except Exception as exc:
        logger.error("Chat reply failed: %s", exc, exc_info=True)
        await update.message.reply_text(f"❌ Sorry, something went wrong: {exc}")
        return

    reply = strip_think(response.content or "") or "(no response)"
    _history.append(ChatMessage.assistant(reply))
    await update.message.reply_text(truncate(reply))


# ── App factory ──────────────────────────────────────────────────────────

def create_telegram_app(api: TaskServiceClient, llm: LLMClient | None = None) -> Application | None:
    """Build and configure the Telegram Application.  Returns None if disabled."""
    global _telegram_app, _api, _llm

    settings = get_settings()
    if not settings.telegram_active:
        logger.info("Telegram disabled or token not set, skipping Telegram integration")
        return None

    app = Application.builder().token(settings.telegram_bot_token).build()

    app.add_handler(CommandHandler("task", cmd_task))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("start", cmd_help))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    _telegram_app = app
    _api = api
    _llm = llm
    logger.info("Telegram bot configured, commands: /task /status /help")
    return app


# ── Runner ───────────────────────────────────────────────────────────────

async def run_telegram_bot(telegram_app: Application) -> None:
    """Run the long-polling loop until cancelled."""
    logger.info("Starting Telegram bot polling…")
    await telegram_app.initialize()
    await telegram_app.start()
    await telegram_app.updater.start_polling(drop_pending_updates=True)

    try:
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        await telegram_app.updater.stop()
        await telegram_app.stop()
        await telegram_app.shutdown()
