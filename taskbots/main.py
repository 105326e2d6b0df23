"""taskbots main entry point.

Starts the polling daemon for the configured role and, when enabled, the
operator web server and the Telegram front-end.
"""

from __future__ import annotations

import asyncio
import signal
import sys

import uvicorn

from infra.factory import get_task_service_client
from taskbots.agents.models import get_llm
from taskbots.core.config import ConfigError, get_settings
from taskbots.core.daemon import Daemon
from taskbots.core.logging import get_logger, setup_logging
from taskbots.tools.search import WebSearchClient


def main():
    """Entry point: validate configuration and run all services."""
    setup_logging()
    logger = get_logger("main")
    settings = get_settings()

    try:
        settings.validate_for_role()
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("taskbots starting: %s (%s)", settings.agent_name, settings.agent_role)
    logger.info("=" * 60)

    if settings.webhooks_enabled and not settings.web_enabled:
        logger.warning("WEBHOOKS_ENABLED is set but WEB_ENABLED is not; the queue will not run")

    async def _run_all() -> None:
        api = get_task_service_client()
        llm = get_llm(settings)
        search = WebSearchClient(settings.serper_api_key) if settings.serper_api_key else None

        telegram_app = None
        notifier = None
        if settings.telegram_active:
            from taskbots.telegram.bot import create_telegram_app, notify_task_completed

            telegram_app = create_telegram_app(api, llm)
            notifier = notify_task_completed
            logger.info("Telegram bot: enabled")
        else:
            logger.info("Telegram bot: disabled")

        daemon = Daemon(settings, api, llm, search=search, notifier=notifier)

        server = None
        if settings.web_enabled:
            from taskbots.web.server import app, set_daemon

            set_daemon(daemon)
            config = uvicorn.Config(
                app,
                host=settings.web_host,
                port=settings.web_port,
                log_level=settings.log_level.lower(),
                reload=False,
            )
            server = uvicorn.Server(config)
            # Signals are handled below, not by uvicorn
            server.install_signal_handlers = lambda: None
            logger.info("Web UI: http://%s:%d", settings.web_host, settings.web_port)

        side_tasks: list[asyncio.Task] = []
        if server is not None:
            side_tasks.append(asyncio.create_task(server.serve(), name="web"))
        if telegram_app is not None:
            from taskbots.telegram.bot import run_telegram_bot

            side_tasks.append(asyncio.create_task(run_telegram_bot(telegram_app), name="telegram"))

        _signal_count = 0

        def _handle_signal() -> None:
            nonlocal _signal_count
            _signal_count += 1
            if _signal_count > 1:
                logger.warning("Second signal, forcing immediate exit")
                daemon._force_exit(1)
                return
            logger.info("Signal received: stopping polls and draining in-flight work")
            for task in side_tasks:
                if task.get_name() == "telegram":
                    task.cancel()
            if server is not None:
                server.should_exit = True
            daemon.request_shutdown()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _handle_signal)
            except NotImplementedError:  # pragma: no cover - Windows
                signal.signal(sig, lambda *_: _handle_signal())

        try:
            await daemon.run()
        finally:
            for task in side_tasks:
                if task.get_name() == "telegram":
                    task.cancel()
            if server is not None:
                server.should_exit = True
            await asyncio.gather(*side_tasks, return_exceptions=True)
            await api.aclose()
            if search is not None:
                await search.aclose()
            aclose = getattr(llm, "aclose", None)
            if aclose is not None:
                await aclose()

    try:
        asyncio.run(_run_all())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
