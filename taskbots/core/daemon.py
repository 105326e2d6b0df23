"""Polling daemon: discovers work on the Task Service and dispatches it.

Each poll kind runs on its own interval timer (fires immediately, then every
``POLL_INTERVAL_SECONDS``).  Dispatched work runs as a fire-and-forget
``asyncio.Task`` recorded in an :class:`InFlightRegistry`, which keeps
overlapping ticks from picking the same task twice and caps concurrency.

Shutdown stops the timers, then waits for in-flight work to settle, checking
every ``DRAIN_CHECK_INTERVAL_SECONDS`` up to ``SHUTDOWN_TIMEOUT_SECONDS``;
past that the process exits with status 1.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from infra.models import BotInfo, Comment, Task, TaskStatus
from infra.task_service import TaskServiceClient, TaskServiceError
from taskbots.agents.llm import LLMClient
from taskbots.core.brains import (
    AgentBrain,
    aggregate_orchestration,
    build_brain,
    is_result_comment,
    review_task,
)
from taskbots.core.config import Settings
from taskbots.core.logging import get_logger
from taskbots.core.task_tracker import TaskTracker, tracker as default_tracker
from taskbots.tools.search import WebSearchClient

logger = get_logger("core.daemon")

NO_RESULT_TEXT = "(no result comment found)"

# (chat_id, finished task, result text)
Notifier = Callable[[str, Task, str], Awaitable[None]]


def pick_result_comment(comments: list[Comment]) -> str:
    """Text to announce for a finished task.

    The latest bot comment starting with ``[Result``; failing that the
    longest bot comment; failing that a placeholder.
    """
    bot_comments = [c for c in comments if c.is_from_bot]
    for comment in reversed(bot_comments):
        if is_result_comment(comment):
            return comment.body
    if bot_comments:
        return max(bot_comments, key=lambda c: len(c.body)).body
    return NO_RESULT_TEXT


class InFlightRegistry:
    """Tasks currently being worked on for one poll kind, keyed by task id."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._running: dict[str, asyncio.Task] = {}

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._running

    def __len__(self) -> int:
        return len(self._running)

    def ids(self) -> list[str]:
        return list(self._running)

    def dispatch(self, task_id: str, work: Callable[[], Awaitable[Any]]) -> asyncio.Task | None:
        """Start ``work()`` for ``task_id`` unless it is already running."""
        if task_id in self._running:
            return None
        job = asyncio.create_task(work(), name=f"{self.kind}-{task_id}")
        self._running[task_id] = job
        job.add_done_callback(lambda done: self._settle(task_id, done))
        logger.debug("Dispatched %s work for task %s", self.kind, task_id)
        return job

    def _settle(self, task_id: str, job: asyncio.Task) -> None:
        self._running.pop(task_id, None)
        if job.cancelled():
            logger.warning("%s work for task %s was cancelled", self.kind, task_id)
            return
        exc = job.exception()
        if exc is not None:
            logger.error("%s work for task %s raised: %s", self.kind, task_id, exc)

    async def wait(self) -> None:
        if self._running:
            await asyncio.gather(*self._running.values(), return_exceptions=True)


class Daemon:
    """One agent process: researcher or orchestrator.

    Args:
        settings: Loaded configuration.
        api: Task Service client.
        llm: Chat model client.
        search: Web search client, if configured.
        notifier: Sends completion notices to the chat front-end.
        tracker: Chat-created tasks awaiting a notice.
        force_exit: Called with status 1 when draining times out.
    """

    def __init__(
        self,
        settings: Settings,
        api: TaskServiceClient,
        llm: LLMClient,
        search: WebSearchClient | None = None,
        notifier: Notifier | None = None,
        tracker: TaskTracker | None = None,
        force_exit: Callable[[int], Any] = os._exit,
    ) -> None:
        self.settings = settings
        self.api = api
        self.llm = llm
        self.search = search
        self.notifier = notifier
        self.tracker = tracker if tracker is not None else default_tracker
        self._force_exit = force_exit

        self.bot: BotInfo | None = None
        self.brain: AgentBrain | None = None
        self.in_flight: dict[str, InFlightRegistry] = {
            kind: InFlightRegistry(kind) for kind in ("task", "review", "orchestration")
        }
        self.shutting_down = False
        self._stop = asyncio.Event()
        self._timers: list[asyncio.Task] = []

    @property
    def bot_id(self) -> str:
        return self.bot.id if self.bot else ""

    @property
    def in_flight_count(self) -> int:
        return sum(len(r) for r in self.in_flight.values())

    def status(self) -> dict[str, Any]:
        return {
            "role": self.settings.agent_role,
            "agent_name": self.settings.agent_name,
            "bot_id": self.bot_id,
            "in_flight": {kind: r.ids() for kind, r in self.in_flight.items()},
            "tracked_chat_tasks": len(self.tracker),
            "shutting_down": self.shutting_down,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> BotInfo:
        """Verify credentials and build the role's brain."""
        self.bot = await self.api.verify_auth()
        self.brain = build_brain(self.settings, self.api, self.llm, search=self.search, bot_id=self.bot.id)
        logger.info(
            "Authenticated as %s (%s), role=%s", self.bot.name, self.bot.id, self.settings.agent_role
        )
        return self.bot

    def timers(self) -> list[tuple[str, Callable[[], Awaitable[None]], float]]:
        interval = self.settings.poll_interval_seconds
        timers: list[tuple[str, Callable[[], Awaitable[None]], float]] = [
            ("task-poll", self.poll_tasks, interval)
        ]
        if self.settings.is_orchestrator:
            timers.append(("review-poll", self.poll_reviews, interval))
            timers.append(("orchestration-poll", self.poll_orchestrations, interval))
            if self.notifier is not None:
                timers.append(("notification-poll", self.poll_notifications, interval))
        return timers

    def start_timers(self) -> None:
        for name, tick, interval in self.timers():
            self._timers.append(asyncio.create_task(self._every(name, tick, interval), name=name))
        logger.info("Started timers: %s", ", ".join(t.get_name() for t in self._timers))

    async def _every(self, name: str, tick: Callable[[], Awaitable[None]], interval: float) -> None:
        while not self._stop.is_set():
            try:
                await tick()
            except (TaskServiceError, httpx.HTTPError) as exc:
                logger.error("%s failed: %s", name, exc)
            except Exception as exc:
                logger.error("%s failed unexpectedly: %s", name, exc, exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                pass

    async def run(self) -> None:
        """Start, poll until shutdown is requested, then drain."""
        try:
            await self.start()
        except (TaskServiceError, httpx.HTTPError) as exc:
            logger.error("Authentication with the Task Service failed: %s", exc)
            raise SystemExit(1) from exc

        self.start_timers()
        await self._stop.wait()
        await self.shutdown()

    def request_shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()

    async def shutdown(self) -> bool:
        """Stop polling and wait for in-flight work.  Returns True if drained."""
        self.shutting_down = True
        self._stop.set()
        for timer in self._timers:
            timer.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        drained = await self.drain()
        if not drained:
            logger.error(
                "Shutdown timeout: %d task(s) still in flight, forcing exit", self.in_flight_count
            )
            self._force_exit(1)
        else:
            logger.info("All in-flight work finished, shutting down")
        return drained

    async def drain(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.shutdown_timeout_seconds
        while self.in_flight_count:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            logger.info("Waiting for %d in-flight task(s)", self.in_flight_count)
            await asyncio.sleep(min(self.settings.drain_check_interval_seconds, remaining))
        return True

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    async def _dependency_done(self, task: Task) -> bool:
        try:
            dependency = await self.api.get_task(task.depends_on_task_id or "")
        except TaskServiceError as exc:
            logger.warning("Could not check dependency of task %s: %s", task.id, exc)
            return False
        return dependency.is_finished

    async def poll_tasks(self) -> None:
        """Claim unstarted tasks assigned to this bot."""
        if self.shutting_down or self.brain is None:
            return
        registry = self.in_flight["task"]
        brain = self.brain
        tasks = await self.api.list_all_tasks(assigned_to_bot=True, completed=False)

        for task in tasks:
            if len(registry) >= self.settings.max_concurrent_tasks:
                logger.debug("Concurrency cap reached (%d), deferring the rest", len(registry))
                break
            if task.progress > 0 or task.id in registry:
                continue
            if task.depends_on_task_id and not await self._dependency_done(task):
                logger.debug("Task %s waits for dependency %s", task.id, task.depends_on_task_id)
                continue
            registry.dispatch(task.id, lambda t=task: brain.process_task(t))

    async def poll_reviews(self) -> None:
        """Review results the researcher put in REVIEW."""
        if self.shutting_down:
            return
        registry = self.in_flight["review"]
        tasks = await self.api.list_all_tasks(status=TaskStatus.REVIEW)
        for task in tasks:
            if task.assigned_to_bot_id != self.settings.researcher_bot_id or task.id in registry:
                continue
            if len(registry) >= self.settings.max_concurrent_tasks:
                break
            registry.dispatch(
                task.id,
                lambda t=task: review_task(
                    self.api,
                    self.llm,
                    t,
                    self.settings.researcher_bot_id,
                    self.settings.agent_name,
                    self.settings.max_description_length,
                ),
            )

    async def poll_orchestrations(self) -> None:
        """Roll subtask progress into decomposed parents."""
        if self.shutting_down:
            return
        registry = self.in_flight["orchestration"]
        tasks = await self.api.list_all_tasks(assigned_to_bot=True, status=TaskStatus.IN_PROGRESS)
        for task in tasks:
            if task.id in registry or task.id in self.in_flight["task"]:
                continue
            registry.dispatch(
                task.id,
                lambda t=task: aggregate_orchestration(self.api, t, self.settings.agent_name),
            )

    async def poll_notifications(self) -> None:
        """Announce finished chat-created tasks, then stop tracking them."""
        if self.notifier is None:
            return
        for entry in self.tracker.all():
            try:
                task = await self.api.get_task(entry.task_id)
                if not task.is_finished:
                    continue
                await self.notifier(entry.chat_id, task, pick_result_comment(task.comments))
            except Exception as exc:
                logger.error("Completion notice for task %s failed: %s", entry.task_id, exc)
                continue
            self.tracker.untrack(entry.task_id)
            logger.info("Announced completion of task %s to chat %s", entry.task_id, entry.chat_id)
