"""Task Service client.

Implements the bot-facing REST API (``/api/v1/bot``) over ``httpx``.  Every
call goes through :meth:`TaskServiceClient.request`, which owns the retry
policy:

* ``429``  → wait until the advertised rate-limit reset (+1 s) and repeat the
  same call.  Rate-limit waits do not consume the retry budget.
* ``5xx`` or network error → exponential backoff (2, 4 s) while
  ``attempt < max_retries``.
* Exhausted → the server's JSON error envelope is returned when there is one,
  otherwise :class:`TaskServiceError` is raised.

The typed helpers (``get_task``, ``update_task`` …) unwrap the envelope and
raise :class:`TaskServiceError` on ``success=false``.

Usage::

    from infra.factory import get_task_service_client

    async with get_task_service_client() as api:
        me = await api.verify_auth()
        page = await api.list_tasks(assigned_to_bot=True, completed=False)
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic.alias_generators import to_camel

from infra.models import (
    ApiResponse,
    Artifact,
    ArtifactContent,
    BotInfo,
    Comment,
    Task,
    TaskDetail,
    TaskPage,
)

from taskbots.core.logging import get_logger

logger = get_logger("infra.task_service")

API_PREFIX = "/api/v1/bot"

# Upper bound on back-to-back 429 waits for a single call.
MAX_RATE_LIMIT_WAITS = 10
DEFAULT_RATE_LIMIT_WAIT = 5.0
RATE_LIMIT_BUFFER = 1.0


class TaskServiceError(Exception):
    """Raised for a failed Task Service call (error envelope or transport)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def __repr__(self) -> str:  # pragma: no cover
        return f"TaskServiceError({self.args[0]!r}, status_code={self.status_code}, code={self.code!r})"


class TaskServiceClient:
    """Async client for the Task Service bot API.

    Args:
        base_url: Service origin, e.g. ``https://tasks.example.com``.
        api_key: Bot API key (sent as a bearer token).
        timeout: Per-request timeout in seconds.
        max_retries: Attempts for 5xx / network failures.
        sleep: Awaitable sleep, injectable for tests.
        clock: Wall clock in epoch seconds, injectable for tests.
        transport: Optional ``httpx`` transport (tests).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._sleep = sleep
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        self.rate_limit_remaining: int = 60
        self.rate_limit_reset: int = 0

    async def __aenter__(self) -> "TaskServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Core request with retry policy
    # ------------------------------------------------------------------

    def _track_rate_limit(self, response: httpx.Response) -> None:
        remaining = response.headers.get("x-ratelimit-remaining")
        reset = response.headers.get("x-ratelimit-reset")
        try:
            if remaining is not None:
                self.rate_limit_remaining = int(remaining)
            if reset is not None:
                self.rate_limit_reset = int(math.ceil(float(reset)))
        except ValueError:
            logger.debug("Ignoring malformed rate-limit headers: %s / %s", remaining, reset)

    def _rate_limit_wait(self) -> float:
        if self.rate_limit_reset > 0:
            return max(0.0, self.rate_limit_reset - self._clock()) + RATE_LIMIT_BUFFER
        return DEFAULT_RATE_LIMIT_WAIT

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """Perform one API call, applying the retry policy. Returns the envelope."""
        url = f"{API_PREFIX}{path}"
        attempt = 1
        rate_limit_waits = 0

        while True:
            try:
                response = await self._client.request(method, url, json=json, params=params)
            except httpx.RequestError as exc:
                if attempt < self._max_retries:
                    delay = 2 ** attempt
                    logger.warning(
                        "Network error, retrying %s %s in %ds (attempt %d): %s",
                        method, url, delay, attempt, exc,
                    )
                    await self._sleep(delay)
                    attempt += 1
                    continue
                raise TaskServiceError(f"{method} {url} network error: {exc}") from exc

            self._track_rate_limit(response)

            if response.status_code == 429 and rate_limit_waits < MAX_RATE_LIMIT_WAITS:
                wait = self._rate_limit_wait()
                rate_limit_waits += 1
                logger.warning("Rate limited on %s %s, waiting %.1fs", method, url, wait)
                await self._sleep(wait)
                continue

            if response.status_code >= 500 and attempt < self._max_retries:
                delay = 2 ** attempt
                logger.warning(
                    "Server error %d, retrying %s %s in %ds (attempt %d)",
                    response.status_code, method, url, delay, attempt,
                )
                await self._sleep(delay)
                attempt += 1
                continue

            body = self._json_body(response)
            if response.is_success:
                if not isinstance(body, dict):
                    raise TaskServiceError(
                        f"{method} {url} returned a non-JSON body",
                        status_code=response.status_code,
                    )
                return ApiResponse.model_validate(body)

            if isinstance(body, dict):
                envelope = ApiResponse.model_validate(body)
                envelope.success = False
                return envelope

            raise TaskServiceError(
                f"{method} {url} failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

    @staticmethod
    def _unwrap(envelope: ApiResponse, what: str) -> Any:
        if not envelope.success:
            code = envelope.error.code if envelope.error else None
            raise TaskServiceError(f"{what} failed: {envelope.error_message}", code=code)
        return envelope.data

    # ------------------------------------------------------------------
    # Bot
    # ------------------------------------------------------------------

    async def verify_auth(self) -> BotInfo:
        """Return the authenticated bot's identity (``GET /me``)."""
        data = self._unwrap(await self.request("GET", "/me"), "verify_auth")
        return BotInfo.model_validate(data)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def list_tasks(
        self,
        assigned_to_bot: bool | None = None,
        completed: bool | None = None,
        status: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> TaskPage:
        params: dict[str, Any] = {}
        if assigned_to_bot is not None:
            params["assignedToBot"] = str(assigned_to_bot).lower()
        if completed is not None:
            params["completed"] = str(completed).lower()
        if status:
            params["status"] = str(status)
        if limit is not None:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor
        data = self._unwrap(await self.request("GET", "/tasks", params=params), "list_tasks")
        return TaskPage.model_validate(data or {})

    async def list_all_tasks(
        self,
        assigned_to_bot: bool | None = None,
        completed: bool | None = None,
        status: str | None = None,
        page_size: int = 50,
    ) -> list[Task]:
        """Follow cursor pagination and return every matching task."""
        tasks: list[Task] = []
        cursor: str | None = None
        while True:
            page = await self.list_tasks(
                assigned_to_bot=assigned_to_bot,
                completed=completed,
                status=status,
                limit=page_size,
                cursor=cursor,
            )
            tasks.extend(page.tasks)
            if not page.pagination.has_more or not page.pagination.next_cursor:
                return tasks
            cursor = page.pagination.next_cursor

    async def get_task(self, task_id: str) -> TaskDetail:
        data = self._unwrap(await self.request("GET", f"/tasks/{task_id}"), "get_task")
        return TaskDetail.model_validate(data)

    async def update_task(self, task_id: str, **fields: Any) -> Task:
        """PATCH a task.  Keyword names are snake_case (``assigned_to_bot_id=``)."""
        payload = {to_camel(key): value for key, value in fields.items()}
        data = self._unwrap(
            await self.request("PATCH", f"/tasks/{task_id}", json=payload), "update_task"
        )
        return Task.model_validate(data)

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        project_id: str | None = None,
        quadrant: str | None = None,
        assign_to_self: bool = False,
    ) -> Task:
        payload: dict[str, Any] = {"title": title, "assignToSelf": assign_to_self}
        if description:
            payload["description"] = description
        if project_id:
            payload["projectId"] = project_id
        if quadrant:
            payload["quadrant"] = quadrant
        data = self._unwrap(await self.request("POST", "/tasks", json=payload), "create_task")
        return Task.model_validate(data)

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    async def list_subtasks(self, task_id: str) -> list[Task]:
        data = self._unwrap(
            await self.request("GET", f"/tasks/{task_id}/subtasks"), "list_subtasks"
        )
        return [Task.model_validate(item) for item in (data or {}).get("subtasks", [])]

    async def create_subtask(
        self,
        parent_id: str,
        title: str,
        description: str | None = None,
        assigned_to_bot_id: str | None = None,
        depends_on_task_id: str | None = None,
    ) -> Task:
        payload: dict[str, Any] = {"title": title}
        if description:
            payload["description"] = description
        if assigned_to_bot_id:
            payload["assignedToBotId"] = assigned_to_bot_id
        if depends_on_task_id:
            payload["dependsOnTaskId"] = depends_on_task_id
        data = self._unwrap(
            await self.request("POST", f"/tasks/{parent_id}/subtasks", json=payload),
            "create_subtask",
        )
        return Task.model_validate(data)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def add_comment(
        self,
        task_id: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> Comment:
        payload: dict[str, Any] = {"body": body}
        if metadata:
            payload["metadata"] = metadata
        data = self._unwrap(
            await self.request("POST", f"/tasks/{task_id}/comments", json=payload), "add_comment"
        )
        return Comment.model_validate(data)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def list_artifacts(self, task_id: str) -> list[Artifact]:
        data = self._unwrap(
            await self.request("GET", f"/tasks/{task_id}/artifacts"), "list_artifacts"
        )
        return [Artifact.model_validate(item) for item in (data or {}).get("artifacts", [])]

    async def get_artifact(self, task_id: str, artifact_id: str) -> ArtifactContent:
        data = self._unwrap(
            await self.request("GET", f"/tasks/{task_id}/artifacts/{artifact_id}"), "get_artifact"
        )
        return ArtifactContent.model_validate(data)

    async def upload_artifact(
        self,
        task_id: str,
        file_name: str,
        mime_type: str,
        content_b64: str,
    ) -> Artifact:
        payload = {"fileName": file_name, "mimeType": mime_type, "content": content_b64}
        data = self._unwrap(
            await self.request("POST", f"/tasks/{task_id}/artifacts", json=payload),
            "upload_artifact",
        )
        return Artifact.model_validate(data)
