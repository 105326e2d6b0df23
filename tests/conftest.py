"""Shared fakes: an in-memory Task Service and a scripted LLM."""

from __future__ import annotations

import base64
import itertools
from typing import Any

import pytest

from infra.models import (
    Artifact,
    ArtifactContent,
    BotInfo,
    Comment,
    CommentAuthor,
    Pagination,
    Task,
    TaskDetail,
    TaskPage,
    TaskStatus,
)
from taskbots.agents.llm import ChatMessage, LLMResponse, ToolCall
from taskbots.core.config import Settings
from taskbots.tools.code_executor import ExecutionResult
from taskbots.tools.search import SearchResponse, SearchResult


class FakeTaskService:
    """Dict-backed stand-in for :class:`~infra.task_service.TaskServiceClient`."""

    def __init__(self, bot_id: str = "bot-self", bot_name: str = "Agent") -> None:
        self.bot = BotInfo(id=bot_id, name=bot_name)
        self.tasks: dict[str, Task] = {}
        self.comments: dict[str, list[Comment]] = {}
        self.artifacts: dict[str, list[ArtifactContent]] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self._ids = itertools.count(1)

    # ── seeding helpers ───────────────────────────────────────────────

    def add_task(self, **fields: Any) -> Task:
        fields.setdefault("id", f"t{next(self._ids)}")
        fields.setdefault("title", "Task")
        fields.setdefault("assigned_to_bot_id", self.bot.id)
        task = Task(**fields)
        self.tasks[task.id] = task
        self.comments.setdefault(task.id, [])
        self.artifacts.setdefault(task.id, [])
        return task

    def seed_comment(self, task_id: str, body: str, author_type: str = "bot", author_id: str = "") -> Comment:
        comment = Comment(
            id=f"c{next(self._ids)}",
            task_id=task_id,
            body=body,
            author=CommentAuthor(type=author_type, id=author_id or self.bot.id),
        )
        self.comments.setdefault(task_id, []).append(comment)
        return comment

    def seed_artifact(self, task_id: str, file_name: str, content: bytes) -> ArtifactContent:
        artifact = ArtifactContent(
            id=f"a{next(self._ids)}",
            task_id=task_id,
            file_name=file_name,
            mime_type="text/plain",
            size_bytes=len(content),
            content=base64.b64encode(content).decode("ascii"),
        )
        self.artifacts.setdefault(task_id, []).append(artifact)
        return artifact

    def bodies(self, task_id: str) -> list[str]:
        return [c.body for c in self.comments.get(task_id, [])]

    # ── client surface ────────────────────────────────────────────────

    async def verify_auth(self) -> BotInfo:
        return self.bot

    async def list_tasks(
        self,
        assigned_to_bot: bool | None = None,
        completed: bool | None = None,
        status: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> TaskPage:
        tasks = list(self.tasks.values())
        if assigned_to_bot:
            tasks = [t for t in tasks if t.assigned_to_bot_id == self.bot.id]
        if completed is not None:
            tasks = [t for t in tasks if t.completed == completed]
        if status:
            tasks = [t for t in tasks if t.status == status]
        if limit:
            tasks = tasks[:limit]
        return TaskPage(tasks=tasks, pagination=Pagination(limit=limit or 0))

    async def list_all_tasks(self, assigned_to_bot=None, completed=None, status=None, page_size=50) -> list[Task]:
        page = await self.list_tasks(assigned_to_bot=assigned_to_bot, completed=completed, status=status)
        return page.tasks

    async def get_task(self, task_id: str) -> TaskDetail:
        task = self.tasks[task_id]
        return TaskDetail(
            **task.model_dump(),
            comments=list(self.comments.get(task_id, [])),
            artifacts=[Artifact(**a.model_dump(exclude={"content"})) for a in self.artifacts.get(task_id, [])],
        )

    async def update_task(self, task_id: str, **fields: Any) -> Task:
        self.updates.append((task_id, fields))
        task = self.tasks[task_id].model_copy(update=fields)
        self.tasks[task_id] = task
        return task

    async def create_task(self, title, description=None, project_id=None, quadrant=None, assign_to_self=False) -> Task:
        return self.add_task(
            title=title,
            description=description,
            project_id=project_id,
            quadrant=quadrant,
            assigned_to_bot_id=self.bot.id if assign_to_self else None,
        )

    async def list_subtasks(self, task_id: str) -> list[Task]:
        return [t for t in self.tasks.values() if t.subtask_of_id == task_id]

    async def create_subtask(
        self, parent_id, title, description=None, assigned_to_bot_id=None, depends_on_task_id=None
    ) -> Task:
        return self.add_task(
            title=title,
            description=description,
            subtask_of_id=parent_id,
            assigned_to_bot_id=assigned_to_bot_id,
            depends_on_task_id=depends_on_task_id,
        )

    async def add_comment(self, task_id: str, body: str, metadata: dict | None = None) -> Comment:
        comment = Comment(
            id=f"c{next(self._ids)}",
            task_id=task_id,
            body=body,
            metadata=metadata,
            author=CommentAuthor(type="bot", id=self.bot.id, name=self.bot.name),
        )
        self.comments.setdefault(task_id, []).append(comment)
        return comment

    async def list_artifacts(self, task_id: str) -> list[Artifact]:
        return [Artifact(**a.model_dump(exclude={"content"})) for a in self.artifacts.get(task_id, [])]

    async def get_artifact(self, task_id: str, artifact_id: str) -> ArtifactContent:
        for artifact in self.artifacts.get(task_id, []):
            if artifact.id == artifact_id:
                return artifact
        from infra.task_service import TaskServiceError

        raise TaskServiceError("Artifact not found", status_code=404, code="NOT_FOUND")

    async def upload_artifact(self, task_id, file_name, mime_type, content_b64) -> Artifact:
        artifact = ArtifactContent(
            id=f"a{next(self._ids)}",
            task_id=task_id,
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=len(base64.b64decode(content_b64)),
            content=content_b64,
        )
        self.artifacts.setdefault(task_id, []).append(artifact)
        return Artifact(**artifact.model_dump(exclude={"content"}))

    async def aclose(self) -> None:
        pass


class StubLLM:
    """Replays scripted responses and records every request."""

    def __init__(self, *responses: LLMResponse | str) -> None:
        self.responses = [LLMResponse(content=r) if isinstance(r, str) else r for r in responses]
        self.calls: list[tuple[list[ChatMessage], list[dict] | None]] = []

    async def chat(self, messages, tools=None) -> LLMResponse:
        self.calls.append((list(messages), tools))
        if self.responses:
            return self.responses.pop(0)
        return LLMResponse(content="done")


class RecordingExecutor:
    """Code executor that records requests and returns canned output."""

    def __init__(self, stdout: str = "ok", stderr: str = "") -> None:
        self.calls: list[tuple[str, str, int]] = []
        self.stdout = stdout
        self.stderr = stderr

    async def execute(self, language, code, timeout_ms) -> ExecutionResult:
        self.calls.append((language, code, timeout_ms))
        return ExecutionResult(
            success=True, stdout=self.stdout, stderr=self.stderr, exit_code=0, duration_ms=5
        )


class FakeSearch:
    def __init__(self) -> None:
        self.queries: list[str] = []

    async def search(self, query: str, count: int = 5) -> SearchResponse:
        self.queries.append(query)
        return SearchResponse(query=query, results=[SearchResult(title="T", link="L", snippet="S")])


def tool_response(name: str, call_id: str = "call_1", **arguments: Any) -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "task_service_url": "http://tasks.test",
        "task_service_api_key": "key",
        "llm_provider": "minimax",
        "llm_api_key": "llm-key",
        "serper_api_key": "serper-key",
        "researcher_bot_id": "bot-researcher",
        "log_file": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def api() -> FakeTaskService:
    return FakeTaskService()


@pytest.fixture
def researcher_settings(tmp_path) -> Settings:
    return make_settings(agent_role="researcher", work_dir_root=str(tmp_path))


@pytest.fixture
def orchestrator_settings(tmp_path) -> Settings:
    return make_settings(agent_role="orchestrator", work_dir_root=str(tmp_path))
