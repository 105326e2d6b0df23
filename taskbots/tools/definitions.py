"""Per-task tool set offered to the model.

Each tool is a LangChain :class:`StructuredTool` with a pydantic argument
schema.  The schemas are exported in OpenAI function format for the chat
request, and tool calls coming back are dispatched by name.  Every outcome,
including unknown tools and invalid arguments, becomes tool-result text.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Literal

from langchain_core.tools import StructuredTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, Field, ValidationError

from infra.task_service import TaskServiceClient
from taskbots.agents.llm import ToolCall
from taskbots.core.logging import get_logger
from taskbots.tools.artifacts import (
    ArtifactError,
    download_artifact,
    resolve_in_work_dir,
    upload_artifact,
)
from taskbots.tools.code_executor import CodeExecutor, ExecutionResult
from taskbots.tools.git import GitError, GitWorkspace
from taskbots.tools.search import SearchError, WebSearchClient

logger = get_logger("tools.definitions")


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------

class ExecuteCodeArgs(BaseModel):
    language: Literal["python", "nodejs"] = Field(description="Runtime to use.")
    code: str = Field(description="Complete program source. Print results to stdout.")


class WebSearchArgs(BaseModel):
    query: str = Field(description="Search query.")
    count: int = Field(default=5, description="Number of results to return (1-10).")


class DownloadArtifactArgs(BaseModel):
    artifact_id: str = Field(description="ID of the attached file.")
    task_id: str | None = Field(
        default=None,
        description="Task the file is attached to. Omit for the current task.",
    )


class UploadArtifactArgs(BaseModel):
    file_path: str = Field(description="Path of the file, relative to the working directory.")
    file_name: str | None = Field(default=None, description="Name shown to the user.")
    mime_type: str | None = Field(default=None, description="MIME type; guessed when omitted.")


class GitPushCodeArgs(BaseModel):
    action: Literal["setup_repo", "write_file", "commit_and_push", "status"] = Field(
        description="setup_repo first, then write_file as needed, then commit_and_push."
    )
    path: str | None = Field(default=None, description="Repository-relative path for write_file.")
    content: str | None = Field(default=None, description="File content for write_file.")
    message: str | None = Field(default=None, description="Commit message for commit_and_push.")


# ---------------------------------------------------------------------------
# Tool box
# ---------------------------------------------------------------------------

class ToolBox:
    """The tools available while processing one task.

    Args:
        api: Task Service client (artifact tools).
        task_id: Task being processed.
        executor: Code executor for ``execute_code``.
        timeout_ms: Per-execution timeout.
        search: Web search client; ``web_search`` is offered when set.
        work_dir: Working directory; artifact tools are offered when set.
        extra_artifact_tasks: Other task ids whose files may be downloaded
            (parent, dependency).
        git: Git workspace; ``git_push_code`` is offered when set.
    """

    def __init__(
        self,
        api: TaskServiceClient,
        task_id: str,
        executor: CodeExecutor,
        timeout_ms: int,
        search: WebSearchClient | None = None,
        work_dir: str | Path | None = None,
        extra_artifact_tasks: set[str] | None = None,
        git: GitWorkspace | None = None,
    ) -> None:
        self.api = api
        self.task_id = task_id
        self.executor = executor
        self.timeout_ms = timeout_ms
        self.search = search
        self.work_dir = Path(work_dir) if work_dir else None
        self.artifact_tasks = {task_id} | (extra_artifact_tasks or set())
        self.git = git
        self.last_execution: ExecutionResult | None = None
        self._tools: dict[str, StructuredTool] = {t.name: t for t in self._build()}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [convert_to_openai_tool(t) for t in self._tools.values()]

    async def dispatch(self, call: ToolCall) -> str:
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", call.name)
            return f'Error: Unknown tool "{call.name}". Available tools: {", ".join(self.names)}.'
        logger.info("Tool call %s (task=%s)", call.name, self.task_id)
        try:
            return str(await tool.ainvoke(call.arguments))
        except ValidationError as exc:
            return f"Error: invalid arguments for {call.name}: {exc.errors(include_url=False)}"

    # ── Tool implementations ──────────────────────────────────────────

    async def _execute_code(self, language: str, code: str) -> str:
        result = await self.executor.execute(language, code, self.timeout_ms)  # type: ignore[arg-type]
        self.last_execution = result
        return result.as_tool_result(self.timeout_ms)

    async def _web_search(self, query: str, count: int = 5) -> str:
        if self.search is None:
            return "Error: web search is not configured."
        try:
            response = await self.search.search(query, count)
        except SearchError as exc:
            return f"Web search failed: {exc}"
        return response.format()

    async def _download_artifact(self, artifact_id: str, task_id: str | None = None) -> str:
        if self.work_dir is None:
            return "Error: no working directory for this task."
        source = task_id or self.task_id
        if source not in self.artifact_tasks:
            return f"Failed to download artifact: task {source} is not related to this task."
        result = await download_artifact(self.api, source, artifact_id, self.work_dir)
        if not result.success:
            return f"Failed to download artifact: {result.error}"
        return (
            f"File downloaded successfully: {result.file_name}\n"
            f"Saved to: {result.file_path}\n"
            "You can now process this file using execute_code."
        )

    async def _upload_artifact(
        self,
        file_path: str,
        file_name: str | None = None,
        mime_type: str | None = None,
    ) -> str:
        if self.work_dir is None:
            return "Error: no working directory for this task."
        try:
            path = resolve_in_work_dir(self.work_dir, file_path)
        except ArtifactError as exc:
            return f"Failed to upload artifact: {exc}"
        result = await upload_artifact(self.api, self.task_id, path, file_name, mime_type)
        if not result.success:
            return f"Failed to upload artifact: {result.error}"
        return (
            f"File uploaded successfully: {result.file_name} (artifact ID: {result.artifact_id})\n"
            "The user can now download this file from the task."
        )

    async def _git_push_code(
        self,
        action: str,
        path: str | None = None,
        content: str | None = None,
        message: str | None = None,
    ) -> str:
        if self.git is None:
            return "Error: no git repository is configured."
        git = self.git
        try:
            if action == "setup_repo":
                return await asyncio.to_thread(git.setup_repo)
            if action == "write_file":
                if not path or content is None:
                    return "Error: write_file needs both path and content."
                return await asyncio.to_thread(git.write_file, path, content)
            if action == "commit_and_push":
                if not message:
                    return "Error: commit_and_push needs a commit message."
                return await asyncio.to_thread(git.commit_and_push, message)
            return await asyncio.to_thread(git.status)
        except GitError as exc:
            return f"Git error: {exc}"

    def _build(self) -> list[StructuredTool]:
        tools = [
            StructuredTool.from_function(
                coroutine=self._execute_code,
                name="execute_code",
                description=(
                    "Execute a Python or Node.js program and return its exit code, "
                    "stdout and stderr."
                ),
                args_schema=ExecuteCodeArgs,
            )
        ]
        if self.search is not None:
            tools.append(
                StructuredTool.from_function(
                    coroutine=self._web_search,
                    name="web_search",
                    description="Search the web for current information. Returns titles, links and snippets.",
                    args_schema=WebSearchArgs,
                )
            )
        if self.work_dir is not None:
            tools.append(
                StructuredTool.from_function(
                    coroutine=self._download_artifact,
                    name="download_artifact",
                    description="Download a file attached to the task into the working directory.",
                    args_schema=DownloadArtifactArgs,
                )
            )
            tools.append(
                StructuredTool.from_function(
                    coroutine=self._upload_artifact,
                    name="upload_artifact",
                    description="Attach a file from the working directory to the task.",
                    args_schema=UploadArtifactArgs,
                )
            )
        if self.git is not None:
            tools.append(
                StructuredTool.from_function(
                    coroutine=self._git_push_code,
                    name="git_push_code",
                    description=(
                        "Work with the configured git repository: setup_repo, write_file, "
                        "commit_and_push (never force-pushes), status."
                    ),
                    args_schema=GitPushCodeArgs,
                )
            )
        return tools
