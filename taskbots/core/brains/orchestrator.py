"""Orchestrator brain: routes each task, then delegates, decomposes or runs it.

When it runs a task itself it uses the privileged executor in a per-task
working directory, can move attachments in and out of that directory and,
when configured, push code to a git repository.
"""

from __future__ import annotations

from infra.models import Artifact, Task, TaskDetail, TaskStatus
from taskbots.core.logging import get_logger
from taskbots.core.state import TaskRun
from taskbots.tools.code_executor import CodeExecutor, PrivilegedExecutor
from taskbots.tools.definitions import ToolBox
from taskbots.tools.git import GitWorkspace

from ._helpers import PROGRESS_CLAIMED, tagged
from .agent import AgentBrain
from .planner import decompose_task
from .router import Route, route_task

logger = get_logger("core.brains.orchestrator")


def _format_attachments(label: str, artifacts: list[Artifact]) -> list[str]:
    return [
        f"- {a.file_name} (artifact ID: {a.id}, task ID: {a.task_id or label}, "
        f"{a.mime_type}, {a.size_bytes} bytes)"
        for a in artifacts
    ]


class OrchestratorBrain(AgentBrain):
    prompt_name = "orchestrator"
    final_status = TaskStatus.DONE

    async def handle(self, task: Task, run: TaskRun) -> None:
        guard = self.guard(task)
        detail = await self.api.get_task(task.id)

        decision = await route_task(
            self.llm, task, guard.sanitized_text, len(detail.artifacts), self.name
        )
        run.route = decision.route

        if decision.route == Route.DELEGATE:
            await self.delegate(task, decision.reason)
            return

        if decision.route == Route.DECOMPOSE:
            await self.audit(task, guard)
            subtasks = await decompose_task(
                self.api,
                self.llm,
                task,
                guard.sanitized_text,
                own_bot_id=self.bot_id,
                researcher_bot_id=self.settings.researcher_bot_id,
                agent_name=self.name,
            )
            if subtasks:
                run.record_progress(PROGRESS_CLAIMED)
                return
            logger.info("Task %s: no usable plan, handling it directly", task.id)
            run.route = Route.SELF

        await self.claim(task, run)
        await self.audit(task, guard)
        await self.solve(task, run, guard)

    async def delegate(self, task: Task, reason: str) -> None:
        await self.api.add_comment(
            task.id, tagged(self.name, f"Delegating to the research agent: {reason}")
        )
        await self.api.update_task(
            task.id,
            assigned_to_bot_id=self.settings.researcher_bot_id,
            progress=0,
            status=TaskStatus.TODO,
        )
        logger.info("Task %s delegated to researcher %s", task.id, self.settings.researcher_bot_id)

    async def extra_context(self, task: Task, detail: TaskDetail) -> str:
        context = await super().extra_context(task, detail)

        lines = _format_attachments(task.id, detail.artifacts)
        if task.subtask_of_id:
            lines += _format_attachments(
                task.subtask_of_id, await self.api.list_artifacts(task.subtask_of_id)
            )
        if task.depends_on_task_id:
            lines += _format_attachments(
                task.depends_on_task_id, await self.api.list_artifacts(task.depends_on_task_id)
            )
        if lines:
            context += (
                "\n\nAttached files (use download_artifact with the artifact ID and task ID):\n"
                + "\n".join(lines)
            )
        return context

    def build_executor(self, task: Task) -> CodeExecutor:
        return PrivilegedExecutor(self.work_dir_for(task), self.settings.max_output_bytes)

    def build_toolbox(self, task: Task) -> ToolBox:
        work_dir = self.work_dir_for(task)
        related = {t for t in (task.subtask_of_id, task.depends_on_task_id) if t}
        git = None
        if self.settings.git_enabled:
            git = GitWorkspace(
                self.settings.git_repo_url,
                self.settings.github_token,
                task.id,
                work_dir,
                author_name=self.settings.git_author_name,
                author_email=self.settings.git_author_email,
            )
        return ToolBox(
            self.api,
            task.id,
            self.build_executor(task),
            self.settings.code_exec_timeout_ms,
            search=self.search,
            work_dir=work_dir,
            extra_artifact_tasks=related,
            git=git,
        )

    def cleanup(self, task: Task) -> None:
        PrivilegedExecutor(self.work_dir_for(task)).cleanup()
