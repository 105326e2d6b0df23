"""Base agent brain: claim a task, converse with the model, post the result."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from infra.models import Comment, Task, TaskDetail, TaskStatus
from infra.task_service import TaskServiceClient
from taskbots.agents.llm import ChatMessage, LLMClient
from taskbots.agents.models import load_system_prompt
from taskbots.core.config import Settings
from taskbots.core.logging import get_logger
from taskbots.core.prompt_guard import GuardResult, analyze_and_sanitize
from taskbots.core.state import TaskPhase, TaskRun
from taskbots.tools.artifacts import upload_text_artifact
from taskbots.tools.code_executor import CodeExecutor, SandboxedExecutor
from taskbots.tools.definitions import ToolBox
from taskbots.tools.search import WebSearchClient

from ._helpers import (
    PROGRESS_CLAIMED,
    PROGRESS_DONE,
    SECURITY_NOTE,
    execution_output,
    is_result_comment,
    is_rework_comment,
    result_header,
    round_progress,
    run_tool_loop,
    tagged,
)

logger = get_logger("core.brains.agent")

# Execution output longer than this is attached to the task as a file
OUTPUT_ARTIFACT_THRESHOLD = 200


class AgentBrain:
    """Template for processing one task end to end.

    Subclasses choose the executor, the tool set and the final status.
    ``process_task`` never raises: failures are logged, commented on the
    task and reported through the returned :class:`TaskRun`.
    """

    prompt_name = "researcher"
    final_status = TaskStatus.REVIEW

    def __init__(
        self,
        settings: Settings,
        api: TaskServiceClient,
        llm: LLMClient,
        search: WebSearchClient | None = None,
        bot_id: str = "",
    ) -> None:
        self.settings = settings
        self.api = api
        self.llm = llm
        self.search = search
        self.bot_id = bot_id

    @property
    def name(self) -> str:
        return self.settings.agent_name

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_task(self, task: Task) -> TaskRun:
        run = TaskRun(task_id=task.id)
        logger.info("Processing task %s (%s)", task.id, task.title)
        try:
            await self.handle(task, run)
        except Exception as exc:
            await self._fail(task, run, exc)
        finally:
            self.cleanup(task)
        return run

    async def handle(self, task: Task, run: TaskRun) -> None:
        guard = self.guard(task)
        await self.claim(task, run)
        await self.audit(task, guard)
        await self.solve(task, run, guard)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def guard(self, task: Task) -> GuardResult:
        guard = analyze_and_sanitize(task.description or "", self.settings.max_description_length)
        if guard.flags:
            logger.warning(
                "Task %s description flagged: %s (risk=%.2f)",
                task.id, ", ".join(guard.flags), guard.risk_score,
            )
        return guard

    async def claim(self, task: Task, run: TaskRun) -> None:
        await self.api.update_task(task.id, progress=PROGRESS_CLAIMED, status=TaskStatus.IN_PROGRESS)
        run.record_progress(PROGRESS_CLAIMED)
        await self.api.add_comment(task.id, tagged(self.name, f'Picking up task: "{task.title}"'))
        run.advance(TaskPhase.CLAIMED)

    async def audit(self, task: Task, guard: GuardResult) -> None:
        if not guard.is_high_risk:
            return
        await self.api.add_comment(
            task.id,
            tagged(
                self.name,
                "Warning: task description contains suspicious patterns "
                f"({', '.join(guard.flags)}). Proceeding with caution.",
            ),
            metadata={"injectionFlags": guard.flags, "riskScore": guard.risk_score},
        )

    async def solve(self, task: Task, run: TaskRun, guard: GuardResult) -> None:
        run.advance(TaskPhase.SANITIZED)
        detail = await self.api.get_task(task.id)
        user_message = self.build_user_message(task, guard, detail.comments)
        user_message += await self.extra_context(task, detail)

        messages = [
            ChatMessage.system(load_system_prompt(self.prompt_name, self.name)),
            ChatMessage.user(user_message),
        ]
        toolbox = self.build_toolbox(task)

        async def _on_round(rounds_done: int) -> None:
            run.advance(TaskPhase.TOOL_EXECUTING)
            progress = round_progress(rounds_done, self.settings.max_tool_rounds)
            if progress > run.progress and run.record_progress(progress):
                await self.api.update_task(task.id, progress=progress)

        run.advance(TaskPhase.CONVERSING)
        outcome = await run_tool_loop(
            self.llm, messages, toolbox, self.settings.max_tool_rounds, on_round=_on_round
        )
        run.rounds = outcome.rounds
        run.max_rounds_reached = outcome.max_rounds_reached
        logger.info(
            "Task %s answered after %d round(s)%s (tokens=%d)",
            task.id, outcome.rounds,
            ", max rounds reached" if outcome.max_rounds_reached else "",
            outcome.usage.total_tokens,
        )

        await self.post_result(task, outcome.text, outcome.max_rounds_reached)
        run.advance(TaskPhase.FINALIZED)

        output = execution_output(outcome.last_execution)
        if len(output) > OUTPUT_ARTIFACT_THRESHOLD:
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
            uploaded = await upload_text_artifact(
                self.api, task.id, f"execution-output-{stamp}.txt", output
            )
            if uploaded.success:
                run.advance(TaskPhase.ARTIFACT_UPLOADED)
            else:
                logger.warning("Could not attach execution output to task %s: %s", task.id, uploaded.error)

        await self.finish(task, run)

    async def post_result(self, task: Task, text: str, max_rounds_reached: bool) -> None:
        header = result_header(self.name, max_rounds_reached)
        await self.api.add_comment(task.id, f"{header}\n\n{text}")
        if task.subtask_of_id:
            # Dependent subtasks read earlier results from the parent's thread
            await self.api.add_comment(
                task.subtask_of_id, f'{header} for subtask "{task.title}"\n\n{text}'
            )

    async def finish(self, task: Task, run: TaskRun) -> None:
        await self.api.update_task(
            task.id, progress=PROGRESS_DONE, completed=True, status=self.final_status
        )
        run.record_progress(PROGRESS_DONE)
        await self.api.add_comment(task.id, tagged(self.name, "Task completed."))
        run.advance(TaskPhase.COMPLETED)
        logger.info("Task %s completed (status=%s)", task.id, self.final_status)

    async def _fail(self, task: Task, run: TaskRun, exc: Exception) -> None:
        run.advance(TaskPhase.FAILED)
        run.error = str(exc)
        logger.error("Task %s failed: %s", task.id, exc, exc_info=True)
        if run.progress == 0:
            # Never claimed: take it out of the polling pool so the failure
            # is reported once instead of on every tick.
            try:
                await self.api.update_task(
                    task.id, status=TaskStatus.IN_PROGRESS, progress=PROGRESS_CLAIMED
                )
                run.record_progress(PROGRESS_CLAIMED)
            except Exception as update_exc:
                logger.error("Could not park failed task %s: %s", task.id, update_exc)
        try:
            await self.api.add_comment(
                task.id,
                tagged(
                    self.name,
                    f"Error processing task: {exc}\n\n"
                    "The task has been left incomplete. Please review and retry or reassign.",
                ),
            )
        except Exception as comment_exc:
            logger.error("Could not post error comment on task %s: %s", task.id, comment_exc)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def build_user_message(self, task: Task, guard: GuardResult, comments: list[Comment]) -> str:
        message = f"Task: {task.title}\n\nDescription:\n{guard.sanitized_text or '(no description)'}"
        if guard.flags:
            message += SECURITY_NOTE

        feedback = [c.body for c in comments if is_rework_comment(c)]
        if feedback:
            message += "\n\nPrevious review feedback (address all of it this time):\n" + "\n".join(
                f"- {body}" for body in feedback
            )
            previous = [c.body for c in comments if is_result_comment(c)]
            if previous:
                message += f"\n\nYour previous result:\n{previous[-1]}"
        return message

    async def extra_context(self, task: Task, detail: TaskDetail) -> str:
        """Earlier subtask results posted on the parent's thread."""
        if not task.subtask_of_id:
            return ""
        parent = await self.api.get_task(task.subtask_of_id)
        results = [c.body for c in parent.comments if is_result_comment(c)]
        if not results:
            return ""
        return (
            f'\n\nThis is a subtask of "{parent.title}". '
            "Results from earlier steps:\n\n" + "\n\n---\n\n".join(results)
        )

    def build_executor(self, task: Task) -> CodeExecutor:
        return SandboxedExecutor(
            max_output_bytes=self.settings.max_output_bytes,
            isolate_network=self.settings.sandbox_isolate_network,
        )

    def build_toolbox(self, task: Task) -> ToolBox:
        return ToolBox(
            self.api,
            task.id,
            self.build_executor(task),
            self.settings.code_exec_timeout_ms,
            search=self.search,
        )

    def cleanup(self, task: Task) -> None:
        """Release per-task resources."""

    def work_dir_for(self, task: Task) -> Path:
        return Path(self.settings.work_dir_root) / f"{self.settings.agent_role}-task-{task.id}"
