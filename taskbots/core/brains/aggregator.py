"""Roll subtask progress up into decomposed parent tasks."""

from __future__ import annotations

from pydantic import BaseModel

from infra.models import Task, TaskStatus
from infra.task_service import TaskServiceClient
from taskbots.core.logging import get_logger

from ._helpers import PROGRESS_CLAIMED, PROGRESS_DONE, tagged

logger = get_logger("core.brains.aggregator")


class AggregateOutcome(BaseModel):
    subtask_count: int
    progress: int
    all_done: bool
    updated: bool


def aggregate_progress(subtasks: list[Task]) -> int:
    """Parent progress: floor of the mean subtask progress, at least 10."""
    if not subtasks:
        return PROGRESS_CLAIMED
    mean = sum(s.progress for s in subtasks) // len(subtasks)
    return max(PROGRESS_CLAIMED, mean)


async def aggregate_orchestration(
    api: TaskServiceClient,
    task: Task,
    agent_name: str,
) -> AggregateOutcome | None:
    """Update ``task`` from its subtasks.  Returns None when it has none."""
    subtasks = await api.list_subtasks(task.id)
    if not subtasks:
        return None

    if all(s.is_finished for s in subtasks):
        await api.update_task(task.id, status=TaskStatus.DONE, completed=True, progress=PROGRESS_DONE)
        summary = "\n".join(f"- {s.title} ({s.status})" for s in subtasks)
        await api.add_comment(
            task.id, tagged(agent_name, f"All {len(subtasks)} subtask(s) completed.\n\n{summary}")
        )
        logger.info("Task %s completed: all %d subtask(s) done", task.id, len(subtasks))
        return AggregateOutcome(
            subtask_count=len(subtasks), progress=PROGRESS_DONE, all_done=True, updated=True
        )

    progress = aggregate_progress(subtasks)
    updated = progress != task.progress
    if updated:
        await api.update_task(task.id, progress=progress)
        logger.debug("Task %s progress %d -> %d", task.id, task.progress, progress)
    return AggregateOutcome(
        subtask_count=len(subtasks), progress=progress, all_done=False, updated=updated
    )
