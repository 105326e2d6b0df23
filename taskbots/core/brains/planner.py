"""Decomposition of a large task into ordered subtasks."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from infra.models import Task, TaskStatus
from infra.task_service import TaskServiceClient
from taskbots.agents.llm import ChatMessage, LLMClient
from taskbots.agents.models import load_system_prompt
from taskbots.core.logging import get_logger
from taskbots.core.parsing import extract_json_array

from ._helpers import PROGRESS_CLAIMED, tagged

logger = get_logger("core.brains.planner")

MAX_SUBTASKS = 5


class PlannedSubtask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    description: str = ""
    assign_to: Literal["self", "researcher"] = Field(default="self", alias="assignTo")


def parse_plan(text: str | None) -> list[PlannedSubtask]:
    """Parse the model's plan; invalid entries are dropped, at most five kept."""
    items = extract_json_array(text) or []
    plan: list[PlannedSubtask] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("assignTo"), str):
            item = {**item, "assignTo": item["assignTo"].strip().lower()}
        try:
            plan.append(PlannedSubtask.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping invalid plan entry %s: %s", item, exc)
    return plan[:MAX_SUBTASKS]


async def plan_subtasks(
    llm: LLMClient,
    task: Task,
    description: str,
    agent_name: str = "",
) -> list[PlannedSubtask]:
    response = await llm.chat(
        [
            ChatMessage.system(load_system_prompt("planner", agent_name)),
            ChatMessage.user(f"Task: {task.title}\n\nDescription:\n{description or '(no description)'}"),
        ]
    )
    return parse_plan(response.content)


async def decompose_task(
    api: TaskServiceClient,
    llm: LLMClient,
    task: Task,
    description: str,
    own_bot_id: str,
    researcher_bot_id: str,
    agent_name: str,
) -> list[Task]:
    """Create the planned subtasks as a dependency chain under ``task``.

    Returns the created subtasks; an empty list means nothing was created
    and the caller should handle the task itself.
    """
    plan = await plan_subtasks(llm, task, description, agent_name)
    if not plan:
        logger.warning("Empty or unparseable plan for task %s", task.id)
        return []

    # The parent leaves the claimable pool before the first subtask exists,
    # so a partially created chain is never planned a second time.
    await api.update_task(task.id, status=TaskStatus.IN_PROGRESS, progress=PROGRESS_CLAIMED)

    created: list[Task] = []
    previous_id: str | None = None
    for step in plan:
        assignee = researcher_bot_id if step.assign_to == "researcher" else own_bot_id
        subtask = await api.create_subtask(
            task.id,
            step.title,
            description=step.description,
            assigned_to_bot_id=assignee,
            depends_on_task_id=previous_id,
        )
        created.append(subtask)
        previous_id = subtask.id

    lines = [
        f"{i}. {sub.title} ({'researcher' if step.assign_to == 'researcher' else agent_name})"
        for i, (sub, step) in enumerate(zip(created, plan), start=1)
    ]
    await api.add_comment(
        task.id,
        tagged(agent_name, f"Decomposed into {len(created)} subtask(s):\n" + "\n".join(lines)),
    )
    logger.info("Task %s decomposed into %d subtask(s)", task.id, len(created))
    return created
