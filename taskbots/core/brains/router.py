"""Routing decision for incoming orchestrator tasks."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from infra.models import Task
from taskbots.agents.llm import ChatMessage, LLMClient
from taskbots.agents.models import load_system_prompt
from taskbots.core.logging import get_logger
from taskbots.core.parsing import extract_json_object

logger = get_logger("core.brains.router")


class Route(StrEnum):
    SELF = "self"
    DELEGATE = "delegate"
    DECOMPOSE = "decompose"


class RouteDecision(BaseModel):
    route: Route = Route.SELF
    reason: str = ""


def parse_route(text: str | None) -> RouteDecision | None:
    data = extract_json_object(text)
    if not data:
        return None
    try:
        route = Route(str(data.get("route", "")).strip().lower())
    except ValueError:
        return None
    return RouteDecision(route=route, reason=str(data.get("reason") or ""))


async def route_task(
    llm: LLMClient,
    task: Task,
    description: str,
    attachment_count: int = 0,
    agent_name: str = "",
) -> RouteDecision:
    """Ask the model who should handle ``task``.

    ``description`` must already be sanitized.  Tasks with attachments never
    go to the researcher, and subtasks are never decomposed again.
    """
    prompt = f"Task: {task.title}\n\nDescription:\n{description or '(no description)'}"
    if attachment_count:
        prompt += f"\n\nAttached files: {attachment_count}"
    if task.subtask_of_id:
        prompt += "\n\nThis task is already a subtask. Do not decompose it."

    response = await llm.chat(
        [
            ChatMessage.system(load_system_prompt("router", agent_name)),
            ChatMessage.user(prompt),
        ]
    )
    decision = parse_route(response.content)
    if decision is None:
        logger.warning("Unparseable routing reply for task %s, handling it directly", task.id)
        return RouteDecision(route=Route.SELF, reason="could not parse routing decision")

    if decision.route == Route.DECOMPOSE and task.subtask_of_id:
        decision = RouteDecision(route=Route.SELF, reason="subtasks are not decomposed further")
    elif decision.route == Route.DELEGATE and attachment_count:
        decision = RouteDecision(
            route=Route.SELF, reason="task has attached files the researcher cannot read"
        )

    logger.info("Task %s routed to %s: %s", task.id, decision.route, decision.reason)
    return decision
