"""Orchestrator review of researcher results: approve or send back for rework."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from infra.models import Task, TaskStatus
from infra.task_service import TaskServiceClient
from taskbots.agents.llm import ChatMessage, LLMClient
from taskbots.agents.models import load_system_prompt
from taskbots.core.logging import get_logger
from taskbots.core.parsing import extract_json_object
from taskbots.core.prompt_guard import analyze_and_sanitize

from ._helpers import (
    PROGRESS_DONE,
    REWORK_MARKER,
    count_reworks,
    latest_result_comment,
    tagged,
)

logger = get_logger("core.brains.reviewer")

MAX_REWORKS = 2


class ReviewVerdict(StrEnum):
    APPROVED = "approved"
    REWORK = "rework"
    SKIPPED = "skipped"
    ERROR = "error"


class ReviewOutcome(BaseModel):
    verdict: ReviewVerdict
    feedback: str = ""
    rework_count: int = 0
    forced: bool = False


def _rework_note(prior_reworks: int) -> str:
    if prior_reworks == 0:
        return "This is the first review of this result."
    note = f"This task has already been sent back for rework {prior_reworks} time(s)."
    if prior_reworks >= MAX_REWORKS:
        return note + " The rework limit has been reached, so this is the final review."
    return note + f" At most {MAX_REWORKS} reworks are allowed."


def parse_verdict(text: str | None) -> tuple[str, str] | None:
    data = extract_json_object(text)
    if not data:
        return None
    verdict = str(data.get("verdict", "")).strip().lower()
    if verdict not in ("approve", "rework"):
        return None
    return verdict, str(data.get("feedback") or "").strip()


async def review_task(
    api: TaskServiceClient,
    llm: LLMClient,
    task: Task,
    researcher_bot_id: str,
    agent_name: str,
    max_description_length: int = 5000,
) -> ReviewOutcome:
    """Review the latest result on a REVIEW task.  Never raises."""
    try:
        detail = await api.get_task(task.id)
        result = latest_result_comment(detail.comments)
        if result is None:
            logger.info("Task %s is in review but has no result comment, skipping", task.id)
            return ReviewOutcome(verdict=ReviewVerdict.SKIPPED)

        prior_reworks = count_reworks(detail.comments)
        guard = analyze_and_sanitize(detail.description or "", max_description_length)
        system = load_system_prompt("reviewer", agent_name).replace(
            "{rework_note}", _rework_note(prior_reworks)
        )
        response = await llm.chat(
            [
                ChatMessage.system(system),
                ChatMessage.user(
                    f"Task: {detail.title}\n\nDescription:\n{guard.sanitized_text or '(no description)'}"
                    f"\n\nResult to review:\n{result.body}"
                ),
            ]
        )

        parsed = parse_verdict(response.content)
        if parsed is None:
            logger.warning("Unparseable review for task %s, approving", task.id)
            await _approve(api, task.id, agent_name, "(could not parse review, defaulting to approve)")
            return ReviewOutcome(verdict=ReviewVerdict.APPROVED, rework_count=prior_reworks)

        verdict, feedback = parsed
        if verdict == "rework" and prior_reworks < MAX_REWORKS:
            count = prior_reworks + 1
            await api.add_comment(
                task.id,
                tagged(agent_name, f"{REWORK_MARKER} {feedback}"),
                metadata={"reworkCount": count},
            )
            await api.update_task(
                task.id,
                assigned_to_bot_id=researcher_bot_id,
                status=TaskStatus.TODO,
                progress=0,
                completed=False,
            )
            logger.info("Task %s sent back for rework (%d/%d)", task.id, count, MAX_REWORKS)
            return ReviewOutcome(verdict=ReviewVerdict.REWORK, feedback=feedback, rework_count=count)

        forced = verdict == "rework"
        suffix = "(max rework limit reached) " if forced else ""
        await _approve(api, task.id, agent_name, f"{suffix}{feedback}".strip())
        logger.info("Task %s approved%s", task.id, " (forced)" if forced else "")
        return ReviewOutcome(
            verdict=ReviewVerdict.APPROVED,
            feedback=feedback,
            rework_count=prior_reworks,
            forced=forced,
        )
    except Exception as exc:
        logger.error("Review of task %s failed: %s", task.id, exc, exc_info=True)
        try:
            await api.add_comment(
                task.id,
                tagged(agent_name, f"Error during review: {exc}\n\nTask left in REVIEW status for manual check."),
            )
        except Exception as comment_exc:
            logger.error("Could not post review error on task %s: %s", task.id, comment_exc)
        return ReviewOutcome(verdict=ReviewVerdict.ERROR, feedback=str(exc))


async def _approve(api: TaskServiceClient, task_id: str, agent_name: str, note: str) -> None:
    await api.update_task(task_id, status=TaskStatus.DONE, completed=True, progress=PROGRESS_DONE)
    await api.add_comment(task_id, tagged(agent_name, f"Reviewed and approved. {note}".rstrip()))
