"""Agent brains, split into per-role modules.

``build_brain`` picks the brain class for the configured role; the review
and aggregation steps are plain coroutines used by the orchestrator's
daemon polls.
"""

from .agent import AgentBrain  # noqa: F401
from .researcher import ResearcherBrain  # noqa: F401
from .orchestrator import OrchestratorBrain  # noqa: F401
from .router import Route, RouteDecision, route_task  # noqa: F401
from .planner import MAX_SUBTASKS, PlannedSubtask, decompose_task, parse_plan  # noqa: F401
from .reviewer import MAX_REWORKS, ReviewOutcome, ReviewVerdict, review_task  # noqa: F401
from .aggregator import AggregateOutcome, aggregate_orchestration, aggregate_progress  # noqa: F401

from ._helpers import (  # noqa: F401
    RESULT_PREFIX,
    REWORK_MARKER,
    count_reworks,
    is_result_comment,
    latest_result_comment,
    round_progress,
    run_tool_loop,
)


def build_brain(settings, api, llm, search=None, bot_id: str = "") -> AgentBrain:
    """Return the brain for ``settings.agent_role``."""
    cls = OrchestratorBrain if settings.is_orchestrator else ResearcherBrain
    return cls(settings, api, llm, search=search, bot_id=bot_id)


__all__ = [
    "AgentBrain",
    "OrchestratorBrain",
    "ResearcherBrain",
    "aggregate_orchestration",
    "build_brain",
    "decompose_task",
    "review_task",
    "route_task",
]
