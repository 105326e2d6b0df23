"""Per-task processing state."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from infra.models import TaskStatus

__all__ = ["TaskPhase", "TaskRun", "TaskStatus"]


class TaskPhase(StrEnum):
    CLAIMED = "claimed"
    SANITIZED = "sanitized"
    CONVERSING = "conversing"
    TOOL_EXECUTING = "tool_executing"
    FINALIZED = "finalized"
    ARTIFACT_UPLOADED = "artifact_uploaded"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskRun(BaseModel):
    """What one agent did with one task during a single processing pass."""

    task_id: str
    phase: TaskPhase = TaskPhase.CLAIMED
    progress: int = 0
    progress_history: list[int] = Field(default_factory=list)
    rounds: int = 0
    max_rounds_reached: bool = False
    # Orchestrator routing outcome: self, delegate or decompose
    route: str = ""
    error: str = ""
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def advance(self, phase: TaskPhase) -> None:
        self.phase = phase

    def record_progress(self, value: int) -> bool:
        """Record a progress value; returns False if it would move backwards."""
        if value < self.progress:
            return False
        self.progress = value
        self.progress_history.append(value)
        return True
