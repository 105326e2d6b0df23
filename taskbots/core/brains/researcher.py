"""Researcher brain: sandboxed code and web search; results go to review."""

from __future__ import annotations

from infra.models import TaskStatus

from .agent import AgentBrain


class ResearcherBrain(AgentBrain):
    prompt_name = "researcher"
    final_status = TaskStatus.REVIEW
