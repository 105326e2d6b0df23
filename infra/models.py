"""Task Service data models.

The service speaks camelCase JSON; the models expose snake_case attributes
and accept either spelling on input.  ``model_dump(by_alias=True)`` yields
the wire form again.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class TaskStatus(StrEnum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(_WireModel):
    """A unit of work stored by the Task Service."""

    id: str
    title: str = ""
    description: str | None = None
    quadrant: str | None = None
    status: TaskStatus = TaskStatus.TODO
    progress: int = 0
    completed: bool = False
    project_id: str | None = None
    assigned_to_bot_id: str | None = None
    subtask_of_id: str | None = None
    depends_on_task_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.completed or self.status == TaskStatus.DONE


class CommentAuthor(_WireModel):
    type: str = "unknown"   # bot | user | unknown
    id: str | None = None
    name: str | None = None


class Comment(_WireModel):
    """Append-only note on a task; also the agents' inter-step memory."""

    id: str = ""
    task_id: str = ""
    body: str = ""
    metadata: dict[str, Any] | None = None
    author: CommentAuthor = Field(default_factory=CommentAuthor)
    created_at: datetime | None = None

    @property
    def is_from_bot(self) -> bool:
        return self.author.type == "bot"


class Artifact(_WireModel):
    id: str
    task_id: str = ""
    bot_id: str | None = None
    file_name: str
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    created_at: datetime | None = None


class ArtifactContent(Artifact):
    """An artifact fetched individually, carrying its base64 payload."""

    content: str = ""


class TaskDetail(Task):
    comments: list[Comment] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)


class Pagination(_WireModel):
    limit: int = 0
    has_more: bool = False
    next_cursor: str | None = None


class TaskPage(_WireModel):
    tasks: list[Task] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------


class BotInfo(_WireModel):
    id: str
    name: str = ""
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)
    project_ids: list[str] = Field(default_factory=list)
    rate_limit_per_minute: int = 60
    is_active: bool = True


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiErrorBody(_WireModel):
    message: str = ""
    code: str = ""


class ApiResponse(_WireModel, Generic[T]):
    """``{success, data, error}`` envelope returned by every endpoint."""

    success: bool = False
    data: T | None = None
    error: ApiErrorBody | None = None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return "unknown error"
        return self.error.message or self.error.code or "unknown error"
