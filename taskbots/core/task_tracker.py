"""In-memory map of chat-created tasks awaiting a completion notice.

Entries are lost on restart; a task finished while the process was down is
simply never announced.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class TrackedChatTask:
    task_id: str
    chat_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class TaskTracker:
    """Thread-safe registry of tasks created from the chat front-end."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TrackedChatTask] = {}

    def track(self, task_id: str, chat_id: str | int) -> None:
        with self._lock:
            self._tasks[task_id] = TrackedChatTask(task_id=task_id, chat_id=str(chat_id))

    def untrack(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)

    def get(self, task_id: str) -> TrackedChatTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    def all(self) -> list[TrackedChatTask]:
        with self._lock:
            return list(self._tasks.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)


# Module-level singleton shared by the chat front-end and the daemon
tracker = TaskTracker()
