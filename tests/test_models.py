"""Tests for Task Service wire models and per-task run state."""

from __future__ import annotations

from infra.models import Comment, Task, TaskStatus
from taskbots.core.state import TaskPhase, TaskRun
from taskbots.core.task_tracker import TaskTracker


class TestWireModels:
    def test_camel_case_input_and_output(self):
        task = Task.model_validate(
            {
                "id": "t1",
                "title": "Report",
                "assignedToBotId": "b1",
                "subtaskOfId": "p1",
                "dependsOnTaskId": "t0",
                "status": "IN_PROGRESS",
                "unknownField": "ignored",
            }
        )
        assert task.assigned_to_bot_id == "b1"
        assert task.subtask_of_id == "p1"
        assert task.status == TaskStatus.IN_PROGRESS

        wire = task.model_dump(by_alias=True, exclude_none=True)
        assert wire["dependsOnTaskId"] == "t0"
        assert "unknownField" not in wire

    def test_is_finished(self):
        assert Task(id="a", completed=True, status=TaskStatus.REVIEW).is_finished
        assert Task(id="b", status=TaskStatus.DONE).is_finished
        assert not Task(id="c", status=TaskStatus.REVIEW).is_finished

    def test_comment_author(self):
        assert Comment.model_validate({"body": "x", "author": {"type": "bot", "id": "b"}}).is_from_bot
        assert not Comment(body="x").is_from_bot


class TestTaskRun:
    def test_progress_never_moves_backwards(self):
        run = TaskRun(task_id="t1")
        assert run.record_progress(10)
        assert run.record_progress(50)
        assert not run.record_progress(30)
        assert run.progress == 50
        assert run.progress_history == [10, 50]

    def test_phase(self):
        run = TaskRun(task_id="t1")
        run.advance(TaskPhase.FAILED)
        assert run.phase == "failed"


class TestTaskTracker:
    def test_track_and_untrack(self):
        tracker = TaskTracker()
        tracker.track("t1", 99)
        assert tracker.get("t1").chat_id == "99"
        assert len(tracker) == 1

        tracker.untrack("t1")
        tracker.untrack("t1")
        assert tracker.all() == []
