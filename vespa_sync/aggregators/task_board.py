"""Doing/pending tallies for a task board."""

from __future__ import annotations

from typing import Any

from ..parsing import safe_parse_json
from .models import TaskBoardSummary

_PENDING_BUCKETS = {"Hot": "pending_hot", "Warm": "pending_warm", "Cold": "pending_cold"}


def summarize_task_board(payload: Any) -> TaskBoardSummary:
    board = safe_parse_json(payload)
    if not isinstance(board, dict) or not isinstance(board.get("tasks"), list):
        return TaskBoardSummary()

    summary = TaskBoardSummary()
    for task in board["tasks"]:
        if not isinstance(task, dict):
            continue
        status = task.get("status")
        if status == "Doing":
            summary.doing_count += 1
            summary.doing_task_titles.append(str(task.get("title") or ""))
        elif status == "Pending":
            priority = task.get("priority")
            bucket = _PENDING_BUCKETS.get(priority) if isinstance(priority, str) else None
            if bucket:
                setattr(summary, bucket, getattr(summary, bucket) + 1)
    return summary


__all__ = ["summarize_task_board"]
