"""Pure transforms from persisted JSON blobs to notification summaries."""

from .models import BoxCount, LeitnerSummary, TaskBoardSummary, WeeklyPlannerSummary
from .spaced_repetition import summarize_flashcards
from .task_board import summarize_task_board
from .weekly_planner import current_week_monday, summarize_weekly_plan

__all__ = [
    "BoxCount",
    "LeitnerSummary",
    "TaskBoardSummary",
    "WeeklyPlannerSummary",
    "current_week_monday",
    "summarize_flashcards",
    "summarize_task_board",
    "summarize_weekly_plan",
]
