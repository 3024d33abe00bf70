"""Notification summaries handed to the renderer."""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

LEITNER_BOXES = (1, 2, 3, 4, 5)


class BoxCount(BaseModel):
    due: int = 0
    total: int = 0


def _empty_boxes() -> Dict[int, BoxCount]:
    return {box: BoxCount() for box in LEITNER_BOXES}


class LeitnerSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_due: int = Field(0, alias="totalDue")
    boxes: Dict[int, BoxCount] = Field(default_factory=_empty_boxes)


class WeeklyPlannerSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    sessions_details: List[str] = Field(default_factory=list, alias="sessionsDetails")


class TaskBoardSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doing_count: int = Field(0, alias="doingCount")
    pending_hot: int = Field(0, alias="pendingHot")
    pending_warm: int = Field(0, alias="pendingWarm")
    pending_cold: int = Field(0, alias="pendingCold")
    doing_task_titles: List[str] = Field(default_factory=list, alias="doingTaskTitles")


__all__ = [
    "BoxCount",
    "LEITNER_BOXES",
    "LeitnerSummary",
    "TaskBoardSummary",
    "WeeklyPlannerSummary",
]
