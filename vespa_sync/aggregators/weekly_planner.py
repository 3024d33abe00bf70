"""Session counts for the study plan of the current calendar week."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Optional

from ..parsing import parse_day, safe_parse_json
from .models import WeeklyPlannerSummary

logger = logging.getLogger(__name__)


def current_week_monday(today: date) -> date:
    # isoweekday: Monday 1 .. Sunday 7
    return today - timedelta(days=today.isoweekday() - 1)


def summarize_weekly_plan(payload: Any, today: Optional[date] = None) -> WeeklyPlannerSummary:
    """Flatten this week's sessions. Plans for any other week count as empty."""
    plan = safe_parse_json(payload)
    if not isinstance(plan, dict) or not plan.get("weekStart") or not plan.get("sessions"):
        return WeeklyPlannerSummary()

    week_start = parse_day(plan["weekStart"])
    monday = current_week_monday(today or date.today())
    if week_start != monday:
        logger.debug("Study plan week %s does not match current week %s", week_start, monday)
        return WeeklyPlannerSummary()

    sessions = plan["sessions"]
    if not isinstance(sessions, dict):
        return WeeklyPlannerSummary()

    details = []
    for day_sessions in sessions.values():
        if not isinstance(day_sessions, list):
            continue
        for session in day_sessions:
            session = session if isinstance(session, dict) else {}
            details.append(
                f"{session.get('startTime')} - {session.get('subject')} ({session.get('studyLength')})"
            )
    return WeeklyPlannerSummary(count=len(details), sessions_details=details)


__all__ = ["current_week_monday", "summarize_weekly_plan"]
