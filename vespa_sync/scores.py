"""VESPA score summary and dashboard display preferences."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .parsing import sanitize_field
from .records import ACCOUNT_FIELDS, SCORES_FIELDS

MISSING_SCORE = "N/A"


class DisplayPreferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    show_vespa_scores: bool = Field(True, alias="showVespaScores")
    show_academic_profile: bool = Field(True, alias="showAcademicProfile")
    show_productivity_hub: bool = Field(True, alias="showProductivityHub")


class ScoresSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scores: Optional[Dict[str, str]] = None
    display_preferences: DisplayPreferences = Field(
        default_factory=DisplayPreferences, alias="displayPreferences"
    )


def _shown(value: Any) -> bool:
    # Only an explicit ``False`` hides a section; missing values keep it visible.
    return value is not False


def summarize_scores(
    record: Optional[Mapping[str, Any]],
    account_values: Optional[Mapping[str, Any]] = None,
) -> ScoresSummary:
    account_values = account_values or {}
    preferences = DisplayPreferences(
        show_vespa_scores=_shown(record.get(SCORES_FIELDS.show_vespa_scores)) if record else True,
        show_academic_profile=_shown(account_values.get(ACCOUNT_FIELDS.show_academic_profile)),
        show_productivity_hub=_shown(account_values.get(ACCOUNT_FIELDS.show_productivity_hub)),
    )
    if not record:
        return ScoresSummary(display_preferences=preferences)

    scores = {
        name: sanitize_field(record.get(field_id) or MISSING_SCORE)
        for name, field_id in SCORES_FIELDS.scores.items()
    }
    return ScoresSummary(scores=scores, display_preferences=preferences)


__all__ = ["DisplayPreferences", "MISSING_SCORE", "ScoresSummary", "summarize_scores"]
