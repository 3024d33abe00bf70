"""Record-store object keys, field identifiers and query filters."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Tuple

from pydantic import BaseModel, Field

RemoteRecord = Dict[str, Any]

ACCOUNT_OBJECT = "object_3"
DIRECTORY_OBJECT = "object_6"
SCORES_OBJECT = "object_10"
FLASHCARD_OBJECT = "object_102"
PLANNER_OBJECT = "object_110"
TASKBOARD_OBJECT = "object_111"
PROFILE_OBJECT = "object_112"
SUBJECT_OBJECT = "object_113"

MAX_SUBJECTS = 15


@dataclass(frozen=True)
class ProfileFields:
    user_id: str = "field_3064"
    user_connection: str = "field_3070"
    school: str = "field_3069"
    student_name: str = "field_3066"
    tutors: str = "field_3071"
    staff_admins: str = "field_3072"
    attendance: str = "field_3076"
    tutor_group: str = "field_3077"
    year_group: str = "field_3078"
    num_logins: str = "field_3079"
    upn: str = "field_3136"
    first_subject_number: int = 3080

    def subject(self, index: int) -> str:
        if not 0 <= index < MAX_SUBJECTS:
            raise IndexError(f"Subject index {index} is outside 0..{MAX_SUBJECTS - 1}.")
        return f"field_{self.first_subject_number + index}"

    @property
    def subjects(self) -> Tuple[str, ...]:
        return tuple(self.subject(index) for index in range(MAX_SUBJECTS))


@dataclass(frozen=True)
class AccountFields:
    email: str = "field_70"
    password: str = "field_71"
    privacy_accepted: str = "field_127"
    verified: str = "field_189"
    password_reset: str = "field_539"
    last_login: str = "field_3198"
    login_count: str = "field_3208"
    show_academic_profile: str = "field_3646"
    show_productivity_hub: str = "field_3647"


@dataclass(frozen=True)
class DirectoryFields:
    email: str = "field_91"
    account_email: str = "field_70"
    password: str = "field_71"
    privacy_accepted: str = "field_127"
    verified: str = "field_189"
    password_reset: str = "field_539"
    upn: str = "field_3129"
    school_candidates: Tuple[str, ...] = ("field_122_raw", "field_179", "field_122")
    tutor_candidates: Tuple[str, ...] = ("field_1682_raw", "field_1682")
    staff_admin_candidates: Tuple[str, ...] = ("field_190_raw", "field_190")
    tutor_group: str = "field_565"
    year_group: str = "field_548"
    attendance: str = "field_3139"


@dataclass(frozen=True)
class SubjectFields:
    upn: str = "field_3126"
    email: str = "field_3130"
    subject: str = "field_3109"
    exam_type: str = "field_3103"
    exam_board: str = "field_3102"
    minimum_expected_grade: str = "field_3269"
    subject_target_grade: str = "field_3131"
    current_grade: str = "field_3132"
    target_grade: str = "field_3135"
    effort_grade: str = "field_3133"
    behaviour_grade: str = "field_3134"
    subject_attendance: str = "field_3186"


@dataclass(frozen=True)
class FlashcardFields:
    user_link: str = "field_2954"
    boxes: Tuple[str, ...] = ("field_2986", "field_2987", "field_2988", "field_2989", "field_2990")


@dataclass(frozen=True)
class JsonBlobFields:
    user_link: str
    payload: str


@dataclass(frozen=True)
class ScoresFields:
    email: str = "field_197"
    scores: Dict[str, str] = field(
        default_factory=lambda: {
            "vision": "field_147",
            "effort": "field_148",
            "systems": "field_149",
            "practice": "field_150",
            "attitude": "field_151",
            "overall": "field_152",
        }
    )
    show_vespa_scores: str = "field_3476"


PROFILE_FIELDS = ProfileFields()
ACCOUNT_FIELDS = AccountFields()
DIRECTORY_FIELDS = DirectoryFields()
SUBJECT_FIELDS = SubjectFields()
FLASHCARD_FIELDS = FlashcardFields()
PLANNER_FIELDS = JsonBlobFields(user_link="field_3040", payload="field_3042")
TASKBOARD_FIELDS = JsonBlobFields(user_link="field_3048", payload="field_3052")
SCORES_FIELDS = ScoresFields()


class FilterRule(BaseModel):
    field: str
    operator: Literal["is", "contains", "is not"] = "is"
    value: Any


class RecordFilter(BaseModel):
    match: Literal["and", "or"] = "and"
    rules: List[FilterRule] = Field(default_factory=list)

    @classmethod
    def where(cls, field_id: str, value: Any) -> "RecordFilter":
        return cls(rules=[FilterRule(field=field_id, value=value)])

    def to_query(self) -> str:
        return json.dumps(self.model_dump(mode="json"), separators=(",", ":"))

    def matches(self, record: RemoteRecord) -> bool:
        """Evaluate the filter against a record the way the remote store would."""
        if not self.rules:
            return True
        outcomes = [_rule_matches(rule, record) for rule in self.rules]
        return all(outcomes) if self.match == "and" else any(outcomes)


def _rule_matches(rule: FilterRule, record: RemoteRecord) -> bool:
    value = record.get(rule.field)
    if rule.operator == "contains":
        return isinstance(value, str) and str(rule.value) in value
    if rule.operator == "is not":
        return value != rule.value
    return value == rule.value


def is_truthy_flag(value: Any) -> bool:
    """Yes/No record flags come back as ``"Yes"``/``"No"`` strings or booleans."""
    return value is True or value == "Yes"


__all__ = [
    "ACCOUNT_FIELDS",
    "ACCOUNT_OBJECT",
    "DIRECTORY_FIELDS",
    "DIRECTORY_OBJECT",
    "FLASHCARD_FIELDS",
    "FLASHCARD_OBJECT",
    "FilterRule",
    "MAX_SUBJECTS",
    "PLANNER_FIELDS",
    "PLANNER_OBJECT",
    "PROFILE_FIELDS",
    "PROFILE_OBJECT",
    "RecordFilter",
    "RemoteRecord",
    "SCORES_FIELDS",
    "SCORES_OBJECT",
    "SUBJECT_FIELDS",
    "SUBJECT_OBJECT",
    "TASKBOARD_FIELDS",
    "TASKBOARD_OBJECT",
    "is_truthy_flag",
]
