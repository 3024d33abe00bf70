from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict

from vespa_sync.profile_sync import ProfileSynchronizer, SubjectEntry
from vespa_sync.records import (
    ACCOUNT_FIELDS,
    ACCOUNT_OBJECT,
    DIRECTORY_FIELDS,
    DIRECTORY_OBJECT,
    PROFILE_FIELDS,
    PROFILE_OBJECT,
    SUBJECT_FIELDS,
    SUBJECT_OBJECT,
)

USER_ID = "5f1b2c3d4e5f6a7b8c9d0e1f"
EMAIL = "student@school.test"
SCHOOL_ID = "6a6a6a6a6a6a6a6a6a6a6a6a"
TUTOR_IDS = ["7b7b7b7b7b7b7b7b7b7b7b7b", "7c7c7c7c7c7c7c7c7c7c7c7c"]
ADMIN_ID = "8d8d8d8d8d8d8d8d8d8d8d8d"
NOW = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)


def _seed_student(store, *, upn: str = "A123") -> None:
    store.seed(
        DIRECTORY_OBJECT,
        **{
            DIRECTORY_FIELDS.email: EMAIL,
            "field_122_raw": [{"id": SCHOOL_ID, "identifier": "Test Academy"}],
            "field_1682_raw": [{"id": TUTOR_IDS[0]}, {"id": TUTOR_IDS[1]}],
            "field_190_raw": [],
            "field_190": [ADMIN_ID],
            DIRECTORY_FIELDS.tutor_group: "<span>12B</span>",
            DIRECTORY_FIELDS.year_group: "12",
            DIRECTORY_FIELDS.attendance: "95%",
            DIRECTORY_FIELDS.upn: upn,
        },
    )
    store.seed(ACCOUNT_OBJECT, id=USER_ID, **{ACCOUNT_FIELDS.email: EMAIL, ACCOUNT_FIELDS.login_count: "4"})


def _seed_subject(store, name: str, **extra: Any) -> Dict[str, Any]:
    return store.seed(
        SUBJECT_OBJECT,
        **{
            SUBJECT_FIELDS.email: EMAIL,
            SUBJECT_FIELDS.subject: name,
            SUBJECT_FIELDS.exam_type: "A Level",
            SUBJECT_FIELDS.current_grade: "B",
            **extra,
        },
    )


def _resolve(store, *calls: Dict[str, Any]) -> list:
    synchronizer = ProfileSynchronizer(store, clock=lambda: NOW)

    async def scenario() -> list:
        results = []
        for kwargs in calls:
            results.append(await synchronizer.resolve_profile(**kwargs))
        await synchronizer.drain()
        return results

    return asyncio.run(scenario())


def _login(**overrides: Any) -> Dict[str, Any]:
    return {"user_id": USER_ID, "user_name": "Jane Doe", "user_email": EMAIL, **overrides}


def test_missing_user_id_returns_none_without_io(store) -> None:
    assert _resolve(store, _login(user_id=None)) == [None]
    assert store.calls == []


def test_first_login_creates_profile_with_derived_connections(store) -> None:
    _seed_student(store)
    _seed_subject(store, "Maths")

    (profile,) = _resolve(store, _login(user_name="<b>Jane</b> Doe"))

    fields = PROFILE_FIELDS
    assert profile[fields.user_id] == USER_ID
    assert profile[fields.user_connection] == USER_ID
    assert profile[fields.student_name] == "Jane Doe"
    assert profile[fields.num_logins] == 1
    assert profile[fields.school] == SCHOOL_ID
    assert profile[fields.tutors] == TUTOR_IDS
    assert profile[fields.staff_admins] == ADMIN_ID
    assert profile[fields.tutor_group] == "12B"
    assert profile[fields.year_group] == "12"
    assert profile[fields.attendance] == "95%"
    assert profile[fields.upn] == "A123"

    subject = json.loads(profile[fields.subject(0)])
    assert subject["subject"] == "Maths"
    assert subject["examType"] == "A Level"
    assert subject["currentGrade"] == "B"
    assert subject["originalRecordId"] == store.records(SUBJECT_OBJECT)[0]["id"]

    account = store.records(ACCOUNT_OBJECT)[0]
    assert account[ACCOUNT_FIELDS.login_count] == 5
    assert account[ACCOUNT_FIELDS.last_login] == NOW.isoformat()


def test_school_argument_takes_priority_over_directory(store) -> None:
    _seed_student(store)
    explicit_school = "9e9e9e9e9e9e9e9e9e9e9e9e"

    (profile,) = _resolve(store, _login(school_id=explicit_school))

    assert profile[PROFILE_FIELDS.school] == explicit_school


def test_resolve_twice_yields_one_profile_and_increments_logins(store) -> None:
    _seed_student(store)
    _seed_subject(store, "Maths")

    first, second = _resolve(store, _login(), _login())

    profiles = store.records(PROFILE_OBJECT)
    assert len(profiles) == 1
    assert first["id"] == second["id"] == profiles[0]["id"]
    assert profiles[0][PROFILE_FIELDS.num_logins] == 2
    assert len(store.calls_for("create", PROFILE_OBJECT)) == 1


def test_unparseable_login_counter_counts_as_zero(store) -> None:
    store.seed(PROFILE_OBJECT, **{PROFILE_FIELDS.user_id: USER_ID, PROFILE_FIELDS.num_logins: "n/a"})

    (profile,) = _resolve(store, _login(user_email=None))

    assert profile[PROFILE_FIELDS.num_logins] == 1
    assert store.records(PROFILE_OBJECT)[0][PROFILE_FIELDS.num_logins] == 1


def test_changed_upn_is_persisted_and_used_for_subjects(store) -> None:
    _seed_student(store, upn="NEW-UPN")
    store.seed(PROFILE_OBJECT, **{PROFILE_FIELDS.user_id: USER_ID, PROFILE_FIELDS.upn: "OLD-UPN"})
    store.seed(SUBJECT_OBJECT, **{SUBJECT_FIELDS.upn: "NEW-UPN", SUBJECT_FIELDS.subject: "Physics"})

    (profile,) = _resolve(store, _login())

    assert profile[PROFILE_FIELDS.upn] == "NEW-UPN"
    assert store.records(PROFILE_OBJECT)[0][PROFILE_FIELDS.upn] == "NEW-UPN"
    assert json.loads(profile[PROFILE_FIELDS.subject(0)])["subject"] == "Physics"


def test_subjects_are_capped_at_fifteen(store) -> None:
    _seed_student(store)
    for index in range(17):
        _seed_subject(store, f"Subject {index}")

    (profile,) = _resolve(store, _login())

    written = [key for key in profile if key in PROFILE_FIELDS.subjects and profile[key]]
    assert len(written) == 15
    assert json.loads(profile[PROFILE_FIELDS.subject(14)])["subject"] == "Subject 14"


def test_subject_refresh_failure_still_returns_profile(store, events) -> None:
    _seed_student(store)
    store.fail("query", SUBJECT_OBJECT)

    (profile,) = _resolve(store, _login())

    assert profile is not None
    assert profile[PROFILE_FIELDS.user_id] == USER_ID
    assert "profile_refresh_failed" in [event.name for event in events]


def test_lookup_failure_returns_none(store) -> None:
    store.fail("query", PROFILE_OBJECT)
    assert _resolve(store, _login()) == [None]
    assert store.calls_for("create", PROFILE_OBJECT) == []


def test_background_update_failures_are_not_raised(store) -> None:
    _seed_student(store)
    store.seed(PROFILE_OBJECT, **{PROFILE_FIELDS.user_id: USER_ID, PROFILE_FIELDS.num_logins: 3})
    store.fail("update", ACCOUNT_OBJECT)

    (profile,) = _resolve(store, _login())

    assert profile[PROFILE_FIELDS.num_logins] == 4


def test_create_without_id_returns_none(store) -> None:
    class _NoIdStore(type(store)):
        async def create(self, object_key, data):
            await super().create(object_key, data)
            return {}

    assert _resolve(_NoIdStore(), _login()) == [None]


def test_subject_entry_serializes_camel_case() -> None:
    entry = SubjectEntry.from_record(
        {"id": "r1", SUBJECT_FIELDS.subject: "Art", SUBJECT_FIELDS.minimum_expected_grade: "A*"}
    )
    body = json.loads(entry.to_field_value())
    assert body["originalRecordId"] == "r1"
    assert body["minimumExpectedGrade"] == "A*"
    assert body["subjectAttendance"] == ""
