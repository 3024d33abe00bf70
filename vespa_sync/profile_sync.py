"""Idempotent find-or-create of the per-user profile record.

The profile is looked up by user id; a missing profile is created from the
user's identity plus connections read off their directory record. On every
login the UPN and the subject list are refreshed from their systems of
record, so a returning user never sees stale subjects. Login counters are
bumped with fire-and-forget tasks that :meth:`ProfileSynchronizer.drain`
awaits.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from .parsing import sanitize_field
from .records import (
    ACCOUNT_FIELDS,
    ACCOUNT_OBJECT,
    DIRECTORY_FIELDS,
    DIRECTORY_OBJECT,
    MAX_SUBJECTS,
    PROFILE_FIELDS,
    PROFILE_OBJECT,
    SUBJECT_FIELDS,
    SUBJECT_OBJECT,
    FilterRule,
    RecordFilter,
    RemoteRecord,
)
from .references import collect_reference_ids, connection_value, resolve_reference_id
from .store_client import RecordStore, RecordStoreError
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class SubjectEntry(BaseModel):
    """One subject/grade row, stored as camelCase JSON in a profile subject field."""

    model_config = ConfigDict(populate_by_name=True)

    original_record_id: Optional[str] = Field(None, alias="originalRecordId")
    subject: str = ""
    exam_type: str = Field("", alias="examType")
    exam_board: str = Field("", alias="examBoard")
    minimum_expected_grade: str = Field("", alias="minimumExpectedGrade")
    subject_target_grade: str = Field("", alias="subjectTargetGrade")
    current_grade: str = Field("", alias="currentGrade")
    target_grade: str = Field("", alias="targetGrade")
    effort_grade: str = Field("", alias="effortGrade")
    behaviour_grade: str = Field("", alias="behaviourGrade")
    subject_attendance: str = Field("", alias="subjectAttendance")

    @classmethod
    def from_record(cls, record: RemoteRecord) -> "SubjectEntry":
        fields = SUBJECT_FIELDS
        return cls(
            original_record_id=record.get("id"),
            subject=sanitize_field(record.get(fields.subject)),
            exam_type=sanitize_field(record.get(fields.exam_type)),
            exam_board=sanitize_field(record.get(fields.exam_board)),
            minimum_expected_grade=sanitize_field(record.get(fields.minimum_expected_grade)),
            subject_target_grade=sanitize_field(record.get(fields.subject_target_grade)),
            current_grade=sanitize_field(record.get(fields.current_grade)),
            target_grade=sanitize_field(record.get(fields.target_grade)),
            effort_grade=sanitize_field(record.get(fields.effort_grade)),
            behaviour_grade=sanitize_field(record.get(fields.behaviour_grade)),
            subject_attendance=sanitize_field(record.get(fields.subject_attendance)),
        )

    def to_field_value(self) -> str:
        return self.model_dump_json(by_alias=True)


def _login_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _first_present(record: RemoteRecord, candidates: tuple[str, ...]) -> Any:
    for field_id in candidates:
        if record.get(field_id):
            return record[field_id]
    return None


def directory_filter(email: str) -> RecordFilter:
    return RecordFilter(
        match="or",
        rules=[
            FilterRule(field=DIRECTORY_FIELDS.email, value=email),
            FilterRule(field=DIRECTORY_FIELDS.account_email, value=email),
            FilterRule(field=DIRECTORY_FIELDS.email, operator="contains", value=email),
        ],
    )


def subject_filter(email: Optional[str], upn: Optional[str]) -> Optional[RecordFilter]:
    rules: List[FilterRule] = []
    if upn:
        rules.append(FilterRule(field=SUBJECT_FIELDS.upn, value=upn))
    if email:
        rules.append(FilterRule(field=SUBJECT_FIELDS.email, value=email))
    if not rules:
        return None
    return RecordFilter(match="or", rules=rules)


async def find_directory_record(store: RecordStore, email: Optional[str]) -> Optional[RemoteRecord]:
    if not email:
        return None
    records = await store.query(DIRECTORY_OBJECT, directory_filter(email))
    return records[0] if records else None


class ProfileSynchronizer:
    def __init__(
        self,
        store: RecordStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pending: Set[asyncio.Task[None]] = set()

    @property
    def pending_updates(self) -> int:
        return len(self._pending)

    async def resolve_profile(
        self,
        user_id: Optional[str],
        user_name: Optional[str],
        user_email: Optional[str],
        *,
        school_id: Optional[str] = None,
    ) -> Optional[RemoteRecord]:
        if not user_id:
            logger.warning("Cannot resolve a profile without a user id.")
            return None

        try:
            matches = await self._store.query(
                PROFILE_OBJECT, RecordFilter.where(PROFILE_FIELDS.user_id, user_id)
            )
            if matches:
                profile = dict(matches[0])
                logger.debug("Found profile %s for user %s", profile.get("id"), user_id)
                self._increment_profile_logins(profile)
                self._track_account_login(user_email)
            else:
                created = await self._create_profile(user_id, user_name, user_email, school_id)
                if created is None:
                    return None
                profile = created
        except RecordStoreError as exc:
            logger.error("Unable to find or create profile for user %s: %s", user_id, exc)
            emit_event("profile_resolution_failed", user_id=user_id, error=exc)
            return None

        try:
            await self._refresh(profile, user_email)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Profile refresh for %s failed; using resolved profile: %s", profile["id"], exc)
            emit_event("profile_refresh_failed", profile_id=profile["id"], error=exc)
        return profile

    async def drain(self) -> None:
        """Wait for outstanding login-tracking updates."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _create_profile(
        self,
        user_id: str,
        user_name: Optional[str],
        user_email: Optional[str],
        school_id: Optional[str],
    ) -> Optional[RemoteRecord]:
        fields = PROFILE_FIELDS
        data: Dict[str, Any] = {
            fields.user_id: user_id,
            fields.student_name: sanitize_field(user_name),
            fields.num_logins: 1,
            fields.user_connection: user_id,
        }
        if school_id:
            data[fields.school] = school_id

        directory = await find_directory_record(self._store, user_email)
        if directory is not None:
            data.update(self._derived_fields(directory, has_school=bool(school_id)))
        else:
            logger.info("No directory record for %s; creating profile with identity fields only", user_email)

        created = await self._store.create(PROFILE_OBJECT, data)
        if not created or not created.get("id"):
            logger.error("Profile create for user %s returned no record id", user_id)
            return None
        logger.info("Created profile %s for user %s", created["id"], user_id)
        emit_event("profile_created", user_id=user_id, profile_id=created["id"])
        self._track_account_login(user_email)
        return dict(created)

    @staticmethod
    def _derived_fields(directory: RemoteRecord, *, has_school: bool) -> Dict[str, Any]:
        fields = PROFILE_FIELDS
        source = DIRECTORY_FIELDS
        data: Dict[str, Any] = {}

        if directory.get(source.upn):
            data[fields.upn] = sanitize_field(directory[source.upn])

        if not has_school:
            for field_id in source.school_candidates:
                school = resolve_reference_id(directory.get(field_id))
                if school:
                    data[fields.school] = school
                    break

        tutors = connection_value(collect_reference_ids(_first_present(directory, source.tutor_candidates)))
        if tutors:
            data[fields.tutors] = tutors
        admins = connection_value(
            collect_reference_ids(_first_present(directory, source.staff_admin_candidates))
        )
        if admins:
            data[fields.staff_admins] = admins

        for target, origin in (
            (fields.tutor_group, source.tutor_group),
            (fields.year_group, source.year_group),
            (fields.attendance, source.attendance),
        ):
            if directory.get(origin):
                data[target] = sanitize_field(directory[origin])
        return data

    async def _refresh(self, profile: RemoteRecord, user_email: Optional[str]) -> None:
        fields = PROFILE_FIELDS
        directory = await find_directory_record(self._store, user_email)
        if directory is not None:
            latest_upn = sanitize_field(directory.get(DIRECTORY_FIELDS.upn))
            if latest_upn and latest_upn != profile.get(fields.upn):
                logger.info("UPN for profile %s changed to %s", profile["id"], latest_upn)
                await self._store.update(PROFILE_OBJECT, profile["id"], {fields.upn: latest_upn})
                profile[fields.upn] = latest_upn

        query = subject_filter(user_email, profile.get(fields.upn))
        if query is None:
            return
        subject_records = await self._store.query(SUBJECT_OBJECT, query)
        entries = [SubjectEntry.from_record(record) for record in subject_records[:MAX_SUBJECTS]]
        if not entries:
            logger.info("No subject records found for profile %s", profile["id"])
            return

        update = {fields.subject(index): entry.to_field_value() for index, entry in enumerate(entries)}
        await self._store.update(PROFILE_OBJECT, profile["id"], update)
        profile.update(update)
        logger.debug("Refreshed %s subjects on profile %s", len(entries), profile["id"])

    def _increment_profile_logins(self, profile: RemoteRecord) -> None:
        count = _login_count(profile.get(PROFILE_FIELDS.num_logins)) + 1
        profile[PROFILE_FIELDS.num_logins] = count
        self._schedule(
            self._store.update(PROFILE_OBJECT, profile["id"], {PROFILE_FIELDS.num_logins: count}),
            label=f"profile login count for {profile['id']}",
        )

    def _track_account_login(self, user_email: Optional[str]) -> None:
        if user_email:
            self._schedule(self._update_account_login(user_email), label=f"account login for {user_email}")

    async def _update_account_login(self, user_email: str) -> None:
        accounts = await self._store.query(
            ACCOUNT_OBJECT, RecordFilter.where(ACCOUNT_FIELDS.email, user_email)
        )
        if not accounts:
            logger.debug("No account record for %s; login not tracked", user_email)
            return
        account = accounts[0]
        await self._store.update(
            ACCOUNT_OBJECT,
            account["id"],
            {
                ACCOUNT_FIELDS.last_login: self._clock().isoformat(),
                ACCOUNT_FIELDS.login_count: _login_count(account.get(ACCOUNT_FIELDS.login_count)) + 1,
            },
        )

    def _schedule(self, work: Coroutine[Any, Any, Any], *, label: str) -> None:
        async def runner() -> None:
            try:
                await work
            except Exception as exc:  # noqa: BLE001
                logger.warning("Background update (%s) failed: %s", label, exc)

        task = asyncio.get_running_loop().create_task(runner())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


__all__ = [
    "ProfileSynchronizer",
    "SubjectEntry",
    "directory_filter",
    "find_directory_record",
    "subject_filter",
]
