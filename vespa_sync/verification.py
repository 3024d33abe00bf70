"""First-use verification gate derived from three persisted account flags."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from .profile_sync import find_directory_record
from .records import ACCOUNT_FIELDS, ACCOUNT_OBJECT, DIRECTORY_FIELDS, DIRECTORY_OBJECT, RemoteRecord, is_truthy_flag
from .store_client import RecordStore, RecordStoreError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class VerificationStepError(RuntimeError):
    """Raised when a step is attempted out of order or is not required."""


class PasswordPolicyError(ValueError):
    """Raised when a new password is too short or the confirmation does not match."""


class VerificationStep(str, Enum):
    PRIVACY = "privacy"
    PASSWORD_RESET = "password_reset"


class VerificationFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    verified: bool = False
    privacy_accepted: bool = False
    password_reset: bool = False

    @classmethod
    def from_record(cls, record: RemoteRecord) -> "VerificationFlags":
        return cls(
            verified=is_truthy_flag(record.get(ACCOUNT_FIELDS.verified)),
            privacy_accepted=is_truthy_flag(record.get(ACCOUNT_FIELDS.privacy_accepted)),
            password_reset=is_truthy_flag(record.get(ACCOUNT_FIELDS.password_reset)),
        )

    def merge(self, **updates: bool) -> "VerificationFlags":
        """Flags only ever move from false to true."""
        current = self.model_dump()
        for name, value in updates.items():
            current[name] = current[name] or bool(value)
        return VerificationFlags(**current)

    def as_tuple(self) -> tuple[bool, bool, bool]:
        return (self.verified, self.privacy_accepted, self.password_reset)


_REQUIRED_BY_STATE: Dict[tuple[bool, bool, bool], List[VerificationStep]] = {
    (False, False, False): [VerificationStep.PRIVACY, VerificationStep.PASSWORD_RESET],
    (True, False, True): [VerificationStep.PRIVACY],
    (False, True, False): [VerificationStep.PASSWORD_RESET],
    (True, True, True): [],
}


def required_steps(flags: VerificationFlags) -> List[VerificationStep]:
    known = _REQUIRED_BY_STATE.get(flags.as_tuple())
    if known is not None:
        return list(known)

    logger.warning(
        "Inconsistent verification flags (verified=%s, privacy_accepted=%s, password_reset=%s)",
        *flags.as_tuple(),
    )
    emit_event("verification_flags_anomaly", **flags.model_dump())
    steps = []
    if not flags.privacy_accepted:
        steps.append(VerificationStep.PRIVACY)
    if not flags.password_reset:
        steps.append(VerificationStep.PASSWORD_RESET)
    return steps


class VerificationStatus(BaseModel):
    flags: VerificationFlags
    required_steps: List[VerificationStep]
    next_step: Optional[VerificationStep] = None
    cleared: bool
    bypassed: bool = False


class AccountVerificationStateMachine:
    """Drives the privacy and password-reset steps one at a time.

    Each step writes the account record first; a failure there raises and
    leaves the flags untouched so the step can be retried. The directory
    record is written next on a best-effort basis and never rolled back
    into the account write.
    """

    def __init__(
        self,
        store: RecordStore,
        user_id: Optional[str],
        user_email: Optional[str],
        flags: VerificationFlags,
        *,
        directory_record_id: Optional[str] = None,
        bypassed: bool = False,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.user_email = user_email
        self.flags = flags
        self.directory_record_id = directory_record_id
        self.bypassed = bypassed
        self._required = [] if bypassed else required_steps(flags)

    @classmethod
    async def load(
        cls,
        store: RecordStore,
        user_id: Optional[str],
        user_email: Optional[str],
    ) -> "AccountVerificationStateMachine":
        if not user_id:
            logger.warning("No user id available for the verification check; allowing access.")
            return cls(store, user_id, user_email, VerificationFlags(), bypassed=True)
        try:
            account = await store.get(ACCOUNT_OBJECT, user_id)
        except RecordStoreError as exc:
            logger.warning("Account %s unreadable for verification check; allowing access: %s", user_id, exc)
            emit_event("verification_gate_bypassed", user_id=user_id, error=exc)
            return cls(store, user_id, user_email, VerificationFlags(), bypassed=True)

        machine = cls(store, user_id, user_email, VerificationFlags.from_record(account))
        if machine.required_steps:
            try:
                directory = await find_directory_record(store, user_email)
            except RecordStoreError as exc:
                logger.warning("Directory lookup for %s failed: %s", user_email, exc)
                directory = None
            machine.directory_record_id = directory.get("id") if directory else None
            if machine.directory_record_id is None:
                logger.warning("No directory record for %s; verification writes will skip it", user_email)
        logger.info(
            "Verification for %s requires %s",
            user_id,
            [step.value for step in machine.required_steps] or "nothing",
        )
        return machine

    @property
    def required_steps(self) -> List[VerificationStep]:
        return list(self._required)

    @property
    def next_step(self) -> Optional[VerificationStep]:
        return self._required[0] if self._required else None

    @property
    def cleared(self) -> bool:
        return not self._required

    def status(self) -> VerificationStatus:
        return VerificationStatus(
            flags=self.flags,
            required_steps=self.required_steps,
            next_step=self.next_step,
            cleared=self.cleared,
            bypassed=self.bypassed,
        )

    async def accept_privacy(self) -> VerificationStatus:
        self._check_turn(VerificationStep.PRIVACY)
        await self._complete(
            VerificationStep.PRIVACY,
            primary={ACCOUNT_FIELDS.privacy_accepted: "Yes"},
            secondary={DIRECTORY_FIELDS.privacy_accepted: "Yes"},
            merged={"privacy_accepted": True},
        )
        return self.status()

    async def reset_password(self, new_password: str, confirm_password: str) -> VerificationStatus:
        self._check_turn(VerificationStep.PASSWORD_RESET)
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise PasswordPolicyError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        if new_password != confirm_password:
            raise PasswordPolicyError("Passwords do not match.")

        await self._complete(
            VerificationStep.PASSWORD_RESET,
            primary={
                ACCOUNT_FIELDS.password: new_password,
                ACCOUNT_FIELDS.password_reset: "Yes",
                ACCOUNT_FIELDS.verified: "Yes",
            },
            secondary={
                DIRECTORY_FIELDS.password_reset: "Yes",
                DIRECTORY_FIELDS.verified: "Yes",
            },
            merged={"password_reset": True, "verified": True},
        )
        return self.status()

    def _check_turn(self, step: VerificationStep) -> None:
        if step not in self._required:
            raise VerificationStepError(f"The {step.value} step is not required.")
        next_step = self.next_step
        if next_step is not None and next_step is not step:
            raise VerificationStepError(
                f"The {next_step.value} step must be completed before {step.value}."
            )

    async def _complete(
        self,
        step: VerificationStep,
        *,
        primary: Dict[str, Any],
        secondary: Dict[str, Any],
        merged: Dict[str, bool],
    ) -> None:
        if not self.user_id:
            raise VerificationStepError(f"Cannot record the {step.value} step without a user id.")
        await self._store.update(ACCOUNT_OBJECT, self.user_id, primary)

        if self.directory_record_id:
            try:
                await self._store.update(DIRECTORY_OBJECT, self.directory_record_id, secondary)
            except RecordStoreError as exc:
                logger.warning(
                    "Directory record %s not updated for the %s step: %s",
                    self.directory_record_id,
                    step.value,
                    exc,
                )
                emit_event("verification_secondary_write_failed", step=step.value, error=exc)
        else:
            logger.warning("Skipping directory write for the %s step; no directory record", step.value)

        self.flags = self.flags.merge(**merged)
        self._required = required_steps(self.flags)
        logger.info("Completed %s step for %s; remaining %s", step.value, self.user_id, self._required)
        emit_event("verification_step_completed", step=step.value, cleared=self.cleared)


__all__ = [
    "AccountVerificationStateMachine",
    "MIN_PASSWORD_LENGTH",
    "PasswordPolicyError",
    "VerificationFlags",
    "VerificationStatus",
    "VerificationStep",
    "VerificationStepError",
    "required_steps",
]
