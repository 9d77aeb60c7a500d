"""
Verification engine: issues numeric codes and decides whether a submitted
(destination, code) pair is acceptable for a purpose.

Per-row lifecycle:
    issued --(exact match, unexpired, attempts < max)--> consumed
    issued --(mismatch, unexpired, attempts < max)-----> issued, attempts + 1
    issued with attempts >= max is locked until a new code is issued
    issued past expires_at is expired; checks against it change nothing

Rejections are returned as values, never raised. The engine keeps no state
between calls; every read and write goes through the store.
"""
import secrets
import string
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dao.user_dao import UserDAO
from dao.verification_code_dao import VerificationCodeDAO
from models.verification_code import VerificationCode, VerificationPurpose
from services.contact import mask_contact, normalize_contact
from services.errors import AuthServiceError, DEFAULT_MESSAGES, ErrorKind, incorrect_code_message
from services.security import SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

# Purposes whose success marks the owning account's contact as verified
ACCOUNT_FLAG_PURPOSES = {VerificationPurpose.SIGNUP.value, VerificationPurpose.CONTACT_CHANGE.value}

# A resubmitted code matching one of these rows is reported as is, not counted
DEAD_ROW_REASONS = {ErrorKind.ALREADY_USED, ErrorKind.EXPIRED}


def generate_verification_code(length: int = 6) -> str:
    """Random numeric code; every digit is drawn independently, leading zeros allowed."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class VerificationResult:
    success: bool
    owner_id: Optional[int] = None
    purpose: Optional[str] = None
    reason: Optional[ErrorKind] = None
    remaining_attempts: Optional[int] = None

    @property
    def message(self) -> str:
        if self.success:
            return "Verification successful."
        if self.reason == ErrorKind.INCORRECT_CODE:
            return incorrect_code_message(self.remaining_attempts or 0)
        return DEFAULT_MESSAGES[self.reason]

    def raise_for_failure(self) -> None:
        if not self.success:
            raise AuthServiceError(self.reason, self.message, remaining_attempts=self.remaining_attempts)


class VerificationEngine:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], config: SecurityConfig,
                 clock: Callable[[], datetime] = SecurityUtils.get_utc_now,
                 code_generator: Optional[Callable[[], str]] = None):
        self._session_factory = session_factory
        self._clock = clock
        self.code_length = config.verification_code_length
        self.ttl_minutes = config.verification_code_ttl_minutes
        self.max_attempts = config.verification_max_attempts
        self._generate = code_generator or (lambda: generate_verification_code(self.code_length))

    async def issue(self, destination: str, purpose: VerificationPurpose,
                    owner_id: Optional[int] = None) -> VerificationCode:
        """Persist a fresh code for the destination and return the stored row."""
        destination = normalize_contact(destination)
        purpose = VerificationPurpose(purpose)
        now = self._clock()

        async with self._session_factory() as db:
            record = await VerificationCodeDAO(db).issue(
                destination, self._generate(), purpose.value, now, self.ttl_minutes, owner_id=owner_id
            )

        SecurityUtils.log_security_event(
            "verification_code_issued",
            {"destination": mask_contact(destination), "purpose": purpose.value, "owner_id": owner_id},
        )
        return record

    async def verify(self, destination: str, code: str,
                     expected_purpose: Optional[VerificationPurpose] = None,
                     owner_id: Optional[int] = None) -> VerificationResult:
        """
        Check a submitted code. With ``owner_id`` only that account's rows
        can be consumed or charged an attempt; rows issued to other accounts
        sharing the destination are reported as PURPOSE_MISMATCH.
        """
        destination = normalize_contact(destination)
        purpose = VerificationPurpose(expected_purpose).value if expected_purpose else None
        now = self._clock()

        async with self._session_factory() as db:
            codes = VerificationCodeDAO(db)

            record = await codes.find_latest_active(destination, now, code=code, purpose=purpose,
                                                    owner_id=owner_id)
            if record is not None:
                if record.attempts >= self.max_attempts:
                    return self._reject(destination, ErrorKind.MAX_ATTEMPTS)

                if await codes.consume_if_valid(record.id, code, now, self.max_attempts):
                    if record.owner_id is not None and record.purpose in ACCOUNT_FLAG_PURPOSES:
                        await UserDAO(db).mark_contact_verified(record.owner_id, destination)
                    SecurityUtils.log_security_event(
                        "verification_code_accepted",
                        {"destination": mask_contact(destination), "purpose": record.purpose,
                         "owner_id": record.owner_id},
                    )
                    return VerificationResult(success=True, owner_id=record.owner_id, purpose=record.purpose)

                # A concurrent check changed the row between read and write
                record = await codes.get_by_id(record.id)
                reason = self._rejection_reason(record, now, purpose, owner_id) or ErrorKind.ALREADY_USED
                return self._reject(destination, reason)

            latest = await codes.find_latest_any(destination)
            if latest is None:
                return self._reject(destination, ErrorKind.NO_CODE_FOUND)

            reason = self._rejection_reason(latest, now, purpose, owner_id)
            resubmitted_dead_code = latest.code == code and reason in DEAD_ROW_REASONS
            if reason is not None and not resubmitted_dead_code:
                # A newer row that cannot take this guess must not shield an
                # older live code from the attempt limit
                live = await codes.find_latest_active(destination, now, purpose=purpose, owner_id=owner_id)
                if live is not None:
                    latest = live
                    reason = self._rejection_reason(live, now, purpose, owner_id)
            if reason is not None:
                return self._reject(destination, reason)

            attempts = await codes.increment_attempts(latest.id, now, self.max_attempts)
            if attempts is None:
                latest = await codes.get_by_id(latest.id)
                reason = self._rejection_reason(latest, now, purpose, owner_id) or ErrorKind.MAX_ATTEMPTS
                return self._reject(destination, reason)

            remaining = max(0, self.max_attempts - attempts)
            return self._reject(destination, ErrorKind.INCORRECT_CODE, remaining_attempts=remaining)

    def _rejection_reason(self, record: VerificationCode, now: datetime, expected_purpose: Optional[str],
                          owner_id: Optional[int] = None) -> Optional[ErrorKind]:
        """Why a row cannot accept any code, in reporting priority order; None if it is live."""
        if record.consumed:
            return ErrorKind.ALREADY_USED
        if _as_utc(record.expires_at) <= now:
            return ErrorKind.EXPIRED
        if record.attempts >= self.max_attempts:
            return ErrorKind.MAX_ATTEMPTS
        if expected_purpose is not None and record.purpose != expected_purpose:
            return ErrorKind.PURPOSE_MISMATCH
        if owner_id is not None and record.owner_id != owner_id:
            return ErrorKind.PURPOSE_MISMATCH
        return None

    def _reject(self, destination: str, reason: ErrorKind,
                remaining_attempts: Optional[int] = None) -> VerificationResult:
        SecurityUtils.log_security_event(
            "verification_code_rejected",
            {"destination": mask_contact(destination), "reason": reason.value,
             "remaining_attempts": remaining_attempts},
        )
        return VerificationResult(success=False, reason=reason, remaining_attempts=remaining_attempts)
