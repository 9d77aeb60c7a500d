"""
Account flows built on the verification engine: signup, login, password
reset and contact change.

Ordering rules:
- input validation happens before any store mutation;
- a code row is persisted before its message is dispatched, and a failed
  dispatch never removes the row, so the user can always ask for a resend;
- login audit writes are best-effort and never fail the login.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dao.login_event_dao import LoginEventDAO
from dao.user_dao import UserDAO
from models.user import User
from models.verification_code import VerificationCode, VerificationPurpose
from services.auth import PasswordHasher, TokenService
from services.contact import is_valid_contact, mask_contact, normalize_contact
from services.errors import AuthServiceError, ErrorKind, TransportError
from services.security import PasswordValidator, SecurityConfig, SecurityUtils
from services.transport import EMAIL_SUBJECTS, Transport, render_code_message
from services.verification import VerificationEngine, VerificationResult

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    token: str
    contact_verified: bool
    requires_verification: bool = False


class AccountService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: VerificationEngine,
                 transport: Transport, hasher: PasswordHasher, tokens: TokenService,
                 config: SecurityConfig):
        self._session_factory = session_factory
        self.engine = engine
        self._transport = transport
        self._hasher = hasher
        self._tokens = tokens
        self._password_validator = PasswordValidator(config)
        self.max_accounts_per_contact = config.max_accounts_per_contact
        self.app_name = config.app_name

    # -- validation helpers -------------------------------------------------

    def _normalize_contact(self, contact: str) -> str:
        if not contact or not is_valid_contact(contact):
            raise AuthServiceError(ErrorKind.VALIDATION, "Invalid phone number or email format.")
        return normalize_contact(contact)

    def _check_password(self, password: str) -> None:
        is_valid, errors = self._password_validator.validate_password(password)
        if not is_valid:
            raise AuthServiceError(ErrorKind.VALIDATION, " ".join(errors))

    def _check_code(self, code: str) -> None:
        if not code or not (code.isascii() and code.isdigit()) or len(code) != self.engine.code_length:
            raise AuthServiceError(
                ErrorKind.VALIDATION, f"Verification code must be {self.engine.code_length} digits."
            )

    def _check_contact_capacity(self, linked_accounts: int) -> None:
        if linked_accounts >= self.max_accounts_per_contact:
            raise AuthServiceError(ErrorKind.LIMIT_EXCEEDED)

    # -- code issuance ------------------------------------------------------

    async def _dispatch(self, record: VerificationCode) -> None:
        message = render_code_message(record.purpose, record.code, self.app_name, self.engine.ttl_minutes)
        subject = EMAIL_SUBJECTS[record.purpose].format(app=self.app_name)
        try:
            await self._transport.send(record.destination, message, subject)
        except TransportError as e:
            logger.error(
                f"Failed to send {record.purpose} code to {mask_contact(record.destination)}: {e}"
            )
            raise AuthServiceError(ErrorKind.TRANSPORT_FAILURE) from e

    async def send_verification_code(self, destination: str, purpose: VerificationPurpose,
                                     owner_id: Optional[int] = None) -> str:
        """Issue a code, then dispatch it. Returns the masked destination."""
        record = await self.engine.issue(destination, purpose, owner_id=owner_id)
        await self._dispatch(record)
        return mask_contact(record.destination)

    # -- signup and login ---------------------------------------------------

    async def signup(self, email: str, password: str, contact: str) -> AuthResult:
        email = SecurityUtils.sanitize_email(email)
        contact = self._normalize_contact(contact)
        self._check_password(password)

        async with self._session_factory() as db:
            users = UserDAO(db)
            if await users.get_by_email(email):
                SecurityUtils.log_security_event("duplicate_signup_attempt", {}, user_email=email)
                raise AuthServiceError(ErrorKind.CONFLICT)

            self._check_contact_capacity(await users.count_by_contact(contact))

            user = User(
                email=email,
                hashed_password=self._hasher.hash(password),
                contact=contact,
                contact_verified=False,
            )
            try:
                user = await users.create_user(user)
            except IntegrityError:
                await db.rollback()
                raise AuthServiceError(ErrorKind.CONFLICT)

        SecurityUtils.log_security_event(
            "user_signup_success",
            {"user_id": user.id, "contact": mask_contact(contact)},
            user_email=email
        )
        # The account and its code row are kept if dispatch fails; the user
        # can log in and request a resend
        await self.send_verification_code(contact, VerificationPurpose.SIGNUP, owner_id=user.id)

        return AuthResult(
            token=self._tokens.create_access_token(user.id, user.email),
            contact_verified=False,
            requires_verification=True,
        )

    async def login(self, email: str, password: str, client_ip: Optional[str] = None,
                    user_agent: Optional[str] = None) -> AuthResult:
        email = SecurityUtils.sanitize_email(email)

        async with self._session_factory() as db:
            user = await UserDAO(db).get_by_email(email)

        if user is None:
            self._hasher.verify_dummy(password)
            await self._record_login(None, False, client_ip, user_agent)
            SecurityUtils.log_security_event("failed_login_user_not_found", {}, user_email=email,
                                             client_ip=client_ip)
            raise AuthServiceError(ErrorKind.INVALID_CREDENTIALS)

        if not self._hasher.verify(user.hashed_password, password) or not user.is_active:
            await self._record_login(user.id, False, client_ip, user_agent)
            SecurityUtils.log_security_event("failed_login_wrong_password", {"user_id": user.id},
                                             user_email=email, client_ip=client_ip)
            raise AuthServiceError(ErrorKind.INVALID_CREDENTIALS)

        await self._record_login(user.id, True, client_ip, user_agent)
        SecurityUtils.log_security_event("successful_login", {"user_id": user.id}, user_email=email,
                                         client_ip=client_ip)
        return AuthResult(
            token=self._tokens.create_access_token(user.id, user.email),
            contact_verified=user.contact_verified,
            requires_verification=not user.contact_verified,
        )

    async def _record_login(self, user_id: Optional[int], success: bool, client_ip: Optional[str],
                            user_agent: Optional[str]) -> None:
        try:
            async with self._session_factory() as db:
                await LoginEventDAO(db).record(user_id, success, ip_address=client_ip, user_agent=user_agent)
                if success:
                    await UserDAO(db).touch_last_login(user_id)
        except Exception as e:
            logger.error(f"Failed to record login event for user {user_id}: {e}")

    # -- signup verification --------------------------------------------------

    async def resend_signup_code(self, account_id: int) -> str:
        user = await self.get_account(account_id)
        if user.contact_verified:
            raise AuthServiceError(ErrorKind.CONFLICT, "Contact is already verified.")
        if not user.contact:
            raise AuthServiceError(ErrorKind.VALIDATION, "No contact method on this account.")
        return await self.send_verification_code(user.contact, VerificationPurpose.SIGNUP, owner_id=user.id)

    async def verify_signup_contact(self, destination: str, code: str) -> VerificationResult:
        destination = self._normalize_contact(destination)
        self._check_code(code)
        result = await self.engine.verify(destination, code, VerificationPurpose.SIGNUP)
        result.raise_for_failure()
        return result

    # -- password reset -------------------------------------------------------

    async def request_password_reset(self, email: str) -> Optional[str]:
        """
        Send a reset code to the account's verified contact.

        Returns the masked contact, or None when there is no account or no
        verified contact. Callers facing anonymous clients must not reveal
        which of the two happened.
        """
        email = SecurityUtils.sanitize_email(email)
        async with self._session_factory() as db:
            user = await UserDAO(db).get_by_email(email)

        if user is None:
            SecurityUtils.log_security_event("password_reset_unknown_email", {}, user_email=email)
            return None
        if not user.contact or not user.contact_verified:
            SecurityUtils.log_security_event("password_reset_unverified_contact", {"user_id": user.id},
                                             user_email=email)
            return None

        masked = await self.send_verification_code(user.contact, VerificationPurpose.PASSWORD_RESET,
                                                   owner_id=user.id)
        SecurityUtils.log_security_event("password_reset_code_sent", {"user_id": user.id}, user_email=email)
        return masked

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        email = SecurityUtils.sanitize_email(email)
        self._check_password(new_password)
        self._check_code(code)

        async with self._session_factory() as db:
            user = await UserDAO(db).get_by_email(email)

        # Unknown accounts look exactly like accounts with no outstanding code
        if user is None or not user.contact or not user.contact_verified:
            raise AuthServiceError(ErrorKind.NO_CODE_FOUND)

        # Contacts are shared by several accounts; a code only resets its owner
        result = await self.engine.verify(user.contact, code, VerificationPurpose.PASSWORD_RESET,
                                          owner_id=user.id)
        result.raise_for_failure()

        async with self._session_factory() as db:
            await UserDAO(db).update_password(user.id, self._hasher.hash(new_password))

        SecurityUtils.log_security_event("password_reset_success", {"user_id": user.id}, user_email=email)

    # -- contact change -------------------------------------------------------

    async def request_contact_change(self, account_id: int, new_contact: str) -> str:
        new_contact = self._normalize_contact(new_contact)
        user = await self.get_account(account_id)
        if user.contact == new_contact and user.contact_verified:
            raise AuthServiceError(ErrorKind.VALIDATION, "This is already your verified contact.")

        async with self._session_factory() as db:
            self._check_contact_capacity(await UserDAO(db).count_by_contact(new_contact, exclude_id=account_id))

        return await self.send_verification_code(new_contact, VerificationPurpose.CONTACT_CHANGE,
                                                 owner_id=account_id)

    async def change_contact(self, account_id: int, new_contact: str, code: str) -> None:
        new_contact = self._normalize_contact(new_contact)
        self._check_code(code)
        await self.get_account(account_id)

        result = await self.engine.verify(new_contact, code, VerificationPurpose.CONTACT_CHANGE,
                                          owner_id=account_id)
        result.raise_for_failure()

        async with self._session_factory() as db:
            users = UserDAO(db)
            self._check_contact_capacity(await users.count_by_contact(new_contact, exclude_id=account_id))
            await users.update_contact(account_id, new_contact, verified=True)

        SecurityUtils.log_security_event(
            "contact_change_success",
            {"user_id": account_id, "contact": mask_contact(new_contact)},
        )

    # -- profile ----------------------------------------------------------------

    async def get_account(self, account_id: int) -> User:
        async with self._session_factory() as db:
            user = await UserDAO(db).get_by_id(account_id)
        if user is None:
            raise AuthServiceError(ErrorKind.NOT_FOUND)
        return user
