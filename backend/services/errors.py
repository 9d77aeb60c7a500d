"""
Error kinds shared by the verification engine, the account service and the API layer.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    NO_CODE_FOUND = "NO_CODE_FOUND"
    ALREADY_USED = "ALREADY_USED"
    EXPIRED = "EXPIRED"
    MAX_ATTEMPTS = "MAX_ATTEMPTS"
    PURPOSE_MISMATCH = "PURPOSE_MISMATCH"
    INCORRECT_CODE = "INCORRECT_CODE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    NOT_FOUND = "NOT_FOUND"
    CONTACT_NOT_VERIFIED = "CONTACT_NOT_VERIFIED"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    INTERNAL = "INTERNAL"


ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.LIMIT_EXCEEDED: 400,
    ErrorKind.NO_CODE_FOUND: 400,
    ErrorKind.ALREADY_USED: 400,
    ErrorKind.EXPIRED: 400,
    ErrorKind.MAX_ATTEMPTS: 400,
    ErrorKind.PURPOSE_MISMATCH: 400,
    ErrorKind.INCORRECT_CODE: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONTACT_NOT_VERIFIED: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TRANSPORT_FAILURE: 503,
    ErrorKind.INTERNAL: 500,
}

DEFAULT_MESSAGES = {
    ErrorKind.VALIDATION: "Invalid request data.",
    ErrorKind.CONFLICT: "User with this email already exists.",
    ErrorKind.LIMIT_EXCEEDED: "This contact has reached the maximum number of associated accounts.",
    ErrorKind.NO_CODE_FOUND: "No verification code found for this contact. Please request a new code.",
    ErrorKind.ALREADY_USED: "This verification code has already been used. Please request a new code if needed.",
    ErrorKind.EXPIRED: "Verification code has expired. Please request a new code.",
    ErrorKind.MAX_ATTEMPTS: "Too many failed attempts. Please request a new verification code.",
    ErrorKind.PURPOSE_MISMATCH: "This verification code cannot be used for this purpose. Please request a new code.",
    ErrorKind.INCORRECT_CODE: "Incorrect verification code.",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorKind.NOT_FOUND: "Account not found.",
    ErrorKind.CONTACT_NOT_VERIFIED: "Contact verification is required to access this resource.",
    ErrorKind.UNAUTHORIZED: "Invalid authentication credentials.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.TRANSPORT_FAILURE: "Failed to send verification code. Please try again.",
    ErrorKind.INTERNAL: "Internal server error.",
}


def incorrect_code_message(remaining_attempts: int) -> str:
    if remaining_attempts <= 0:
        return "Incorrect verification code. Maximum attempts reached. Please request a new code."
    plural = "" if remaining_attempts == 1 else "s"
    return f"Incorrect verification code. You have {remaining_attempts} attempt{plural} remaining."


class AuthServiceError(Exception):
    """Business-rule failure carrying an explicit error kind."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None,
                 remaining_attempts: Optional[int] = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.remaining_attempts = remaining_attempts
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.kind]

    def to_dict(self) -> dict:
        body = {"code": self.kind.value, "message": self.message}
        if self.remaining_attempts is not None:
            body["remaining_attempts"] = self.remaining_attempts
        return body


class TransportError(Exception):
    """Raised by message transports when a destination cannot be reached."""
