"""
Contact method helpers: canonical forms, validation and display masking.

A contact is either a phone number, stored in E.164 form, or an email
address, stored trimmed and lowercased. Everything here is pure.
"""
import re

PHONE = "phone"
EMAIL = "email"

_NON_DIGITS = re.compile(r"\D")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def contact_kind(contact: str) -> str:
    return EMAIL if "@" in contact else PHONE


def format_phone_number(phone_number: str) -> str:
    """Canonicalize a phone number to E.164, assuming NANP for 10-digit input."""
    cleaned = _NON_DIGITS.sub("", phone_number)

    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+{cleaned}"

    if len(cleaned) == 10:
        return f"+1{cleaned}"

    if len(cleaned) > 10:
        return f"+{cleaned}"

    # Too short to place; left for validation to reject
    return phone_number.strip()


def is_valid_phone_number(phone_number: str) -> bool:
    cleaned = _NON_DIGITS.sub("", phone_number)
    return 10 <= len(cleaned) <= 15


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email.strip()))


def normalize_contact(contact: str) -> str:
    if contact_kind(contact) == EMAIL:
        return contact.strip().lower()
    return format_phone_number(contact)


def is_valid_contact(contact: str) -> bool:
    if contact_kind(contact) == EMAIL:
        return is_valid_email(contact)
    return is_valid_phone_number(contact)


def mask_contact(contact: str) -> str:
    """Partially redact a canonical contact so a user can recognise it."""
    if contact_kind(contact) == EMAIL:
        local, _, domain = contact.partition("@")
        if not local:
            return contact
        return f"{local[0]}***@{domain}"

    cleaned = _NON_DIGITS.sub("", contact)
    if len(cleaned) < 4:
        return contact
    last_four = cleaned[-4:]
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+1 (***) ***-{last_four}"
    return f"***-***-{last_four}"
