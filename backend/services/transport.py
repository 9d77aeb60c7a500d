"""
Outbound message transports for verification codes.

All transports expose ``async send(destination, message)`` and raise
TransportError when the provider cannot deliver.
"""
import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional, Protocol

import httpx

from services.contact import EMAIL, contact_kind, mask_contact
from services.errors import TransportError
from services.security import SecurityConfig

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

MESSAGE_TEMPLATES = {
    "signup": "Your {app} verification code is: {code}. This code will expire in {ttl} minutes.",
    "password_reset": "Your {app} password reset code is: {code}. This code will expire in {ttl} minutes.",
    "contact_change": "Your {app} contact verification code is: {code}. This code will expire in {ttl} minutes.",
}

EMAIL_SUBJECTS = {
    "signup": "Verify your account - {app}",
    "password_reset": "Reset your password - {app}",
    "contact_change": "Confirm your new contact - {app}",
}


def render_code_message(purpose: str, code: str, app_name: str, ttl_minutes: int) -> str:
    return MESSAGE_TEMPLATES[purpose].format(app=app_name, code=code, ttl=ttl_minutes)


def _message_sid(response: httpx.Response) -> Optional[str]:
    # Only used for logging; the provider has already accepted the message
    if "json" not in response.headers.get("content-type", ""):
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("sid") if isinstance(body, dict) else None


class Transport(Protocol):
    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        ...


class LoggingTransport:
    """Development transport: writes the message to the log instead of delivering it."""

    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        logger.info(f"Message to {mask_contact(destination)} would be sent (dev mode): {message}")


class TwilioSmsTransport:
    """Sends SMS through the Twilio Messages REST endpoint."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise TransportError("SMS service is not configured")

        data = {"To": destination, "From": self.from_number, "Body": message}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, data=data, auth=(self.account_sid, self.auth_token), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, data=data, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            logger.error(f"SMS request to {mask_contact(destination)} failed: {e}")
            raise TransportError("SMS provider unreachable") from e

        if response.status_code >= 400:
            logger.error(
                f"SMS provider rejected message to {mask_contact(destination)}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise TransportError(f"SMS provider rejected message ({response.status_code})")

        logger.info(f"SMS sent to {mask_contact(destination)}, sid={_message_sid(response)}")


class SmtpEmailTransport:
    """Sends plain-text email over SMTP with STARTTLS."""

    def __init__(self, host: str, port: int, user: str, password: str,
                 from_email: str, from_name: str, timeout: float = 15.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def _send_sync(self, destination: str, message: str, subject: str) -> None:
        msg = MIMEText(message, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = destination

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.sendmail(self.from_email, [destination], msg.as_string())

    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        if not self.host:
            raise TransportError("Email service is not configured")
        try:
            await asyncio.to_thread(self._send_sync, destination, message, subject or "Verification code")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email to {mask_contact(destination)} failed: {e}")
            raise TransportError("Email provider rejected message") from e
        logger.info(f"Email sent to {mask_contact(destination)}")


class ContactTransport:
    """Routes each message to the SMS or email transport by destination kind."""

    def __init__(self, sms: Transport, email: Transport):
        self.sms = sms
        self.email = email

    async def send(self, destination: str, message: str, subject: Optional[str] = None) -> None:
        if contact_kind(destination) == EMAIL:
            await self.email.send(destination, message, subject)
        else:
            await self.sms.send(destination, message, subject)


def build_transport(config: SecurityConfig) -> ContactTransport:
    if config.sms_provider == "twilio":
        sms = TwilioSmsTransport(
            config.twilio_account_sid,
            config.twilio_auth_token,
            config.twilio_from_number,
            timeout=config.transport_timeout_seconds,
        )
    else:
        sms = LoggingTransport()

    if config.smtp_host:
        email = SmtpEmailTransport(
            config.smtp_host,
            config.smtp_port,
            config.smtp_user,
            config.smtp_password,
            config.smtp_from_email,
            config.smtp_from_name,
            timeout=config.transport_timeout_seconds,
        )
    else:
        email = LoggingTransport()

    return ContactTransport(sms=sms, email=email)
