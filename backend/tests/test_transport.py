"""
Tests for message rendering and the outbound transports.
"""
import smtplib

import httpx
import pytest

from services.errors import TransportError
from services.security import SecurityConfig
from services.transport import (
    ContactTransport, LoggingTransport, SmtpEmailTransport, TwilioSmsTransport, build_transport,
    render_code_message
)

class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def send(self, destination, message, subject=None):
        self.sent.append((destination, message, subject))

class TestTemplates:

    def test_signup_message(self):
        message = render_code_message("signup", "482913", "Al Dente", 10)
        assert message == "Your Al Dente verification code is: 482913. This code will expire in 10 minutes."

    @pytest.mark.parametrize("purpose, phrase", [
        ("password_reset", "password reset code"),
        ("contact_change", "contact verification code"),
    ])
    def test_purpose_specific_wording(self, purpose, phrase):
        assert phrase in render_code_message(purpose, "000111", "Al Dente", 10)

class TestTwilioSmsTransport:

    def _client(self, handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def test_posts_form_to_messages_endpoint(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = request.content.decode()
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(201, json={"sid": "SM123"})

        async with self._client(handler) as client:
            sms = TwilioSmsTransport("AC123", "token", "+15550001111", client=client)
            await sms.send("+15551234567", "Your code is 123456")

        assert seen["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert "To=%2B15551234567" in seen["body"]
        assert "From=%2B15550001111" in seen["body"]
        assert seen["auth"].startswith("Basic ")

    async def test_accepted_message_with_non_json_body_is_not_an_error(self):
        async with self._client(lambda request: httpx.Response(201, text="Created")) as client:
            sms = TwilioSmsTransport("AC123", "token", "+15550001111", client=client)
            await sms.send("+15551234567", "Your code is 123456")

    async def test_accepted_message_with_malformed_json_is_not_an_error(self):
        def handler(request):
            return httpx.Response(201, content=b"{not json", headers={"content-type": "application/json"})

        async with self._client(handler) as client:
            sms = TwilioSmsTransport("AC123", "token", "+15550001111", client=client)
            await sms.send("+15551234567", "Your code is 123456")

    async def test_provider_rejection_raises(self):
        async with self._client(lambda request: httpx.Response(400, json={"message": "invalid To"})) as client:
            sms = TwilioSmsTransport("AC123", "token", "+15550001111", client=client)
            with pytest.raises(TransportError):
                await sms.send("+15551234567", "Your code is 123456")

    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with self._client(handler) as client:
            sms = TwilioSmsTransport("AC123", "token", "+15550001111", client=client)
            with pytest.raises(TransportError):
                await sms.send("+15551234567", "Your code is 123456")

    async def test_unconfigured_raises(self):
        with pytest.raises(TransportError):
            await TwilioSmsTransport("", "", "").send("+15551234567", "hi")

class TestSmtpEmailTransport:

    async def test_smtp_failure_raises(self, monkeypatch):
        class FailingSMTP:
            def __init__(self, *args, **kwargs):
                raise smtplib.SMTPConnectError(421, "unavailable")

        monkeypatch.setattr(smtplib, "SMTP", FailingSMTP)
        email = SmtpEmailTransport("smtp.example.com", 587, "", "", "noreply@example.com", "Al Dente")
        with pytest.raises(TransportError):
            await email.send("cook@example.com", "Your code is 123456", "Verify")

    async def test_sends_over_starttls(self, monkeypatch):
        calls = []

        class FakeSMTP:
            def __init__(self, host, port, timeout=None):
                calls.append(("connect", host, port))

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def starttls(self):
                calls.append(("starttls",))

            def login(self, user, password):
                calls.append(("login", user))

            def sendmail(self, from_addr, to_addrs, msg):
                calls.append(("sendmail", from_addr, tuple(to_addrs)))

        monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
        email = SmtpEmailTransport("smtp.example.com", 587, "mailer", "pw", "noreply@example.com", "Al Dente")
        await email.send("cook@example.com", "Your code is 123456", "Verify")

        assert calls == [
            ("connect", "smtp.example.com", 587),
            ("starttls",),
            ("login", "mailer"),
            ("sendmail", "noreply@example.com", ("cook@example.com",)),
        ]

class TestRouting:

    async def test_routes_by_contact_kind(self):
        sms, email = RecordingTransport(), RecordingTransport()
        transport = ContactTransport(sms=sms, email=email)

        await transport.send("+15551234567", "sms body")
        await transport.send("cook@example.com", "email body", "Subject")

        assert sms.sent == [("+15551234567", "sms body", None)]
        assert email.sent == [("cook@example.com", "email body", "Subject")]

    def test_build_transport_defaults_to_logging(self, monkeypatch):
        monkeypatch.setenv("SMS_PROVIDER", "log")
        monkeypatch.delenv("SMTP_HOST", raising=False)
        transport = build_transport(SecurityConfig())
        assert isinstance(transport.sms, LoggingTransport)
        assert isinstance(transport.email, LoggingTransport)

    def test_build_transport_twilio(self, monkeypatch):
        monkeypatch.setenv("SMS_PROVIDER", "twilio")
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "token")
        monkeypatch.setenv("TWILIO_FROM_NUMBER", "+15550001111")
        transport = build_transport(SecurityConfig())
        assert isinstance(transport.sms, TwilioSmsTransport)
        assert transport.sms.account_sid == "AC123"
