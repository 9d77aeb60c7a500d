"""
End-to-end tests of the /api/auth routes over an in-process ASGI client.
"""
import pytest

from models.verification_code import VerificationPurpose

pytestmark = pytest.mark.integration

PHONE = "+15551234567"
PASSWORD = "CorrectHorse42"

async def signup(client, email="cook@example.com", contact="(555) 123-4567", password=PASSWORD):
    return await client.post("/api/auth/signup", json={"email": email, "password": password, "contact": contact})

class TestSignupAndLogin:

    async def test_signup_returns_token(self, client, transport):
        response = await signup(client)
        assert response.status_code == 201
        body = response.json()
        assert body["token"]
        assert body["token_type"] == "bearer"
        assert body["contact_verified"] is False
        assert body["requires_verification"] is True
        assert transport.sent[-1].destination == PHONE

    async def test_duplicate_signup(self, client):
        await signup(client)
        response = await signup(client, contact="+15559876543")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    async def test_invalid_email_is_422(self, client):
        response = await signup(client, email="not-an-email")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION"

    async def test_invalid_contact_is_400(self, client):
        response = await signup(client, contact="12345")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION"

    async def test_sixth_account_on_contact(self, client, transport):
        for i in range(5):
            assert (await signup(client, email=f"cook{i}@example.com")).status_code == 201
        response = await signup(client, email="cook5@example.com")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "LIMIT_EXCEEDED"

    async def test_signup_transport_failure(self, client, transport):
        transport.fail = True
        response = await signup(client)
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "TRANSPORT_FAILURE"

    async def test_login(self, client):
        await signup(client)
        response = await client.post("/api/auth/login", json={"email": "cook@example.com", "password": PASSWORD})
        assert response.status_code == 200
        assert response.json()["contact_verified"] is False

    async def test_login_failures_look_identical(self, client):
        await signup(client)
        unknown = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        wrong = await client.post("/api/auth/login", json={"email": "cook@example.com", "password": "Nope12345"})

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json() == {"error": {"code": "INVALID_CREDENTIALS", "message": "Invalid email or password."}}

class TestVerification:

    async def test_verify_contact_flow(self, client, transport, codes, auth_utils):
        codes.push("482913")
        token = (await signup(client)).json()["token"]

        wrong = await client.post("/api/auth/verify-contact", json={"contact": PHONE, "code": "000000"})
        assert wrong.status_code == 400
        assert wrong.json()["error"]["code"] == "INCORRECT_CODE"
        assert wrong.json()["error"]["remaining_attempts"] == 4

        right = await client.post("/api/auth/verify-contact", json={"contact": PHONE, "code": transport.last_code()})
        assert right.status_code == 200
        assert right.json() == {"success": True, "message": "Verification successful."}

        again = await client.post("/api/auth/verify-contact", json={"contact": PHONE, "code": transport.last_code()})
        assert again.json()["error"]["code"] == "ALREADY_USED"

        me = await client.get("/api/auth/me", headers=auth_utils.bearer(token))
        assert me.json()["contact_verified"] is True

    async def test_verify_without_code(self, client):
        response = await client.post("/api/auth/verify-contact", json={"contact": PHONE, "code": "123456"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NO_CODE_FOUND"

    async def test_resend(self, client, transport, auth_utils):
        token = (await signup(client)).json()["token"]
        response = await client.post("/api/auth/send-verification-code", headers=auth_utils.bearer(token))
        assert response.status_code == 200
        assert response.json()["masked_contact"] == "+1 (***) ***-4567"
        assert len(transport.sent) == 2

    async def test_resend_requires_token(self, client):
        response = await client.post("/api/auth/send-verification-code")
        assert response.status_code == 401

    async def test_resend_transport_failure(self, client, transport, auth_utils):
        token = (await signup(client)).json()["token"]
        transport.fail = True
        response = await client.post("/api/auth/send-verification-code", headers=auth_utils.bearer(token))
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "TRANSPORT_FAILURE"

class TestPasswordReset:

    async def test_request_responses_do_not_leak_existence(self, client):
        await signup(client)
        unknown = await client.post("/api/auth/request-password-reset", json={"email": "nobody@example.com"})
        unverified = await client.post("/api/auth/request-password-reset", json={"email": "cook@example.com"})

        assert unknown.status_code == unverified.status_code == 200
        assert unknown.json() == unverified.json()
        assert "masked_contact" not in unknown.json() or unknown.json()["masked_contact"] is None

    async def test_reset_flow(self, client, transport, accounts):
        await signup(client)
        await accounts.verify_signup_contact(PHONE, transport.last_code())

        requested = await client.post("/api/auth/request-password-reset", json={"email": "cook@example.com"})
        assert requested.status_code == 200

        reset = await client.post("/api/auth/reset-password", json={
            "email": "cook@example.com", "code": transport.last_code(), "new_password": "BrandNewPass99"
        })
        assert reset.status_code == 200
        assert reset.json()["success"] is True

        login = await client.post("/api/auth/login", json={"email": "cook@example.com", "password": "BrandNewPass99"})
        assert login.status_code == 200

    async def test_reset_with_signup_code_is_purpose_mismatch(self, client, transport, accounts, codes):
        await signup(client)
        await accounts.verify_signup_contact(PHONE, transport.last_code())
        codes.push("482913")
        await accounts.engine.issue(PHONE, VerificationPurpose.SIGNUP)

        response = await client.post("/api/auth/reset-password", json={
            "email": "cook@example.com", "code": "482913", "new_password": "BrandNewPass99"
        })
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "PURPOSE_MISMATCH"

class TestContactChange:

    async def test_change_contact_flow(self, client, transport, accounts, auth_utils):
        token = (await signup(client)).json()["token"]
        await accounts.verify_signup_contact(PHONE, transport.last_code())
        headers = auth_utils.bearer(token)

        requested = await client.post("/api/auth/request-contact-change", json={"new_contact": "+44 20 7946 0958"},
                                      headers=headers)
        assert requested.status_code == 200
        assert requested.json()["masked_contact"] == "***-***-0958"

        changed = await client.post("/api/auth/change-contact", json={
            "new_contact": "+442079460958", "code": transport.last_code()
        }, headers=headers)
        assert changed.status_code == 200

        me = (await client.get("/api/auth/me", headers=headers)).json()
        assert me["contact"] == "+442079460958"
        assert me["contact_verified"] is True
        assert me["email"] == "cook@example.com"

    async def test_change_contact_requires_token(self, client):
        response = await client.post("/api/auth/change-contact", json={"new_contact": PHONE, "code": "123456"})
        assert response.status_code == 401

class TestHealth:

    async def test_liveness(self, client):
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    async def test_health_checks_database(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "healthy"

    async def test_unknown_route_uses_error_envelope(self, client):
        response = await client.get("/api/auth/nope")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
