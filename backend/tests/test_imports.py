"""
Test that all modules can be imported correctly.
This helps identify import issues in CI/CD environment.
"""
import pytest

class TestImports:
    """Test module imports for CI/CD compatibility."""

    def test_main_app_import(self):
        """Test importing the main FastAPI app."""
        try:
            from main import app
            assert app is not None
        except ImportError as e:
            pytest.fail(f"Failed to import main.app: {e}")

    def test_routes_registered(self):
        from main import app
        paths = {getattr(route, "path", None) for route in app.routes}
        for path in [
            "/api/auth/signup", "/api/auth/login", "/api/auth/send-verification-code",
            "/api/auth/verify-contact", "/api/auth/request-password-reset", "/api/auth/reset-password",
            "/api/auth/request-contact-change", "/api/auth/change-contact", "/api/auth/me",
            "/health", "/health/live",
        ]:
            assert path in paths, f"Missing route {path}"

    def test_database_imports(self):
        """Test importing database modules."""
        try:
            from services.db import get_db, create_db_engine, Base
            assert get_db is not None
            assert create_db_engine is not None
            assert Base is not None
        except ImportError as e:
            pytest.fail(f"Failed to import database modules: {e}")

    def test_model_imports(self):
        """Test importing database models."""
        try:
            from models.user import User
            from models.verification_code import VerificationCode, VerificationPurpose
            from models.login_event import LoginEvent
            assert User.__tablename__ == "users"
            assert VerificationCode.__tablename__ == "verification_codes"
            assert LoginEvent.__tablename__ == "login_events"
            assert {p.value for p in VerificationPurpose} == {"signup", "password_reset", "contact_change"}
        except ImportError as e:
            pytest.fail(f"Failed to import models: {e}")

    def test_service_imports(self):
        """Test importing service modules."""
        try:
            from services.account import AccountService
            from services.verification import VerificationEngine
            from services.container import build_services
            from services.transport import build_transport
            assert AccountService is not None
            assert VerificationEngine is not None
            assert build_services is not None
            assert build_transport is not None
        except ImportError as e:
            pytest.fail(f"Failed to import services: {e}")

    def test_no_module_level_service_instances(self):
        import services.security as security
        import services.rate_limiter as rate_limiter
        assert not hasattr(security, "security_config")
        assert not hasattr(rate_limiter, "rate_limiter")
