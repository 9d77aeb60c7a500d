"""
Security configuration and shared security utilities.
Reads settings from the environment and provides logging helpers for auth events.
"""
import os
import secrets
import string
from typing import FrozenSet, Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

WEAK_JWT_SECRETS = {"super-secret-key", "secret", "password", "key", "change-me-in-production"}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_set(name: str) -> FrozenSet[str]:
    return frozenset(item.strip() for item in os.getenv(name, "").split(",") if item.strip())


class SecurityConfig:
    """Centralized application configuration with validation."""

    def __init__(self):
        # Database
        self.database_url = os.getenv("DATABASE_URL") or self._build_database_url()

        # Session tokens
        self.jwt_secret_key = self._get_or_generate_jwt_secret()
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_access_token_expire_minutes = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

        # Password policy and argon2 cost parameters
        self.password_min_length = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
        self.password_hash_time_cost = int(os.getenv("PASSWORD_HASH_TIME_COST", "3"))
        self.password_hash_memory_cost = int(os.getenv("PASSWORD_HASH_MEMORY_COST", "65536"))
        self.password_hash_parallelism = int(os.getenv("PASSWORD_HASH_PARALLELISM", "1"))

        # Verification codes
        self.verification_code_length = int(os.getenv("VERIFICATION_CODE_LENGTH", "6"))
        self.verification_code_ttl_minutes = int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", "10"))
        self.verification_max_attempts = int(os.getenv("VERIFICATION_MAX_ATTEMPTS", "5"))
        self.max_accounts_per_contact = int(os.getenv("MAX_ACCOUNTS_PER_CONTACT", "5"))

        # Rate limiting
        self.rate_limit_enabled = _env_bool("RATE_LIMIT_ENABLED", "true")
        self.rate_limit_auth_requests = int(os.getenv("RATE_LIMIT_AUTH_REQUESTS", "10"))
        self.rate_limit_auth_window_seconds = int(os.getenv("RATE_LIMIT_AUTH_WINDOW_SECONDS", "900"))
        self.rate_limit_requests = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
        self.rate_limit_window_seconds = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900"))
        # Peers allowed to set X-Forwarded-For; empty means use the socket address
        self.trusted_proxies = _env_set("TRUSTED_PROXIES")

        # Outbound messaging
        self.app_name = os.getenv("APP_NAME", "Al Dente")
        self.sms_provider = os.getenv("SMS_PROVIDER", "log").lower()
        self.twilio_account_sid = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.twilio_from_number = os.getenv("TWILIO_FROM_NUMBER", "")
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from_email = os.getenv("SMTP_FROM_EMAIL", "noreply@example.com")
        self.smtp_from_name = os.getenv("SMTP_FROM_NAME", self.app_name)
        self.transport_timeout_seconds = float(os.getenv("TRANSPORT_TIMEOUT_SECONDS", "15"))

        # HTTP surface
        self.enable_security_headers = _env_bool("ENABLE_SECURITY_HEADERS", "true")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        self._validate_config()

    def _build_database_url(self) -> str:
        user = os.getenv("POSTGRES_USER", "pantry_user")
        password = os.getenv("POSTGRES_PASSWORD", "secretpassword")
        host = os.getenv("DB_HOST", "localhost")
        port = os.getenv("DB_PORT", "5432")
        name = os.getenv("POSTGRES_DB", "pantry")
        return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"

    def _get_or_generate_jwt_secret(self) -> str:
        """
        Get JWT secret from environment or generate a secure one.
        A generated secret invalidates every issued token on restart.
        """
        secret = os.getenv("JWT_SECRET_KEY")

        if not secret:
            logger.warning("JWT_SECRET_KEY not found in environment. Generating secure random secret.")
            secret = self._generate_secure_secret()

        elif len(secret) < 32:
            logger.error("JWT_SECRET_KEY is too short! Must be at least 32 characters.")
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")

        elif secret in WEAK_JWT_SECRETS:
            logger.error("JWT_SECRET_KEY appears to be a default/weak value!")
            raise ValueError("JWT_SECRET_KEY cannot be a default or weak value")

        return secret

    def _generate_secure_secret(self, length: int = 64) -> str:
        """Generate cryptographically secure secret key."""
        alphabet = string.ascii_letters + string.digits + "!@#$%^&*()_+-="
        return ''.join(secrets.choice(alphabet) for _ in range(length))

    def _validate_config(self):
        """Validate configuration for production readiness."""
        issues = []

        if self.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            issues.append(f"Unsupported JWT algorithm: {self.jwt_algorithm}")

        if self.password_min_length < 8:
            issues.append("Password minimum length too short (<8 characters)")

        if self.verification_code_length < 6:
            issues.append("Verification codes shorter than 6 digits weaken the attempt limit")

        if self.verification_max_attempts > 10:
            issues.append("Verification attempt budget too permissive (>10 attempts)")

        if self.sms_provider == "twilio" and not (
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number
        ):
            issues.append("SMS_PROVIDER=twilio but Twilio credentials are incomplete")

        if issues:
            logger.warning("Security configuration issues detected:")
            for issue in issues:
                logger.warning(f"  - {issue}")


class PasswordValidator:
    """Password policy checks applied before any credential is stored."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    def validate_password(self, password: str) -> tuple[bool, list[str]]:
        """
        Validate password against security policy.
        Returns (is_valid, list_of_errors).
        """
        errors = []

        if len(password) < self.config.password_min_length:
            errors.append(f"Password must be at least {self.config.password_min_length} characters long")

        if password.strip() != password:
            errors.append("Password cannot start or end with whitespace")

        return len(errors) == 0, errors


class SecurityUtils:
    """Security utility functions shared by routes and services."""

    @staticmethod
    def get_client_ip(request, trusted_proxies: FrozenSet[str] = frozenset()) -> str:
        """
        Extract the client IP address. Forwarding headers are honoured only
        when the direct peer is one of ``trusted_proxies``; anyone else could
        set them to dodge per-client limits.
        """
        peer = request.client.host if request.client else "unknown"
        if peer not in trusted_proxies:
            return peer

        forwarded_ips = request.headers.get("X-Forwarded-For")
        if forwarded_ips:
            # Proxies append; the nearest untrusted hop is the client
            hops = [hop.strip() for hop in forwarded_ips.split(",") if hop.strip()]
            for hop in reversed(hops):
                if hop not in trusted_proxies:
                    return hop
            if hops:
                return hops[0]

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return peer

    @staticmethod
    def sanitize_email(email: str) -> str:
        """Normalize an email address for lookups and storage."""
        if not email:
            return ""
        return email.lower().strip()

    @staticmethod
    def log_security_event(event_type: str, details: dict, user_email: Optional[str] = None,
                           client_ip: Optional[str] = None):
        """Log security events for monitoring and analysis."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "user_email": user_email,
            "client_ip": client_ip,
            "details": details
        }

        logger.info(f"SECURITY_EVENT: {log_entry}")

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)
