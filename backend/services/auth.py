from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from dao.user_dao import UserDAO
from models.user import User
from services.db import get_db
from services.errors import AuthServiceError, ErrorKind
from services.security import SecurityConfig, SecurityUtils
import secrets
import logging

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class PasswordHasher:
    """argon2id hashing with fixed cost parameters."""

    def __init__(self, config: SecurityConfig):
        self.pwd_context = CryptContext(
            schemes=["argon2"],
            deprecated="auto",
            argon2__type="ID",
            argon2__time_cost=config.password_hash_time_cost,
            argon2__memory_cost=config.password_hash_memory_cost,
            argon2__parallelism=config.password_hash_parallelism,
        )
        # Verified against when the account does not exist, so both login
        # failure paths cost one hash verification
        self._dummy_hash = self.pwd_context.hash(secrets.token_urlsafe(32))

    def hash(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify(self, hashed: str, password: str) -> bool:
        try:
            return self.pwd_context.verify(password, hashed)
        except (ValueError, TypeError) as e:
            logger.error(f"Password verification failed on malformed hash: {e}")
            return False

    def verify_dummy(self, password: str) -> bool:
        self.pwd_context.verify(password, self._dummy_hash)
        return False


class TokenService:
    """Issues and decodes HS256 session tokens."""

    def __init__(self, config: SecurityConfig):
        self.secret_key = config.jwt_secret_key
        self.algorithm = config.jwt_algorithm
        self.expire_minutes = config.jwt_access_token_expire_minutes

    def create_access_token(self, user_id: int, email: str, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.expire_minutes))
        to_encode = {
            "sub": str(user_id),
            "email": email,
            "exp": expire,
            "iat": now,
            "type": "access",
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_access_token(self, token: str) -> dict:
        """Return the claims of a valid access token or raise UNAUTHORIZED."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"JWT decode failed: {e}")
            raise AuthServiceError(ErrorKind.UNAUTHORIZED)

        if not payload.get("sub") or payload.get("type") != "access":
            raise AuthServiceError(ErrorKind.UNAUTHORIZED)
        return payload


def get_account_service(request: Request):
    return request.app.state.services.accounts


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    Resolve the bearer token to an active account.
    Verification status is not checked here; see require_verified_contact.
    """
    client_ip = SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies)
    tokens: TokenService = request.app.state.services.tokens

    try:
        payload = tokens.decode_access_token(token)
        user_id = int(payload["sub"])
    except (AuthServiceError, ValueError):
        SecurityUtils.log_security_event(
            "invalid_token",
            {"path": request.url.path},
            client_ip=client_ip
        )
        raise AuthServiceError(ErrorKind.UNAUTHORIZED)

    user = await UserDAO(db).get_by_id(user_id)
    if not user or not user.is_active:
        SecurityUtils.log_security_event(
            "token_user_not_found_or_inactive",
            {"user_id": user_id},
            client_ip=client_ip
        )
        raise AuthServiceError(ErrorKind.UNAUTHORIZED)

    return user


async def require_verified_contact(
    request: Request,
    current_user: User = Depends(get_current_user)
) -> User:
    """Gate for routes that need a verified contact; tokens alone are not enough."""
    if not current_user.contact_verified:
        SecurityUtils.log_security_event(
            "unverified_contact_access",
            {"user_id": current_user.id, "path": request.url.path},
            user_email=current_user.email,
            client_ip=SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies)
        )
        raise AuthServiceError(ErrorKind.CONTACT_NOT_VERIFIED)
    return current_user
