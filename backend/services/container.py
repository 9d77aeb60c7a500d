from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.account import AccountService
from services.auth import PasswordHasher, TokenService
from services.security import SecurityConfig, SecurityUtils
from services.transport import Transport, build_transport
from services.verification import VerificationEngine


@dataclass
class ServiceContainer:
    """Everything the routes need, built once at startup and kept on app.state."""
    config: SecurityConfig
    engine: VerificationEngine
    accounts: AccountService
    tokens: TokenService
    hasher: PasswordHasher
    transport: Transport


def build_services(config: SecurityConfig, session_factory: async_sessionmaker[AsyncSession],
                   transport: Optional[Transport] = None,
                   clock: Callable[[], datetime] = SecurityUtils.get_utc_now,
                   code_generator: Optional[Callable[[], str]] = None) -> ServiceContainer:
    transport = transport or build_transport(config)
    engine = VerificationEngine(session_factory, config, clock=clock, code_generator=code_generator)
    hasher = PasswordHasher(config)
    tokens = TokenService(config)
    accounts = AccountService(session_factory, engine, transport, hasher, tokens, config)
    return ServiceContainer(
        config=config,
        engine=engine,
        accounts=accounts,
        tokens=tokens,
        hasher=hasher,
        transport=transport,
    )
