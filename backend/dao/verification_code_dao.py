from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from models.verification_code import VerificationCode

class VerificationCodeDAO:
    """
    Verification store backed by the verification_codes table.

    Every method that mutates a row does so with a single conditional UPDATE,
    so concurrent checks against the same row cannot both succeed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, destination: str, code: str, purpose: str, now: datetime,
                    ttl_minutes: int, owner_id: Optional[int] = None) -> VerificationCode:
        """Persist a new code. Earlier rows for the same destination are left untouched."""
        record = VerificationCode(
            destination=destination,
            code=code,
            purpose=purpose,
            owner_id=owner_id,
            issued_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
            attempts=0,
            consumed=False,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def find_latest_active(self, destination: str, now: datetime, code: Optional[str] = None,
                                 purpose: Optional[str] = None,
                                 owner_id: Optional[int] = None) -> Optional[VerificationCode]:
        query = select(VerificationCode).where(
            VerificationCode.destination == destination,
            VerificationCode.consumed.is_(False),
            VerificationCode.expires_at > now,
        )
        if code is not None:
            query = query.where(VerificationCode.code == code)
        if purpose is not None:
            query = query.where(VerificationCode.purpose == purpose)
        if owner_id is not None:
            query = query.where(VerificationCode.owner_id == owner_id)
        query = query.order_by(VerificationCode.issued_at.desc(), VerificationCode.id.desc()).limit(1)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def find_latest_any(self, destination: str) -> Optional[VerificationCode]:
        result = await self.db.execute(
            select(VerificationCode)
            .where(VerificationCode.destination == destination)
            .order_by(VerificationCode.issued_at.desc(), VerificationCode.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_by_id(self, id: int) -> Optional[VerificationCode]:
        result = await self.db.execute(
            select(VerificationCode)
            .where(VerificationCode.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def consume_if_valid(self, id: int, code: str, now: datetime, max_attempts: int) -> bool:
        """
        Mark the row consumed if it is still unconsumed, unexpired, under the
        attempt budget and holds exactly this code. Returns True for the one
        caller whose update took effect.
        """
        result = await self.db.execute(
            update(VerificationCode)
            .where(
                VerificationCode.id == id,
                VerificationCode.code == code,
                VerificationCode.consumed.is_(False),
                VerificationCode.expires_at > now,
                VerificationCode.attempts < max_attempts,
            )
            .values(consumed=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def increment_attempts(self, id: int, now: datetime, max_attempts: int) -> Optional[int]:
        """
        Count one mismatched submission against a live row. Returns the new
        attempt count, or None when the row was consumed, expired or locked
        in the meantime and was left unchanged.
        """
        result = await self.db.execute(
            update(VerificationCode)
            .where(
                VerificationCode.id == id,
                VerificationCode.consumed.is_(False),
                VerificationCode.expires_at > now,
                VerificationCode.attempts < max_attempts,
            )
            .values(attempts=VerificationCode.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return None
        attempts = await self.db.execute(
            select(VerificationCode.attempts).where(VerificationCode.id == id)
        )
        return attempts.scalar_one()
