from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from models.login_event import LoginEvent

class LoginEventDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, user_id: Optional[int], success: bool, ip_address: Optional[str] = None,
                     user_agent: Optional[str] = None) -> LoginEvent:
        event = LoginEvent(
            user_id=user_id,
            success=success,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.db.add(event)
        await self.db.commit()
        return event

    async def list_for_user(self, user_id: int) -> list[LoginEvent]:
        result = await self.db.execute(
            select(LoginEvent).where(LoginEvent.user_id == user_id).order_by(LoginEvent.id)
        )
        return list(result.scalars().all())
