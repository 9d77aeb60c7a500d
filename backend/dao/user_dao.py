from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from models.user import User

class UserDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def get_by_id(self, id: int) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def create_user(self, user: User) -> User:
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def count_by_contact(self, contact: str, exclude_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(User).where(User.contact == contact)
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def mark_contact_verified(self, id: int, contact: str) -> bool:
        """Flip the verified flag, but only while the account still holds this contact."""
        result = await self.db.execute(
            update(User)
            .where(User.id == id, User.contact == contact)
            .values(contact_verified=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def update_contact(self, id: int, contact: str, verified: bool) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == id)
            .values(contact=contact, contact_verified=verified, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def update_password(self, id: int, hashed_password: str) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == id)
            .values(hashed_password=hashed_password, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def touch_last_login(self, id: int) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == id)
            .values(last_login_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
