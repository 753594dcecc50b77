import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def find_by_id_and_role(self, user_id: uuid.UUID, role: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id, User.role == role)
        )
        return result.scalar_one_or_none()

    async def find_by_email_and_role(self, email: str, role: str) -> User | None:
        result = await self.session.execute(
            select(User).where(
                func.lower(User.email) == email.strip().lower(),
                User.role == role,
            )
        )
        return result.scalar_one_or_none()
