import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.clinic import Clinic


class ClinicRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, clinic_id: uuid.UUID) -> Clinic | None:
        return await self.session.get(Clinic, clinic_id)

    async def find_by_owner(self, owner_id: uuid.UUID) -> Clinic | None:
        result = await self.session.execute(
            select(Clinic)
            .where(Clinic.owner_id == owner_id)
            .order_by(Clinic.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()
