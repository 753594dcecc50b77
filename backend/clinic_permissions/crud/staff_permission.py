import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.staff_permission import StaffPermission


class StaffPermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> StaffPermission | None:
        result = await self.session.execute(
            select(StaffPermission).where(
                StaffPermission.staff_id == staff_id,
                StaffPermission.clinic_id == clinic_id,
                StaffPermission.is_active,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_key(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> StaffPermission | None:
        result = await self.session.execute(
            select(StaffPermission).where(
                StaffPermission.staff_id == staff_id,
                StaffPermission.clinic_id == clinic_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> StaffPermission:
        stmt = insert(StaffPermission).values(
            id=uuid.uuid4(),
            staff_id=staff_id,
            clinic_id=clinic_id,
            role=role,
            permissions=permissions,
            granted_by=granted_by,
            is_active=True,
            last_modified=modified_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_staff_permissions_staff_id_clinic_id",
            set_={
                "role": stmt.excluded.role,
                "permissions": stmt.excluded.permissions,
                "granted_by": stmt.excluded.granted_by,
                "is_active": True,
                "last_modified": stmt.excluded.last_modified,
            },
        ).returning(StaffPermission)
        result = await self.session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    async def deactivate(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID, modified_at: datetime
    ) -> bool:
        result = await self.session.execute(
            update(StaffPermission)
            .where(
                StaffPermission.staff_id == staff_id,
                StaffPermission.clinic_id == clinic_id,
                StaffPermission.is_active,
            )
            .values(is_active=False, last_modified=modified_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
