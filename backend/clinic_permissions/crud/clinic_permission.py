import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.roles import LEGACY_DEFAULT_ROLE, Role
from ..models.clinic_permission import ClinicPermission


def _role_filter(role: str) -> ColumnElement[bool]:
    # Untagged legacy rows belong to the default clinic role.
    if role == LEGACY_DEFAULT_ROLE.value:
        return or_(ClinicPermission.role == role, ClinicPermission.role.is_(None))
    return ClinicPermission.role == role


class ClinicPermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, clinic_id: uuid.UUID, role: str) -> ClinicPermission | None:
        result = await self.session.execute(
            select(ClinicPermission)
            .where(
                ClinicPermission.clinic_id == clinic_id,
                ClinicPermission.is_active,
                _role_filter(role),
            )
            # a tagged row wins over a legacy one
            .order_by(ClinicPermission.role.is_(None), ClinicPermission.last_modified.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_key(self, clinic_id: uuid.UUID, role: str) -> ClinicPermission | None:
        result = await self.session.execute(
            select(ClinicPermission).where(
                ClinicPermission.clinic_id == clinic_id,
                ClinicPermission.role == role,
            )
        )
        return result.scalar_one_or_none()

    async def list_active(
        self,
        clinic_id: uuid.UUID | None = None,
        *,
        include_admin: bool = False,
    ) -> list[ClinicPermission]:
        query = select(ClinicPermission).where(ClinicPermission.is_active)
        if clinic_id is not None:
            query = query.where(ClinicPermission.clinic_id == clinic_id)
        if not include_admin:
            query = query.where(
                or_(
                    ClinicPermission.role.is_(None),
                    ClinicPermission.role != Role.ADMIN.value,
                )
            )
        query = query.order_by(ClinicPermission.clinic_id, ClinicPermission.role)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_untagged(self, clinic_id: uuid.UUID) -> list[ClinicPermission]:
        result = await self.session.execute(
            select(ClinicPermission)
            .where(
                ClinicPermission.clinic_id == clinic_id,
                ClinicPermission.role.is_(None),
            )
            .order_by(ClinicPermission.last_modified.desc())
        )
        return list(result.scalars().all())

    async def tag_legacy(
        self,
        record_id: uuid.UUID,
        role: str,
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> bool:
        result = await self.session.execute(
            update(ClinicPermission)
            .where(
                ClinicPermission.id == record_id,
                ClinicPermission.role.is_(None),
            )
            .values(
                role=role,
                granted_by=granted_by,
                is_active=True,
                last_modified=modified_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def deactivate_ids(self, record_ids: list[uuid.UUID], modified_at: datetime) -> None:
        if not record_ids:
            return
        await self.session.execute(
            update(ClinicPermission)
            .where(ClinicPermission.id.in_(record_ids))
            .values(is_active=False, last_modified=modified_at)
            .execution_options(synchronize_session=False)
        )

    async def upsert(
        self,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> ClinicPermission:
        stmt = insert(ClinicPermission).values(
            id=uuid.uuid4(),
            clinic_id=clinic_id,
            role=role,
            permissions=permissions,
            granted_by=granted_by,
            is_active=True,
            last_modified=modified_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_clinic_permissions_clinic_id_role",
            set_={
                "permissions": stmt.excluded.permissions,
                "granted_by": stmt.excluded.granted_by,
                "is_active": True,
                "last_modified": stmt.excluded.last_modified,
            },
        ).returning(ClinicPermission)
        result = await self.session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    async def deactivate(self, clinic_id: uuid.UUID, role: str, modified_at: datetime) -> bool:
        result = await self.session.execute(
            update(ClinicPermission)
            .where(
                ClinicPermission.clinic_id == clinic_id,
                ClinicPermission.is_active,
                _role_filter(role),
            )
            .values(is_active=False, last_modified=modified_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
