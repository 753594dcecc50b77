from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Protocol


class ClinicPermissionData(Protocol):
    id: uuid.UUID
    clinic_id: uuid.UUID
    role: str | None
    permissions: list[dict[str, Any]]
    is_active: bool
    granted_by: uuid.UUID | None
    last_modified: datetime


class StaffPermissionData(Protocol):
    id: uuid.UUID
    staff_id: uuid.UUID
    clinic_id: uuid.UUID
    role: str
    permissions: list[dict[str, Any]]
    is_active: bool
    granted_by: uuid.UUID | None
    last_modified: datetime


class ClinicPermissionRepository(Protocol):
    async def get_active(self, clinic_id: uuid.UUID, role: str) -> ClinicPermissionData | None:
        """Active record for the role; role "clinic" also matches untagged rows."""
        ...

    async def get_by_key(self, clinic_id: uuid.UUID, role: str) -> ClinicPermissionData | None:
        ...

    async def list_active(
        self,
        clinic_id: uuid.UUID | None = None,
        *,
        include_admin: bool = False,
    ) -> list[ClinicPermissionData]:
        ...

    async def list_untagged(self, clinic_id: uuid.UUID) -> list[ClinicPermissionData]:
        """Legacy rows without a role, newest first."""
        ...

    async def tag_legacy(
        self,
        record_id: uuid.UUID,
        role: str,
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> bool:
        """Set role/granted_by/is_active on the row only while it is still untagged."""
        ...

    async def deactivate_ids(self, record_ids: list[uuid.UUID], modified_at: datetime) -> None:
        ...

    async def upsert(
        self,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> ClinicPermissionData:
        ...

    async def deactivate(self, clinic_id: uuid.UUID, role: str, modified_at: datetime) -> bool:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class StaffPermissionRepository(Protocol):
    async def get_active(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> StaffPermissionData | None:
        ...

    async def get_by_key(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> StaffPermissionData | None:
        ...

    async def upsert(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> StaffPermissionData:
        ...

    async def deactivate(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID, modified_at: datetime
    ) -> bool:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class AuditRecorder(Protocol):
    async def record(
        self,
        *,
        actor_id: uuid.UUID | None,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Any | None = None,
        after: Any | None = None,
    ) -> None:
        ...


WriteLock = Callable[[str], AsyncContextManager[None]]
