"""In-memory stand-ins for the permission repositories and directories."""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from clinic_permissions.domain.roles import Role


def actions(
    *,
    all: bool = False,
    create: bool = False,
    read: bool = False,
    update: bool = False,
    delete: bool = False,
) -> dict[str, bool]:
    return {"all": all, "create": create, "read": read, "update": update, "delete": delete}


def module_entry(
    module: str,
    module_actions: dict[str, bool] | None = None,
    sub_modules: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "module": module,
        "actions": module_actions or actions(),
        "subModules": sub_modules or [],
    }


def sub_module_entry(name: str, sub_actions: dict[str, bool] | None = None) -> dict[str, Any]:
    return {"name": name, "path": "", "icon": "", "order": 0, "actions": sub_actions or actions()}


class DuplicateKeyError(Exception):
    """Raised where PostgreSQL would reject a row on a unique constraint."""


@dataclass
class FakeUser:
    id: uuid.UUID
    email: str
    role: str
    clinic_id: uuid.UUID | None = None
    is_active: bool = True
    name: str | None = None


@dataclass
class FakeClinic:
    id: uuid.UUID
    name: str
    owner_id: uuid.UUID | None = None
    is_active: bool = True


class FakeUserDirectory:
    def __init__(self, users: list[FakeUser] | None = None) -> None:
        self.users = list(users or [])

    def add(self, role: Role | str, *, clinic_id: uuid.UUID | None = None, **kwargs: Any) -> FakeUser:
        role_value = role.value if isinstance(role, Role) else role
        user_id = kwargs.pop("id", None) or uuid.uuid4()
        user = FakeUser(
            id=user_id,
            email=kwargs.pop("email", f"{role_value.lower()}-{user_id.hex[:6]}@example.com"),
            role=role_value,
            clinic_id=clinic_id,
            **kwargs,
        )
        self.users.append(user)
        return user

    async def get(self, user_id: uuid.UUID) -> FakeUser | None:
        return next((user for user in self.users if user.id == user_id), None)

    async def find_by_id_and_role(self, user_id: uuid.UUID, role: str) -> FakeUser | None:
        return next(
            (user for user in self.users if user.id == user_id and user.role == role),
            None,
        )

    async def find_by_email_and_role(self, email: str, role: str) -> FakeUser | None:
        return next(
            (
                user
                for user in self.users
                if user.email.lower() == email.lower() and user.role == role
            ),
            None,
        )


class FakeClinicDirectory:
    def __init__(self, clinics: list[FakeClinic] | None = None) -> None:
        self.clinics = list(clinics or [])

    def add(self, owner: FakeUser | None = None, name: str = "Clinic") -> FakeClinic:
        clinic = FakeClinic(id=uuid.uuid4(), name=name, owner_id=owner.id if owner else None)
        self.clinics.append(clinic)
        return clinic

    async def get(self, clinic_id: uuid.UUID) -> FakeClinic | None:
        return next((clinic for clinic in self.clinics if clinic.id == clinic_id), None)

    async def find_by_owner(self, owner_id: uuid.UUID) -> FakeClinic | None:
        return next((clinic for clinic in self.clinics if clinic.owner_id == owner_id), None)


@dataclass
class FakeClinicPermission:
    clinic_id: uuid.UUID
    role: str | None
    permissions: list[dict[str, Any]]
    is_active: bool = True
    granted_by: uuid.UUID | None = None
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class FakeStaffPermission:
    staff_id: uuid.UUID
    clinic_id: uuid.UUID
    role: str
    permissions: list[dict[str, Any]]
    is_active: bool = True
    granted_by: uuid.UUID | None = None
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: uuid.UUID = field(default_factory=uuid.uuid4)


def _matches_role(record_role: str | None, role: str) -> bool:
    if role == Role.CLINIC.value:
        return record_role in (role, None)
    return record_role == role


class FakeClinicPermissionRepository:
    """Mirrors the SQL repository, including the (clinic_id, role) unique key.

    NULL roles never collide with each other, as in PostgreSQL.
    """

    def __init__(self, records: list[FakeClinicPermission] | None = None) -> None:
        self.records = list(records or [])
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_upsert: Exception | None = None

    def seed(
        self,
        clinic_id: uuid.UUID,
        role: str | None,
        permissions: list[dict[str, Any]],
        *,
        is_active: bool = True,
        age: timedelta = timedelta(0),
    ) -> FakeClinicPermission:
        record = FakeClinicPermission(
            clinic_id=clinic_id,
            role=role,
            permissions=permissions,
            is_active=is_active,
            last_modified=datetime.now(timezone.utc) - age,
        )
        self.records.append(record)
        return record

    def _check_unique(self, clinic_id: uuid.UUID, role: str, exclude: uuid.UUID | None = None) -> None:
        for record in self.records:
            if record.id != exclude and record.clinic_id == clinic_id and record.role == role:
                raise DuplicateKeyError(f"duplicate key ({clinic_id}, {role})")

    async def get_active(self, clinic_id: uuid.UUID, role: str) -> FakeClinicPermission | None:
        candidates = [
            record
            for record in self.records
            if record.clinic_id == clinic_id
            and record.is_active
            and _matches_role(record.role, role)
        ]
        candidates.sort(key=lambda record: (record.role is None, -record.last_modified.timestamp()))
        return candidates[0] if candidates else None

    async def get_by_key(self, clinic_id: uuid.UUID, role: str) -> FakeClinicPermission | None:
        return next(
            (
                record
                for record in self.records
                if record.clinic_id == clinic_id and record.role == role
            ),
            None,
        )

    async def list_active(
        self,
        clinic_id: uuid.UUID | None = None,
        *,
        include_admin: bool = False,
    ) -> list[FakeClinicPermission]:
        return [
            record
            for record in self.records
            if record.is_active
            and (clinic_id is None or record.clinic_id == clinic_id)
            and (include_admin or record.role != Role.ADMIN.value)
        ]

    async def list_untagged(self, clinic_id: uuid.UUID) -> list[FakeClinicPermission]:
        legacy = [
            record
            for record in self.records
            if record.clinic_id == clinic_id and record.role is None
        ]
        legacy.sort(key=lambda record: record.last_modified, reverse=True)
        return legacy

    async def tag_legacy(
        self,
        record_id: uuid.UUID,
        role: str,
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> bool:
        record = next((item for item in self.records if item.id == record_id), None)
        if record is None or record.role is not None:
            return False
        self._check_unique(record.clinic_id, role, exclude=record.id)
        record.role = role
        record.granted_by = granted_by
        record.is_active = True
        record.last_modified = modified_at
        return True

    async def deactivate_ids(self, record_ids: list[uuid.UUID], modified_at: datetime) -> None:
        for record in self.records:
            if record.id in record_ids:
                record.is_active = False
                record.last_modified = modified_at

    async def upsert(
        self,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> FakeClinicPermission:
        if self.fail_on_upsert is not None:
            raise self.fail_on_upsert
        record = await self.get_by_key(clinic_id, role)
        if record is None:
            record = FakeClinicPermission(clinic_id=clinic_id, role=role, permissions=permissions)
            self.records.append(record)
        record.permissions = permissions
        record.granted_by = granted_by
        record.is_active = True
        record.last_modified = modified_at
        return record

    async def deactivate(self, clinic_id: uuid.UUID, role: str, modified_at: datetime) -> bool:
        matched = [
            record
            for record in self.records
            if record.clinic_id == clinic_id
            and record.is_active
            and _matches_role(record.role, role)
        ]
        for record in matched:
            record.is_active = False
            record.last_modified = modified_at
        return bool(matched)

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class FakeStaffPermissionRepository:
    def __init__(self, records: list[FakeStaffPermission] | None = None) -> None:
        self.records = list(records or [])
        self.commits = 0
        self.rollbacks = 0

    def seed(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        *,
        is_active: bool = True,
    ) -> FakeStaffPermission:
        record = FakeStaffPermission(
            staff_id=staff_id,
            clinic_id=clinic_id,
            role=role,
            permissions=permissions,
            is_active=is_active,
        )
        self.records.append(record)
        return record

    async def get_active(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> FakeStaffPermission | None:
        record = await self.get_by_key(staff_id, clinic_id)
        return record if record is not None and record.is_active else None

    async def get_by_key(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> FakeStaffPermission | None:
        return next(
            (
                record
                for record in self.records
                if record.staff_id == staff_id and record.clinic_id == clinic_id
            ),
            None,
        )

    async def upsert(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        role: str,
        permissions: list[dict[str, Any]],
        granted_by: uuid.UUID,
        modified_at: datetime,
    ) -> FakeStaffPermission:
        record = await self.get_by_key(staff_id, clinic_id)
        if record is None:
            record = FakeStaffPermission(
                staff_id=staff_id, clinic_id=clinic_id, role=role, permissions=permissions
            )
            self.records.append(record)
        record.role = role
        record.permissions = permissions
        record.granted_by = granted_by
        record.is_active = True
        record.last_modified = modified_at
        return record

    async def deactivate(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID, modified_at: datetime
    ) -> bool:
        record = await self.get_active(staff_id, clinic_id)
        if record is None:
            return False
        record.is_active = False
        record.last_modified = modified_at
        return True

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class FakeAuditRecorder:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, **kwargs: Any) -> None:
        self.entries.append(kwargs)

    async def record_denial(self, *, actor_id: Any, target: str, details: dict[str, Any]) -> None:
        self.entries.append(
            {"actor_id": actor_id, "action": "permission_denied", "entity_id": target, "after": details}
        )


class RecordingLock:
    """WriteLock that remembers the keys it was asked to hold."""

    def __init__(self) -> None:
        self.keys: list[str] = []

    def __call__(self, key: str):
        return self._hold(key)

    @asynccontextmanager
    async def _hold(self, key: str):
        self.keys.append(key)
        yield


def admin_claims(admin: FakeUser) -> dict[str, Any]:
    return {"sub": str(admin.id), "role": "admin"}


def clinic_claims(owner: FakeUser) -> dict[str, Any]:
    return {"user": {"_id": str(owner.id), "role": "clinic"}}
