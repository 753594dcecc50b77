"""
Staff delegation store.

A clinic delegates a subset of its own grant to a staff member. Whatever the
submission asks for, the stored record never exceeds the clinic's grant for
the staff member's role at the time of the write.
"""
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ...auth.identity_resolver import IdentityResolver
from ...domain.capabilities import (
    clamp_to_ceiling,
    dump_permissions,
    load_permissions,
    validate_permission_list,
)
from ...domain.ports.directory import UserDirectory
from ...domain.ports.permissions import (
    AuditRecorder,
    ClinicPermissionRepository,
    StaffPermissionData,
    StaffPermissionRepository,
    WriteLock,
)
from ...domain.roles import Role, is_staff_tier
from ...errors import NoCeilingDefinedError, NotAuthorizedError, NotFoundError
from .locks import no_write_lock, staff_lock_key

logger = logging.getLogger(__name__)

ENTITY_TYPE = "staff_permission"


@dataclass
class DelegationResult:
    record: StaffPermissionData
    dropped: list[str] = field(default_factory=list)


def _snapshot(record: StaffPermissionData | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "role": record.role,
        "is_active": record.is_active,
        "permissions": record.permissions,
    }


class StaffPermissionService:
    def __init__(
        self,
        repo: StaffPermissionRepository,
        clinic_permissions: ClinicPermissionRepository,
        users: UserDirectory,
        resolver: IdentityResolver,
        audit: AuditRecorder,
        *,
        write_lock: WriteLock = no_write_lock,
    ):
        self.repo = repo
        self.clinic_permissions = clinic_permissions
        self.users = users
        self.resolver = resolver
        self.audit = audit
        self.write_lock = write_lock

    async def get(
        self, staff_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> StaffPermissionData | None:
        return await self.repo.get_active(staff_id, clinic_id)

    async def upsert(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        permissions: Any,
        granted_by: Mapping[str, Any] | None,
    ) -> DelegationResult:
        modules = validate_permission_list(permissions)

        staff = await self.users.get(staff_id)
        if staff is None or not staff.is_active:
            raise NotFoundError("Staff member not found", details={"staffId": str(staff_id)})

        try:
            staff_role = Role.parse(staff.role)
        except ValueError:
            staff_role = None
        if staff.clinic_id != clinic_id or staff_role is None or not is_staff_tier(staff_role):
            raise NotAuthorizedError(
                "Staff member does not belong to this clinic or cannot receive delegated permissions",
                details={"staffId": str(staff_id), "clinicId": str(clinic_id)},
            )

        actor = await self.resolver.require(granted_by, Role.CLINIC)
        if actor.clinic_id != clinic_id:
            raise NotAuthorizedError(
                "Only the owning clinic can delegate permissions",
                details={"clinicId": str(clinic_id)},
            )

        ceiling = await self.clinic_permissions.get_active(clinic_id, staff_role.value)
        if ceiling is None:
            raise NoCeilingDefinedError(
                f"Clinic has no permissions defined for role {staff_role.value}",
                details={"role": staff_role.value},
            )

        clamped = clamp_to_ceiling(modules, load_permissions(ceiling.permissions))
        if clamped.dropped:
            logger.info(
                "staff_permission_clamped staff_id=%s clinic_id=%s dropped=%s",
                staff_id,
                clinic_id,
                ",".join(clamped.dropped),
            )

        now = datetime.now(timezone.utc)
        async with self.write_lock(staff_lock_key(clinic_id, staff_id)):
            try:
                before = await self.repo.get_by_key(staff_id, clinic_id)
                before_snapshot = _snapshot(before)
                record = await self.repo.upsert(
                    staff_id,
                    clinic_id,
                    staff_role.value,
                    dump_permissions(clamped.permissions),
                    actor.user_id,
                    now,
                )
                await self.audit.record(
                    actor_id=actor.user_id,
                    action="staff_permission_upsert",
                    entity_type=ENTITY_TYPE,
                    entity_id=f"{clinic_id}:{staff_id}",
                    before=before_snapshot,
                    after={**_snapshot(record), "dropped": clamped.dropped},
                )
                await self.repo.commit()
            except Exception:
                await self.repo.rollback()
                raise

        logger.info(
            "staff_permission_upserted staff_id=%s clinic_id=%s role=%s granted_by=%s",
            staff_id,
            clinic_id,
            staff_role.value,
            actor.user_id,
        )
        return DelegationResult(record=record, dropped=clamped.dropped)

    async def deactivate(
        self,
        staff_id: uuid.UUID,
        clinic_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        async with self.write_lock(staff_lock_key(clinic_id, staff_id)):
            try:
                before = await self.repo.get_active(staff_id, clinic_id)
                changed = await self.repo.deactivate(staff_id, clinic_id, now)
                if changed:
                    await self.audit.record(
                        actor_id=actor_id,
                        action="staff_permission_deactivate",
                        entity_type=ENTITY_TYPE,
                        entity_id=f"{clinic_id}:{staff_id}",
                        before=_snapshot(before),
                        after=None,
                    )
                await self.repo.commit()
            except Exception:
                await self.repo.rollback()
                raise

        logger.info(
            "staff_permission_deactivated staff_id=%s clinic_id=%s changed=%s",
            staff_id,
            clinic_id,
            changed,
        )
        return changed
