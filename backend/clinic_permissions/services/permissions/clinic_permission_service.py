"""
Clinic permission store.

One active grant per (clinic, role). Rows written before grants were tagged
with a role are treated as the default clinic role until the next write for
that clinic migrates them.
"""
import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from ...auth.identity_resolver import IdentityResolver
from ...domain.capabilities import dump_permissions, validate_permission_list
from ...domain.ports.directory import ClinicDirectory
from ...domain.ports.permissions import (
    AuditRecorder,
    ClinicPermissionData,
    ClinicPermissionRepository,
    WriteLock,
)
from ...domain.roles import Role
from ...errors import NotFoundError, ValidationError
from .locks import clinic_lock_key, no_write_lock

logger = logging.getLogger(__name__)

ENTITY_TYPE = "clinic_permission"


def parse_role_param(role: str | Role) -> Role:
    try:
        return Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "role"}) from exc


def _snapshot(record: ClinicPermissionData | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "role": record.role,
        "is_active": record.is_active,
        "permissions": record.permissions,
    }


class ClinicPermissionService:
    def __init__(
        self,
        repo: ClinicPermissionRepository,
        clinics: ClinicDirectory,
        resolver: IdentityResolver,
        audit: AuditRecorder,
        *,
        write_lock: WriteLock = no_write_lock,
    ):
        self.repo = repo
        self.clinics = clinics
        self.resolver = resolver
        self.audit = audit
        self.write_lock = write_lock

    async def get(
        self,
        clinic_id: uuid.UUID | None,
        role: str | Role | None = None,
        include_admin: bool = False,
    ) -> ClinicPermissionData | list[ClinicPermissionData] | None:
        """Single active grant when ``role`` is given, otherwise every active one.

        Without a clinic id the listing spans all clinics.
        """
        if role is not None:
            if clinic_id is None:
                raise ValidationError(
                    "clinicId is required when role is given", details={"field": "clinicId"}
                )
            return await self.get_role(clinic_id, role)
        return await self.repo.list_active(clinic_id, include_admin=include_admin)

    async def get_role(
        self, clinic_id: uuid.UUID, role: str | Role
    ) -> ClinicPermissionData | None:
        normalized = parse_role_param(role)
        return await self.repo.get_active(clinic_id, normalized.value)

    async def upsert(
        self,
        clinic_id: uuid.UUID,
        role: str | Role,
        permissions: Any,
        granted_by: Mapping[str, Any] | None,
    ) -> ClinicPermissionData:
        normalized = parse_role_param(role)

        clinic = await self.clinics.get(clinic_id)
        if clinic is None:
            raise NotFoundError("Clinic not found", details={"clinicId": str(clinic_id)})

        modules = validate_permission_list(permissions)
        actor = await self.resolver.require(granted_by, Role.ADMIN)
        now = datetime.now(timezone.utc)

        async with self.write_lock(clinic_lock_key(clinic_id)):
            try:
                before = await self.repo.get_by_key(clinic_id, normalized.value)
                adopted = await self._migrate_legacy(clinic_id, normalized, actor.user_id, now)
                before_snapshot = _snapshot(before) if before is not None else adopted
                record = await self.repo.upsert(
                    clinic_id,
                    normalized.value,
                    dump_permissions(modules),
                    actor.user_id,
                    now,
                )
                await self.audit.record(
                    actor_id=actor.user_id,
                    action="clinic_permission_upsert",
                    entity_type=ENTITY_TYPE,
                    entity_id=f"{clinic_id}:{normalized.value}",
                    before=before_snapshot,
                    after=_snapshot(record),
                )
                await self.repo.commit()
            except Exception:
                await self.repo.rollback()
                raise

        logger.info(
            "clinic_permission_upserted clinic_id=%s role=%s modules=%d granted_by=%s",
            clinic_id,
            normalized.value,
            len(modules),
            actor.user_id,
        )
        return record

    async def deactivate(
        self,
        clinic_id: uuid.UUID,
        role: str | Role,
        actor_id: uuid.UUID | None = None,
    ) -> bool:
        """Soft-delete the grant. Returns False when nothing matched; never raises for that."""
        normalized = parse_role_param(role)
        now = datetime.now(timezone.utc)

        async with self.write_lock(clinic_lock_key(clinic_id)):
            try:
                before = await self.repo.get_active(clinic_id, normalized.value)
                changed = await self.repo.deactivate(clinic_id, normalized.value, now)
                if changed:
                    await self.audit.record(
                        actor_id=actor_id,
                        action="clinic_permission_deactivate",
                        entity_type=ENTITY_TYPE,
                        entity_id=f"{clinic_id}:{normalized.value}",
                        before=_snapshot(before),
                        after=None,
                    )
                await self.repo.commit()
            except Exception:
                await self.repo.rollback()
                raise

        logger.info(
            "clinic_permission_deactivated clinic_id=%s role=%s changed=%s",
            clinic_id,
            normalized.value,
            changed,
        )
        return changed

    async def _migrate_legacy(
        self,
        clinic_id: uuid.UUID,
        role: Role,
        granted_by: uuid.UUID,
        now: datetime,
    ) -> dict[str, Any] | None:
        """Tag the newest active untagged row with ``role`` and retire the rest.

        If the clinic already has a tagged row for ``role`` every untagged row is
        retired instead, keeping one row per (clinic, role). Returns the snapshot
        of the adopted legacy row as it was before tagging, if one was adopted.
        """
        legacy = [
            record for record in await self.repo.list_untagged(clinic_id) if record.is_active
        ]
        if not legacy:
            return None

        adopted = None
        superseded = legacy
        if await self.repo.get_by_key(clinic_id, role.value) is None:
            newest, superseded = legacy[0], legacy[1:]
            snapshot = _snapshot(newest)
            if await self.repo.tag_legacy(newest.id, role.value, granted_by, now):
                logger.info(
                    "clinic_permission_legacy_tagged clinic_id=%s record_id=%s role=%s",
                    clinic_id,
                    newest.id,
                    role.value,
                )
                adopted = snapshot

        stale = [record.id for record in superseded]
        if stale:
            logger.warning(
                "clinic_permission_legacy_superseded clinic_id=%s count=%d",
                clinic_id,
                len(stale),
            )
            await self.repo.deactivate_ids(stale, now)
        return adopted
