"""
Admin endpoints for clinic-level permission grants.

Reads are open to admins and to agent/doctorStaff users the clinic allowed to
manage permissions (scoped to their own clinic). Writes are admin-only.
"""
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ...dependencies import (
    get_clinic_permission_service,
    get_current_claims,
    require_permission,
    require_roles,
)
from ...domain.capabilities import Action
from ...domain.identity import Identity
from ...domain.roles import Role
from ...errors import NotAuthorizedError, PermissionError
from ...schemas.permission import (
    ClinicPermissionResponse,
    ClinicPermissionUpsert,
    DeactivationResponse,
)
from ...services.permissions.clinic_permission_service import ClinicPermissionService

router = APIRouter(prefix="/admin/permissions", tags=["admin-permissions"])

MANAGE_MODULE = "admin_staff_management"
MANAGE_SUB_MODULE = "Manage Clinic Permissions"
DELEGATED_READ_ROLES = frozenset({Role.AGENT, Role.DOCTOR_STAFF})

read_gate = require_permission(MANAGE_MODULE, Action.READ, MANAGE_SUB_MODULE)


def _dump(record: Any) -> dict[str, Any]:
    return ClinicPermissionResponse.model_validate(record).model_dump(mode="json")


def _scope_delegated_read(identity: Identity, clinic_id: UUID | None) -> UUID | None:
    if identity.role not in DELEGATED_READ_ROLES:
        raise PermissionError("Admin access required")
    if clinic_id is not None and clinic_id != identity.clinic_id:
        raise NotAuthorizedError("Permissions of another clinic are not visible")
    return identity.clinic_id


@router.get("/clinic", response_model=dict)
async def get_clinic_permissions(
    clinic_id: UUID | None = Query(None, alias="clinicId"),
    role: str | None = Query(None),
    include_admin: bool = Query(False, alias="includeAdmin"),
    identity: Identity = Depends(read_gate),
    service: ClinicPermissionService = Depends(get_clinic_permission_service),
):
    """
    Active clinic grants.

    With ``role`` the single grant for that role is returned (or null),
    otherwise every active grant of the clinic.
    """
    if not identity.is_admin:
        clinic_id = _scope_delegated_read(identity, clinic_id)
        include_admin = False

    result = await service.get(clinic_id, role, include_admin)
    if role is not None:
        data = _dump(result) if result is not None else None
    else:
        data = [_dump(record) for record in result]
    return {"success": True, "data": data}


@router.post("/clinic", response_model=dict)
async def upsert_clinic_permissions(
    payload: ClinicPermissionUpsert,
    _admin: Identity = Depends(require_roles(Role.ADMIN)),
    claims: dict[str, Any] = Depends(get_current_claims),
    service: ClinicPermissionService = Depends(get_clinic_permission_service),
):
    record = await service.upsert(payload.clinic_id, payload.role, payload.permissions, claims)
    return {"success": True, "data": _dump(record)}


@router.delete("/clinic", response_model=dict)
async def deactivate_clinic_permissions(
    clinic_id: UUID = Query(..., alias="clinicId"),
    role: str = Query("clinic"),
    admin: Identity = Depends(require_roles(Role.ADMIN)),
    service: ClinicPermissionService = Depends(get_clinic_permission_service),
):
    changed = await service.deactivate(clinic_id, role, actor_id=admin.user_id)
    return {"success": True, "data": DeactivationResponse(deactivated=changed).model_dump()}
