"""Clinic endpoints for delegating permissions to the clinic's own staff."""
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends

from ...dependencies import (
    get_current_claims,
    get_staff_permission_service,
    require_roles,
)
from ...domain.identity import Identity
from ...domain.roles import Role
from ...errors import NotAuthorizedError
from ...schemas.permission import (
    DeactivationResponse,
    DelegationResponse,
    StaffPermissionResponse,
    StaffPermissionUpsert,
)
from ...services.permissions.staff_permission_service import StaffPermissionService

router = APIRouter(prefix="/clinic/staff-permissions", tags=["clinic-staff-permissions"])

require_clinic = require_roles(Role.CLINIC)


def _owned_clinic_id(identity: Identity) -> UUID:
    if identity.clinic_id is None:
        raise NotAuthorizedError("No clinic is associated with this account")
    return identity.clinic_id


def _dump(record: Any) -> dict[str, Any]:
    return StaffPermissionResponse.model_validate(record).model_dump(mode="json")


@router.get("/{staff_id}", response_model=dict)
async def get_staff_permissions(
    staff_id: UUID,
    clinic: Identity = Depends(require_clinic),
    service: StaffPermissionService = Depends(get_staff_permission_service),
):
    record = await service.get(staff_id, _owned_clinic_id(clinic))
    return {"success": True, "data": _dump(record) if record is not None else None}


@router.post("/{staff_id}", response_model=dict)
async def upsert_staff_permissions(
    staff_id: UUID,
    payload: StaffPermissionUpsert,
    clinic: Identity = Depends(require_clinic),
    claims: dict[str, Any] = Depends(get_current_claims),
    service: StaffPermissionService = Depends(get_staff_permission_service),
):
    """
    Replace a staff member's delegated grant.

    Grants the clinic does not itself hold for the staff role are removed and
    listed under ``dropped``.
    """
    result = await service.upsert(
        staff_id, _owned_clinic_id(clinic), payload.permissions, claims
    )
    data = DelegationResponse(
        record=StaffPermissionResponse.model_validate(result.record),
        dropped=result.dropped,
    )
    return {"success": True, "data": data.model_dump(mode="json")}


@router.delete("/{staff_id}", response_model=dict)
async def deactivate_staff_permissions(
    staff_id: UUID,
    clinic: Identity = Depends(require_clinic),
    service: StaffPermissionService = Depends(get_staff_permission_service),
):
    changed = await service.deactivate(
        staff_id, _owned_clinic_id(clinic), actor_id=clinic.user_id
    )
    return {"success": True, "data": DeactivationResponse(deactivated=changed).model_dump()}
