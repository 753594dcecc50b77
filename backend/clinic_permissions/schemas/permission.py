import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ClinicPermissionUpsert(BaseModel):
    """Full replacement of a clinic's module list for one role.

    ``permissions`` is accepted as raw JSON and checked by the capability
    validator so errors name the offending field.
    """

    model_config = ConfigDict(populate_by_name=True)

    clinic_id: uuid.UUID = Field(..., alias="clinicId")
    role: str = Field(default="clinic", min_length=1, max_length=32)
    permissions: Any = None


class StaffPermissionUpsert(BaseModel):
    permissions: Any = None


class ClinicPermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    clinic_id: uuid.UUID
    role: str | None
    permissions: list[dict[str, Any]]
    is_active: bool
    granted_by: uuid.UUID | None
    last_modified: datetime


class StaffPermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    staff_id: uuid.UUID
    clinic_id: uuid.UUID
    role: str
    permissions: list[dict[str, Any]]
    is_active: bool
    granted_by: uuid.UUID | None
    last_modified: datetime


class DelegationResponse(BaseModel):
    record: StaffPermissionResponse
    dropped: list[str]


class DeactivationResponse(BaseModel):
    deactivated: bool


class PermissionCheckResponse(BaseModel):
    allowed: bool
    reason: str | None = None


class EffectiveActionsResponse(BaseModel):
    module: str
    sub_module: str | None = None
    actions: dict[str, bool]


class AccessibleModulesResponse(BaseModel):
    unrestricted: bool
    modules: list[str]
