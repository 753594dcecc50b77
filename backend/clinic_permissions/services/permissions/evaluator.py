"""
Permission evaluator.

Answers "may this identity perform ``action`` on ``module`` (optionally
``sub_module``)?" from the stored grants. Denials are values, not exceptions.

Grants are loaded as layers that must all allow the action:

- clinic and doctor: the clinic grant for the role (doctors fall back to the
  clinic role's grant);
- staff-tier roles: the staff delegation, then the clinic grant for the staff
  member's role, so a narrowed clinic grant takes effect without rewriting
  existing delegations.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ...domain.capabilities import (
    CRUD_ACTIONS,
    NO_ACTIONS,
    Action,
    ActionSet,
    ModulePermission,
    evaluate_grant,
    load_permissions,
)
from ...domain.identity import Identity
from ...domain.ports.permissions import (
    ClinicPermissionRepository,
    StaffPermissionRepository,
)
from ...domain.roles import Role

logger = logging.getLogger(__name__)

NO_CLINIC_ASSOCIATION = "no clinic association"
NO_DELEGATION = "no delegation configured"

Layers = list[list[ModulePermission]]


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str | None = None


ALLOWED = PermissionDecision(allowed=True)
FULL_ACTIONS = ActionSet(all=True)


def _deny(reason: str) -> PermissionDecision:
    return PermissionDecision(allowed=False, reason=reason)


def _evaluate_layers(
    layers: Layers, module: str, action: Action, sub_module: str | None
) -> PermissionDecision:
    for modules in layers:
        allowed, reason = evaluate_grant(modules, module, action, sub_module)
        if not allowed:
            return _deny(reason or f"You do not have access to {module}")
    return ALLOWED


class PermissionEvaluator:
    def __init__(
        self,
        clinic_permissions: ClinicPermissionRepository,
        staff_permissions: StaffPermissionRepository,
    ):
        self.clinic_permissions = clinic_permissions
        self.staff_permissions = staff_permissions

    async def check(
        self,
        identity: Identity,
        module: str,
        action: Action | str,
        sub_module: str | None = None,
    ) -> PermissionDecision:
        action = Action.parse(action)
        if identity.is_admin:
            return ALLOWED

        layers = await self._load_layers(identity)
        if isinstance(layers, PermissionDecision):
            decision = layers
        else:
            decision = _evaluate_layers(layers, module, action, sub_module)

        if not decision.allowed:
            logger.debug(
                "permission_denied user_id=%s role=%s module=%s sub_module=%s action=%s reason=%s",
                identity.user_id,
                identity.role.value,
                module,
                sub_module,
                action.value,
                decision.reason,
            )
        return decision

    async def effective_actions(
        self,
        identity: Identity,
        module: str,
        sub_module: str | None = None,
    ) -> dict[str, bool]:
        if identity.is_admin:
            return FULL_ACTIONS.crud_dict()

        layers = await self._load_layers(identity)
        if isinstance(layers, PermissionDecision):
            return NO_ACTIONS.crud_dict()
        return {
            action.value: _evaluate_layers(layers, module, action, sub_module).allowed
            for action in CRUD_ACTIONS
        }

    async def accessible_modules(self, identity: Identity) -> list[str] | None:
        """Module names where the identity holds at least one action.

        None means unrestricted (admin).
        """
        if identity.is_admin:
            return None

        layers = await self._load_layers(identity)
        if isinstance(layers, PermissionDecision):
            return []

        names: list[str] = []
        for entry in layers[0]:
            if entry.module in names:
                continue
            targets: Sequence[str | None] = [None, *(sub.name for sub in entry.sub_modules)]
            if any(
                _evaluate_layers(layers, entry.module, action, target).allowed
                for target in targets
                for action in CRUD_ACTIONS
            ):
                names.append(entry.module)
        return names

    async def _load_layers(self, identity: Identity) -> Layers | PermissionDecision:
        if identity.clinic_id is None:
            return _deny(NO_CLINIC_ASSOCIATION)

        if identity.is_staff_tier:
            delegation = await self.staff_permissions.get_active(
                identity.user_id, identity.clinic_id
            )
            if delegation is None:
                return _deny(NO_DELEGATION)
            ceiling = await self.clinic_permissions.get_active(
                identity.clinic_id, identity.role.value
            )
            if ceiling is None:
                return _deny(f"no permissions configured for role {identity.role.value}")
            return [
                load_permissions(delegation.permissions),
                load_permissions(ceiling.permissions),
            ]

        record = await self.clinic_permissions.get_active(
            identity.clinic_id, identity.role.value
        )
        if record is None and identity.role is Role.DOCTOR:
            record = await self.clinic_permissions.get_active(
                identity.clinic_id, Role.CLINIC.value
            )
        if record is None:
            return _deny(f"no permissions configured for role {identity.role.value}")
        return [load_permissions(record.permissions)]
