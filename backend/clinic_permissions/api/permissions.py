from fastapi import APIRouter, Depends, Query

from ..dependencies import get_current_identity, get_permission_evaluator
from ..domain.capabilities import Action
from ..domain.identity import Identity
from ..schemas.permission import (
    AccessibleModulesResponse,
    EffectiveActionsResponse,
    PermissionCheckResponse,
)
from ..services.permissions.evaluator import PermissionEvaluator

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("/check", response_model=dict)
async def check_permission(
    module: str = Query(..., min_length=1),
    action: str = Query(...),
    sub_module: str | None = Query(None, alias="subModule"),
    identity: Identity = Depends(get_current_identity),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    decision = await evaluator.check(identity, module, Action.parse(action), sub_module)
    data = PermissionCheckResponse(allowed=decision.allowed, reason=decision.reason)
    return {"success": True, "data": data.model_dump()}


@router.get("/effective", response_model=dict)
async def effective_actions(
    module: str = Query(..., min_length=1),
    sub_module: str | None = Query(None, alias="subModule"),
    identity: Identity = Depends(get_current_identity),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    actions = await evaluator.effective_actions(identity, module, sub_module)
    data = EffectiveActionsResponse(module=module, sub_module=sub_module, actions=actions)
    return {"success": True, "data": data.model_dump()}


@router.get("/modules", response_model=dict)
async def accessible_modules(
    identity: Identity = Depends(get_current_identity),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    modules = await evaluator.accessible_modules(identity)
    data = AccessibleModulesResponse(unrestricted=modules is None, modules=modules or [])
    return {"success": True, "data": data.model_dump()}
