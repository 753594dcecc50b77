import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.identity_resolver import IdentityResolver, claimed_role
from .config import settings
from .crud.clinic import ClinicRepository
from .crud.clinic_permission import ClinicPermissionRepository
from .crud.staff_permission import StaffPermissionRepository
from .crud.user import UserRepository
from .database import get_session
from .domain.capabilities import Action
from .domain.identity import Identity
from .domain.ports.permissions import WriteLock
from .domain.roles import Role
from .errors import PermissionError
from .infrastructure.redis import get_redis
from .security.token_inspection import ExpiredTokenError, InvalidTokenError, decode_access_token
from .services.audit import AuditService
from .services.permissions.clinic_permission_service import ClinicPermissionService
from .services.permissions.evaluator import PermissionEvaluator
from .services.permissions.locks import no_write_lock, redis_write_lock
from .services.permissions.staff_permission_service import StaffPermissionService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_identity_resolver(db: AsyncSession = Depends(get_db)) -> IdentityResolver:
    return IdentityResolver(UserRepository(db), ClinicRepository(db))


def get_write_lock() -> WriteLock:
    if not settings.permission_write_lock_enabled:
        return no_write_lock
    return redis_write_lock(get_redis(), settings.permission_write_lock_ttl)


def get_audit_service(db: AsyncSession = Depends(get_db)) -> AuditService:
    return AuditService(db)


def get_clinic_permission_service(
    db: AsyncSession = Depends(get_db),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    write_lock: WriteLock = Depends(get_write_lock),
) -> ClinicPermissionService:
    return ClinicPermissionService(
        ClinicPermissionRepository(db),
        ClinicRepository(db),
        resolver,
        AuditService(db),
        write_lock=write_lock,
    )


def get_staff_permission_service(
    db: AsyncSession = Depends(get_db),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    write_lock: WriteLock = Depends(get_write_lock),
) -> StaffPermissionService:
    return StaffPermissionService(
        StaffPermissionRepository(db),
        ClinicPermissionRepository(db),
        UserRepository(db),
        resolver,
        AuditService(db),
        write_lock=write_lock,
    )


def get_permission_evaluator(db: AsyncSession = Depends(get_db)) -> PermissionEvaluator:
    return PermissionEvaluator(
        ClinicPermissionRepository(db),
        StaffPermissionRepository(db),
    )


async def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )

    try:
        return decode_access_token(credentials.credentials)
    except ExpiredTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired"
        ) from None
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        ) from None


async def get_current_identity(
    claims: dict[str, Any] = Depends(get_current_claims),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Identity:
    role = claimed_role(claims)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        )

    identity = await resolver.resolve(claims, role)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found"
        )
    return identity


def require_roles(*roles: Role):
    allowed = frozenset(roles)

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed:
            raise PermissionError(
                "Role not permitted for this operation",
                details={"role": identity.role.value},
            )
        return identity

    return dependency


def require_permission(module: str, action: Action | str, sub_module: str | None = None):
    """Route gate: resolve the caller and deny unless the evaluator allows.

    Denials are logged and recorded in the audit trail before the 403.
    """
    required = Action.parse(action)
    target = f"{module}/{sub_module}.{required.value}" if sub_module else f"{module}.{required.value}"

    async def dependency(
        request: Request,
        identity: Identity = Depends(get_current_identity),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
        audit: AuditService = Depends(get_audit_service),
    ) -> Identity:
        decision = await evaluator.check(identity, module, required, sub_module)
        if decision.allowed:
            return identity

        logger.warning(
            "permission_gate_denied method=%s path=%s user_id=%s module=%s sub_module=%s action=%s",
            request.method,
            request.url.path,
            identity.user_id,
            module,
            sub_module,
            required.value,
        )
        await audit.record_denial(
            actor_id=identity.user_id,
            target=target,
            details={
                "role": identity.role.value,
                "reason": decision.reason,
                "request_method": request.method,
                "request_path": request.url.path,
            },
        )
        raise PermissionError(
            decision.reason or PermissionError.message,
            details={"module": module, "subModule": sub_module, "action": required.value},
        )

    return dependency
