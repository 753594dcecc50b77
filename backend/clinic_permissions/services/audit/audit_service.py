import logging
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.audit_log import AuditLogRepository

logger = logging.getLogger(__name__)


class AuditService:
    """Writes permission-change and permission-denial entries to audit_logs.

    Entries are flushed into the caller's session and committed together with
    the change they describe.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit_repo = AuditLogRepository(session)

    async def record(
        self,
        *,
        actor_id: uuid.UUID | None,
        action: str,
        entity_type: str,
        entity_id: str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        await self.audit_repo.create(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
        )

    async def record_denial(
        self,
        *,
        actor_id: uuid.UUID | None,
        target: str,
        details: dict[str, Any],
    ) -> None:
        """Best-effort denial entry; a failing audit write never changes the 403."""
        try:
            await self.audit_repo.create(
                actor_id=actor_id,
                action="permission_denied",
                entity_type="permission",
                entity_id=target,
                before=None,
                after=details,
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.warning("audit_denial_failed target=%s error=%s", target, exc)
            await self.session.rollback()
