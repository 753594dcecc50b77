from __future__ import annotations

import uuid
from dataclasses import dataclass

from .roles import Role, is_staff_tier


@dataclass(frozen=True)
class Identity:
    """Canonical caller identity, derived once per request."""

    user_id: uuid.UUID
    role: Role
    clinic_id: uuid.UUID | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_staff_tier(self) -> bool:
        return is_staff_tier(self.role)
