"""
Role hierarchy for clinic-scoped permissions.

- ADMIN bypasses every check.
- CLINIC and DOCTOR are evaluated against the clinic-level grant for their role.
- AGENT, DOCTOR_STAFF and STAFF are delegated roles: their effective grant is
  the intersection of the clinic-level grant for their role and their own
  staff-level grant.
"""
from __future__ import annotations

from enum import Enum
from typing import Final


class Role(str, Enum):
    ADMIN = "admin"
    CLINIC = "clinic"
    DOCTOR = "doctor"
    AGENT = "agent"
    DOCTOR_STAFF = "doctorStaff"
    STAFF = "staff"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role:
        """Case-insensitive lookup; raises ValueError for unknown roles."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Role must be a non-empty string")
        normalized = value.strip().lower()
        for role in cls:
            if role.value.lower() == normalized:
                return role
        raise ValueError(f"Invalid role '{value}'")


STAFF_TIER_ROLES: Final[frozenset[Role]] = frozenset({
    Role.AGENT,
    Role.DOCTOR_STAFF,
    Role.STAFF,
})

# Role assumed for clinic permission rows written before roles were tagged.
LEGACY_DEFAULT_ROLE: Final[Role] = Role.CLINIC


def is_staff_tier(role: Role) -> bool:
    return role in STAFF_TIER_ROLES
