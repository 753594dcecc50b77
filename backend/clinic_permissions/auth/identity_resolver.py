"""
Identity resolution from authenticated claim sets.

Tokens issued over the years place the user id, email and role at different
nesting levels. Each location is an extractor in an ordered tuple; resolution
walks id candidates first, then email candidates, and returns the first user
that exists with the requested role. Adding a new claim shape means adding an
extractor, not touching the resolution logic.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..domain.identity import Identity
from ..domain.ports.directory import ClinicDirectory, UserData, UserDirectory
from ..domain.roles import Role
from ..errors import InvalidActorError

logger = logging.getLogger(__name__)

ClaimExtractor = Callable[[Mapping[str, Any]], Any]


def claim_path(*keys: str) -> ClaimExtractor:
    """Extractor returning the value at a nested key path, or None."""

    def extract(claims: Mapping[str, Any]) -> Any:
        current: Any = claims
        for key in keys:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        return current

    extract.__name__ = "claim_" + "_".join(keys)
    return extract


ID_CLAIM_EXTRACTORS: tuple[ClaimExtractor, ...] = (
    claim_path("userId"),
    claim_path("_id"),
    claim_path("id"),
    claim_path("user", "_id"),
    claim_path("user", "id"),
    claim_path("user", "userId"),
    claim_path("data", "userId"),
    claim_path("data", "id"),
    claim_path("data", "_id"),
    claim_path("data", "user", "_id"),
    claim_path("data", "user", "id"),
    claim_path("sub"),
)

EMAIL_CLAIM_EXTRACTORS: tuple[ClaimExtractor, ...] = (
    claim_path("email"),
    claim_path("user", "email"),
    claim_path("data", "email"),
    claim_path("data", "user", "email"),
)

ROLE_CLAIM_EXTRACTORS: tuple[ClaimExtractor, ...] = (
    claim_path("role"),
    claim_path("user", "role"),
    claim_path("data", "role"),
    claim_path("data", "user", "role"),
)


def collect_candidates(
    claims: Mapping[str, Any], extractors: Iterable[ClaimExtractor]
) -> list[str]:
    """Non-empty string values in extractor order, without duplicates."""
    candidates: list[str] = []
    for extractor in extractors:
        value = extractor(claims)
        if value is None or isinstance(value, (bool, Mapping, list)):
            continue
        text = str(value).strip()
        if text and text not in candidates:
            candidates.append(text)
    return candidates


def _as_uuid(candidate: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(candidate)
    except ValueError:
        return None


def claimed_role(claims: Mapping[str, Any]) -> Role | None:
    for candidate in collect_candidates(claims, ROLE_CLAIM_EXTRACTORS):
        try:
            return Role.parse(candidate)
        except ValueError:
            continue
    return None


class IdentityResolver:
    def __init__(
        self,
        users: UserDirectory,
        clinics: ClinicDirectory,
        *,
        id_extractors: tuple[ClaimExtractor, ...] = ID_CLAIM_EXTRACTORS,
        email_extractors: tuple[ClaimExtractor, ...] = EMAIL_CLAIM_EXTRACTORS,
    ):
        self.users = users
        self.clinics = clinics
        self.id_extractors = id_extractors
        self.email_extractors = email_extractors

    async def resolve(
        self, claims: Mapping[str, Any] | None, role: Role | str | None = None
    ) -> Identity | None:
        """Resolve claims to an identity holding ``role``.

        When ``role`` is omitted the role carried by the claims is used.
        Returns None if nothing resolves to an active user with that role.
        """
        if not claims:
            return None

        target_role = Role.parse(role) if role is not None else claimed_role(claims)
        if target_role is None:
            logger.warning("identity_unresolved reason=no_role_claim")
            return None

        for candidate in collect_candidates(claims, self.id_extractors):
            user_id = _as_uuid(candidate)
            if user_id is None:
                continue
            user = await self.users.find_by_id_and_role(user_id, target_role.value)
            if user is not None and user.is_active:
                return await self._build_identity(user, target_role)

        for email in collect_candidates(claims, self.email_extractors):
            user = await self.users.find_by_email_and_role(email, target_role.value)
            if user is not None and user.is_active:
                return await self._build_identity(user, target_role)

        logger.warning("identity_unresolved role=%s", target_role.value)
        return None

    async def require(
        self, claims: Mapping[str, Any] | None, role: Role | str
    ) -> Identity:
        identity = await self.resolve(claims, role)
        if identity is None:
            raise InvalidActorError(
                f"Granting identity could not be resolved to a {Role.parse(role).value} user"
            )
        return identity

    async def resolve_clinic_id(self, user: UserData, role: Role) -> uuid.UUID | None:
        if role is Role.ADMIN:
            return None
        if role is Role.CLINIC:
            clinic = await self.clinics.find_by_owner(user.id)
            return clinic.id if clinic is not None else None
        return user.clinic_id

    async def _build_identity(self, user: UserData, role: Role) -> Identity:
        return Identity(
            user_id=user.id,
            role=role,
            clinic_id=await self.resolve_clinic_id(user, role),
            email=user.email,
        )
