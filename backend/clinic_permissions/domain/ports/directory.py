from __future__ import annotations

import uuid
from typing import Protocol


class UserData(Protocol):
    id: uuid.UUID
    email: str
    role: str
    clinic_id: uuid.UUID | None
    is_active: bool


class ClinicData(Protocol):
    id: uuid.UUID
    name: str
    owner_id: uuid.UUID | None
    is_active: bool


class UserDirectory(Protocol):
    async def get(self, user_id: uuid.UUID) -> UserData | None:
        ...

    async def find_by_id_and_role(self, user_id: uuid.UUID, role: str) -> UserData | None:
        ...

    async def find_by_email_and_role(self, email: str, role: str) -> UserData | None:
        ...


class ClinicDirectory(Protocol):
    async def get(self, clinic_id: uuid.UUID) -> ClinicData | None:
        ...

    async def find_by_owner(self, owner_id: uuid.UUID) -> ClinicData | None:
        ...
