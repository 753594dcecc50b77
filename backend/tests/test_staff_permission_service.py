import random
import uuid

import pytest

from clinic_permissions.auth.identity_resolver import IdentityResolver
from clinic_permissions.domain.capabilities import (
    CRUD_ACTIONS,
    find_module,
    load_permissions,
    resolve_actions,
)
from clinic_permissions.domain.roles import Role
from clinic_permissions.errors import (
    InvalidActorError,
    NoCeilingDefinedError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from clinic_permissions.services.permissions.staff_permission_service import (
    StaffPermissionService,
)
from tests.permission_helpers import (
    FakeAuditRecorder,
    FakeClinicDirectory,
    FakeClinicPermissionRepository,
    FakeStaffPermissionRepository,
    FakeUserDirectory,
    RecordingLock,
    actions,
    clinic_claims,
    module_entry,
    sub_module_entry,
)


class Harness:
    def __init__(self) -> None:
        self.users = FakeUserDirectory()
        self.clinics = FakeClinicDirectory()
        self.clinic_repo = FakeClinicPermissionRepository()
        self.staff_repo = FakeStaffPermissionRepository()
        self.audit = FakeAuditRecorder()
        self.lock = RecordingLock()
        self.owner = self.users.add(Role.CLINIC)
        self.clinic = self.clinics.add(self.owner, name="Downtown")
        self.agent = self.users.add(Role.AGENT, clinic_id=self.clinic.id)
        self.service = StaffPermissionService(
            self.staff_repo,
            self.clinic_repo,
            self.users,
            IdentityResolver(self.users, self.clinics),
            self.audit,
            write_lock=self.lock,
        )

    @property
    def claims(self) -> dict:
        return clinic_claims(self.owner)


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.mark.anyio
async def test_over_broad_grant_is_clamped_and_reported(harness: Harness) -> None:
    harness.clinic_repo.seed(
        harness.clinic.id, "agent", [module_entry("Blogs", actions(create=True, read=True))]
    )
    submission = [module_entry("Blogs", actions(create=True, read=True, update=True))]

    result = await harness.service.upsert(
        harness.agent.id, harness.clinic.id, submission, harness.claims
    )

    stored = result.record.permissions[0]["actions"]
    assert stored == actions(create=True, read=True)
    assert result.dropped == ["Blogs.update"]
    assert result.record.role == "agent"
    assert result.record.granted_by == harness.owner.id
    assert harness.staff_repo.commits == 1
    assert harness.lock.keys == [f"permissions:staff:{harness.clinic.id}:{harness.agent.id}"]


@pytest.mark.anyio
async def test_missing_ceiling_for_staff_role_fails(harness: Harness) -> None:
    doctor_staff = harness.users.add(Role.DOCTOR_STAFF, clinic_id=harness.clinic.id)
    harness.clinic_repo.seed(harness.clinic.id, "clinic", [module_entry("Blogs", actions(all=True))])

    with pytest.raises(NoCeilingDefinedError):
        await harness.service.upsert(
            doctor_staff.id,
            harness.clinic.id,
            [module_entry("Blogs", actions(read=True))],
            harness.claims,
        )

    assert harness.staff_repo.records == []


@pytest.mark.anyio
async def test_inactive_ceiling_does_not_count(harness: Harness) -> None:
    harness.clinic_repo.seed(
        harness.clinic.id, "agent", [module_entry("Blogs", actions(all=True))], is_active=False
    )

    with pytest.raises(NoCeilingDefinedError):
        await harness.service.upsert(
            harness.agent.id,
            harness.clinic.id,
            [module_entry("Blogs", actions(read=True))],
            harness.claims,
        )


@pytest.mark.anyio
async def test_staff_of_another_clinic_is_refused(harness: Harness) -> None:
    other_clinic = harness.clinics.add(harness.users.add(Role.CLINIC), name="Uptown")
    outsider = harness.users.add(Role.AGENT, clinic_id=other_clinic.id)

    with pytest.raises(NotAuthorizedError):
        await harness.service.upsert(
            outsider.id, harness.clinic.id, [module_entry("Blogs", actions(read=True))], harness.claims
        )


@pytest.mark.anyio
@pytest.mark.parametrize("role", [Role.DOCTOR, Role.CLINIC, Role.ADMIN])
async def test_non_staff_roles_cannot_receive_delegation(harness: Harness, role: Role) -> None:
    member = harness.users.add(role, clinic_id=harness.clinic.id)

    with pytest.raises(NotAuthorizedError):
        await harness.service.upsert(
            member.id, harness.clinic.id, [module_entry("Blogs", actions(read=True))], harness.claims
        )


@pytest.mark.anyio
async def test_unknown_staff_is_not_found(harness: Harness) -> None:
    with pytest.raises(NotFoundError):
        await harness.service.upsert(
            uuid.uuid4(), harness.clinic.id, [module_entry("Blogs", actions(read=True))], harness.claims
        )


@pytest.mark.anyio
async def test_only_owning_clinic_can_delegate(harness: Harness) -> None:
    other_owner = harness.users.add(Role.CLINIC)
    harness.clinics.add(other_owner, name="Uptown")
    harness.clinic_repo.seed(harness.clinic.id, "agent", [module_entry("Blogs", actions(all=True))])

    with pytest.raises(NotAuthorizedError):
        await harness.service.upsert(
            harness.agent.id,
            harness.clinic.id,
            [module_entry("Blogs", actions(read=True))],
            clinic_claims(other_owner),
        )


@pytest.mark.anyio
async def test_unresolvable_granting_clinic_is_refused(harness: Harness) -> None:
    with pytest.raises(InvalidActorError):
        await harness.service.upsert(
            harness.agent.id,
            harness.clinic.id,
            [module_entry("Blogs", actions(read=True))],
            {"userId": str(uuid.uuid4())},
        )


@pytest.mark.anyio
async def test_malformed_submission_is_rejected_before_lookup(harness: Harness) -> None:
    with pytest.raises(ValidationError):
        await harness.service.upsert(
            harness.agent.id, harness.clinic.id, [{"module": "Blogs"}], harness.claims
        )


@pytest.mark.anyio
async def test_rewrite_replaces_existing_delegation(harness: Harness) -> None:
    harness.clinic_repo.seed(harness.clinic.id, "agent", [module_entry("Blogs", actions(all=True))])

    first = await harness.service.upsert(
        harness.agent.id, harness.clinic.id, [module_entry("Blogs", actions(read=True))], harness.claims
    )
    second = await harness.service.upsert(
        harness.agent.id, harness.clinic.id, [module_entry("Blogs", actions(delete=True))], harness.claims
    )

    assert first.record.id == second.record.id
    assert len(harness.staff_repo.records) == 1
    assert harness.staff_repo.records[0].permissions[0]["actions"] == actions(delete=True)
    assert harness.audit.entries[-1]["before"]["permissions"][0]["actions"] == actions(read=True)
    assert harness.audit.entries[-1]["after"]["dropped"] == []


@pytest.mark.anyio
async def test_get_and_deactivate(harness: Harness) -> None:
    record = harness.staff_repo.seed(
        harness.agent.id, harness.clinic.id, "agent", [module_entry("Blogs", actions(read=True))]
    )

    assert await harness.service.get(harness.agent.id, harness.clinic.id) is record
    assert await harness.service.deactivate(harness.agent.id, harness.clinic.id, harness.owner.id) is True
    assert await harness.service.get(harness.agent.id, harness.clinic.id) is None
    assert await harness.service.deactivate(harness.agent.id, harness.clinic.id) is False
    assert await harness.service.deactivate(uuid.uuid4(), harness.clinic.id) is False
    assert harness.audit.entries[-1]["action"] == "staff_permission_deactivate"
    assert len(harness.audit.entries) == 1


def _random_entries(rng: random.Random) -> list[dict]:
    entries = []
    for module in ("Blogs", "Billing", "Staff Management"):
        if rng.random() < 0.25:
            continue
        flags = {key: rng.random() < 0.5 for key in ("all", "create", "read", "update", "delete")}
        subs = [
            sub_module_entry(name, {key: rng.random() < 0.4 for key in flags})
            for name in ("Track Expenses", "Invoices")
            if rng.random() < 0.5
        ]
        entries.append(module_entry(module, flags, subs))
    return entries


@pytest.mark.anyio
async def test_stored_delegation_never_exceeds_ceiling() -> None:
    rng = random.Random(7)

    for _ in range(50):
        harness = Harness()
        ceiling_entries = _random_entries(rng)
        harness.clinic_repo.seed(harness.clinic.id, "agent", ceiling_entries)

        result = await harness.service.upsert(
            harness.agent.id, harness.clinic.id, _random_entries(rng), harness.claims
        )

        ceiling = load_permissions(ceiling_entries)
        for module in load_permissions(result.record.permissions):
            ceiling_module = find_module(ceiling, module.module)
            assert ceiling_module is not None
            for action in CRUD_ACTIONS:
                if module.actions.allows(action):
                    assert ceiling_module.actions.allows(action)
            for sub in module.sub_modules:
                allowed = resolve_actions(ceiling, module.module, sub.name)
                for action in CRUD_ACTIONS:
                    if sub.actions.allows(action):
                        assert allowed.allows(action)
