"""SQL emitted by the PostgreSQL repositories, compiled without a database."""
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex

from clinic_permissions import models  # noqa: F401  registers every mapper
from clinic_permissions.crud.clinic_permission import ClinicPermissionRepository
from clinic_permissions.crud.staff_permission import StaffPermissionRepository
from clinic_permissions.crud.user import UserRepository
from clinic_permissions.models.user import User

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class FakeResult:
    rowcount = 1

    def scalar_one_or_none(self):
        return None

    def scalar_one(self):
        return "row"

    def scalars(self):
        return self

    def all(self):
        return []


class RecordingSession:
    def __init__(self) -> None:
        self.statements: list = []

    async def execute(self, statement, *args, **kwargs):
        self.statements.append(statement)
        return FakeResult()

    def sql(self, index: int = -1) -> str:
        compiled = self.statements[index].compile(dialect=postgresql.dialect())
        return " ".join(str(compiled).split())


def _where(sql: str) -> str:
    return sql.split(" WHERE ", 1)[1]


@pytest.fixture
def session() -> RecordingSession:
    return RecordingSession()


@pytest.mark.anyio
async def test_clinic_role_lookup_includes_untagged_rows_after_tagged(session) -> None:
    await ClinicPermissionRepository(session).get_active(uuid.uuid4(), "clinic")

    sql = session.sql()
    assert "OR clinic_permissions.role IS NULL" in _where(sql)
    assert "ORDER BY clinic_permissions.role IS NULL, clinic_permissions.last_modified DESC" in sql


@pytest.mark.anyio
async def test_other_role_lookup_ignores_untagged_rows(session) -> None:
    await ClinicPermissionRepository(session).get_active(uuid.uuid4(), "doctor")

    assert "clinic_permissions.role IS NULL OR" not in session.sql()
    assert "clinic_permissions.role = " in _where(session.sql())


@pytest.mark.anyio
async def test_clinic_upsert_is_single_on_conflict_statement(session) -> None:
    record = await ClinicPermissionRepository(session).upsert(
        uuid.uuid4(), "doctor", [], uuid.uuid4(), NOW
    )

    sql = session.sql()
    assert record == "row"
    assert len(session.statements) == 1
    assert sql.startswith("INSERT INTO clinic_permissions")
    assert "ON CONFLICT ON CONSTRAINT uq_clinic_permissions_clinic_id_role DO UPDATE SET" in sql
    assert "RETURNING" in sql


@pytest.mark.anyio
async def test_legacy_tagging_only_touches_untagged_row(session) -> None:
    tagged = await ClinicPermissionRepository(session).tag_legacy(
        uuid.uuid4(), "clinic", uuid.uuid4(), NOW
    )

    assert tagged is True
    assert "clinic_permissions.role IS NULL" in _where(session.sql())


@pytest.mark.anyio
async def test_clinic_deactivate_only_matches_active_rows(session) -> None:
    await ClinicPermissionRepository(session).deactivate(uuid.uuid4(), "clinic", NOW)

    where = _where(session.sql())
    assert "clinic_permissions.is_active" in where
    assert "clinic_permissions.role IS NULL" in where


@pytest.mark.anyio
async def test_staff_statements(session) -> None:
    repo = StaffPermissionRepository(session)

    await repo.upsert(uuid.uuid4(), uuid.uuid4(), "agent", [], uuid.uuid4(), NOW)
    await repo.deactivate(uuid.uuid4(), uuid.uuid4(), NOW)

    assert "ON CONFLICT ON CONSTRAINT uq_staff_permissions_staff_id_clinic_id DO UPDATE SET" in session.sql(0)
    assert "staff_permissions.is_active" in _where(session.sql(1))


@pytest.mark.anyio
async def test_email_lookup_is_case_insensitive(session) -> None:
    await UserRepository(session).find_by_email_and_role(" Admin@Example.com ", "admin")

    compiled = session.statements[-1].compile(dialect=postgresql.dialect())
    assert "lower(users.email) = " in str(compiled)
    assert "admin@example.com" in compiled.params.values()


def test_email_uniqueness_ignores_case() -> None:
    index = next(index for index in User.__table__.indexes if index.name == "uq_users_email_lower")

    ddl = str(CreateIndex(index).compile(dialect=postgresql.dialect()))

    assert index.unique
    assert ddl.startswith("CREATE UNIQUE INDEX uq_users_email_lower ON users")
    assert "lower(email)" in ddl
