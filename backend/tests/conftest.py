"""
Pytest fixtures for backend testing.

Provides a file-based SQLite database with foreign keys and SAVEPOINT
support, policy-enforcing sessions bound to seeded principals, and an
HTTP client wired to the same database.
"""

from collections.abc import AsyncGenerator, AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from spine.core.config import get_settings
from spine.core.security.enforcement import bind_principal, service_bypass
from spine.core.security.roles import UserRole
from spine.db.models import (
    Base,
    Certificate,
    CertificateStatus,
    MfaRecoveryCode,
    NationalIdMetadata,
    Organization,
    SigningLog,
    User,
    UserMfaSettings,
)
from spine.db.session import build_session_factory, get_db_session
from spine.main import create_application

HOOK_SECRET = "test-hook-secret"
PRINCIPAL_HEADER = "X-Authenticated-Principal"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Pin settings that tests rely on."""
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("AUTH_HOOK_SECRET", HOOK_SECRET)
    monkeypatch.setenv("HOME_DOMAIN", "gerege.mn")
    monkeypatch.setenv("PROVISIONING_FAILURE_MODE", "swallow")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh SQLite database for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'spine.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        # Readers must not block a concurrent writer's commit.
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(connection) -> None:
        connection.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session with no principal bound."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_as(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[UUID | None], AbstractAsyncContextManager[AsyncSession]]:
    """Open a session bound to the given principal."""

    @asynccontextmanager
    async def _open(principal_id: UUID | None) -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            bind_principal(session, principal_id)
            try:
                yield session
            finally:
                await session.rollback()

    return _open


@dataclass
class Directory:
    """Seeded organizations, identities and records.

    ``*_principal`` are principal ids; the matching identity ids share the
    prefix without the suffix.
    """

    home_org: UUID
    partner_org: UUID
    other_org: UUID

    admin: UUID
    admin_principal: UUID
    org_admin: UUID
    org_admin_principal: UUID
    operator: UUID
    operator_principal: UUID
    citizen: UUID
    citizen_principal: UUID
    outsider: UUID
    outsider_principal: UUID
    unaffiliated: UUID
    unaffiliated_principal: UUID

    citizen_certificate: UUID
    citizen_signing_log: UUID
    citizen_national_id: UUID
    outsider_national_id: UUID
    citizen_mfa_settings: UUID


def _identity(email: str, org_id: UUID | None, role: UserRole) -> User:
    return User(
        id=uuid4(),
        auth_user_id=uuid4(),
        email=email,
        full_name=email.split("@")[0].title(),
        org_id=org_id,
        role=role,
    )


def _certificate(owner: User, serial: str) -> Certificate:
    now = datetime.now(UTC)
    return Certificate(
        id=uuid4(),
        user_id=owner.id,
        serial_number=serial,
        common_name=owner.full_name,
        subject_dn=f"CN={owner.full_name}",
        issuer_dn="CN=Test CA",
        certificate_pem="-----BEGIN CERTIFICATE-----",
        public_key_pem="-----BEGIN PUBLIC KEY-----",
        not_before=now - timedelta(days=1),
        not_after=now + timedelta(days=365),
        status=CertificateStatus.ACTIVE,
    )


def _national_id(owner: User, number: str) -> NationalIdMetadata:
    return NationalIdMetadata(
        id=uuid4(),
        user_id=owner.id,
        document_number=number,
        family_name="Bat",
        given_name=owner.full_name,
        date_of_birth=date(1990, 1, 1),
        issue_date=date(2020, 1, 1),
        expiry_date=date(2030, 1, 1),
    )


@pytest_asyncio.fixture
async def directory(session_factory: async_sessionmaker[AsyncSession]) -> Directory:
    """Seed a home organization, a partner with every tier, and an outsider."""
    async with session_factory() as session:
        async with service_bypass(session, reason="test_seed"):
            home = Organization(id=uuid4(), name="Gerege", domain="gerege.mn")
            partner = Organization(id=uuid4(), name="Partner", domain="partner.mn")
            other = Organization(id=uuid4(), name="Other", domain="other.mn")
            session.add_all([home, partner, other])
            await session.flush()

            admin = _identity("admin@gerege.mn", home.id, UserRole.SUPER_ADMIN)
            org_admin = _identity("lead@partner.mn", partner.id, UserRole.ORG_ADMIN)
            operator = _identity("clerk@partner.mn", partner.id, UserRole.OPERATOR)
            citizen = _identity("dorj@partner.mn", partner.id, UserRole.CITIZEN)
            outsider = _identity("bold@other.mn", other.id, UserRole.CITIZEN)
            unaffiliated = _identity("solo@example.com", None, UserRole.CITIZEN)
            session.add_all([admin, org_admin, operator, citizen, outsider, unaffiliated])
            await session.flush()

            certificate = _certificate(citizen, "SN-0001")
            citizen_id_record = _national_id(citizen, "UA90010101")
            outsider_id_record = _national_id(outsider, "UB91020202")
            mfa_settings = UserMfaSettings(id=uuid4(), user_id=citizen.id, totp_enabled=True)
            session.add_all([certificate, citizen_id_record, outsider_id_record, mfa_settings])
            session.add(MfaRecoveryCode(id=uuid4(), user_id=citizen.id, code_hash="h1"))
            session.add(
                MfaRecoveryCode(id=uuid4(), user_id=citizen.id, code_hash="h2", is_used=True)
            )
            await session.flush()

            signing_log = SigningLog(
                id=uuid4(),
                user_id=citizen.id,
                certificate_id=certificate.id,
                document_hash="ab" * 32,
                signature_value="c2lnbmF0dXJl",
            )
            session.add(signing_log)
            await session.flush()
        await session.commit()

    return Directory(
        home_org=home.id,
        partner_org=partner.id,
        other_org=other.id,
        admin=admin.id,
        admin_principal=admin.auth_user_id,
        org_admin=org_admin.id,
        org_admin_principal=org_admin.auth_user_id,
        operator=operator.id,
        operator_principal=operator.auth_user_id,
        citizen=citizen.id,
        citizen_principal=citizen.auth_user_id,
        outsider=outsider.id,
        outsider_principal=outsider.auth_user_id,
        unaffiliated=unaffiliated.id,
        unaffiliated_principal=unaffiliated.auth_user_id,
        citizen_certificate=certificate.id,
        citizen_signing_log=signing_log.id,
        citizen_national_id=citizen_id_record.id,
        outsider_national_id=outsider_id_record.id,
        citizen_mfa_settings=mfa_settings.id,
    )


@pytest_asyncio.fixture
async def test_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing."""
    app = create_application()

    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def headers_for() -> Callable[[UUID], dict[str, str]]:
    """Gateway headers carrying an authenticated principal."""

    def _headers(principal_id: UUID) -> dict[str, str]:
        return {PRINCIPAL_HEADER: str(principal_id)}

    return _headers
