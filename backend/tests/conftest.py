"""Shared fixtures: a throwaway SQLite database per test and an API client."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hostwatch.database import build_engine, create_schema, get_db
from hostwatch.main import app
from hostwatch.models import HostingRecord
from hostwatch.services.alerter import AlerterService
from hostwatch.services.health_policy import HealthPolicy
from hostwatch.services.registry import MonitorRegistry
from hostwatch.services.snapshots import SnapshotStore
from hostwatch.services.state_tracker import StateTracker, state_tracker


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'hostwatch-test.db'}")
    await create_schema(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def snapshots(tmp_path):
    return SnapshotStore(str(tmp_path / "snapshots"))


@pytest.fixture
def alerter():
    """Alerter without a webhook: notifications are skipped."""
    return AlerterService(webhook_url=None)


@pytest.fixture
def tracker(session_factory, alerter):
    return StateTracker(session_factory=session_factory, policy=HealthPolicy(), alerter=alerter)


@pytest.fixture
def registry(session_factory):
    return MonitorRegistry(session_factory=session_factory, refresh_seconds=60)


@pytest.fixture
def add_target(db_session, registry):
    """Create a hosting record and register it for monitoring."""
    async def _add(domain: str = "example.com", status: str = "active"):
        record = HostingRecord(domain=domain, client_name="Client", status=status)
        db_session.add(record)
        await db_session.commit()
        return await registry.register(db_session, record.id)

    return _add


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    """HTTP client with the test database."""
    # Locks of the shared tracker must not leak between event loops
    monkeypatch.setattr(state_tracker, "_locks", {})

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def build_certificate(
    not_before: datetime,
    not_after: datetime,
    common_name: str = "example.com",
    sans=("example.com", "www.example.com"),
    issuer_org: str = "Test CA",
) -> x509.Certificate:
    """Self-signed certificate with the given validity window."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_org),
        x509.NameAttribute(NameOID.COMMON_NAME, "Test Issuer"),
    ])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in sans]),
            critical=False,
        )
    return builder.sign(key, hashes.SHA256())


@pytest.fixture
def make_certificate():
    """Factory for certificates valid from `days_before` ago until `days_after` from now."""
    def _make(days_before: float = 30, days_after: float = 60, **kwargs) -> x509.Certificate:
        now = datetime.now(timezone.utc)
        return build_certificate(
            now - timedelta(days=days_before),
            now + timedelta(days=days_after),
            **kwargs,
        )

    return _make
