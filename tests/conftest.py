"""Pytest configuration and shared fixtures."""
import os
from datetime import datetime, timedelta

# Keep the application module from creating a database file in the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from riskwatch.database import Base
from riskwatch.models.audit import AuditEvent
from riskwatch.models.identity import User, MfaDevice, UserSecurityRole, UserSession, EncryptedField
from riskwatch.models.security import SecurityEvent, ComplianceReport, SecurityScanResult
from riskwatch.services.oracles import StaticThreatIntel
from riskwatch.services.recorder import AuditRecorder
from riskwatch.services.store import SqlAlchemyAuditStore
from riskwatch.services.vulnerability import SqlAlchemyIdentityDirectory

MALICIOUS_IP = "203.0.113.66"


class Clock:
    """Controllable clock; components call it like utcnow()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def clock():
    """Wednesday 2024-05-15 12:00 UTC, inside business hours."""
    return Clock(datetime(2024, 5, 15, 12, 0, 0))


@pytest.fixture
def malicious_ip():
    return MALICIOUS_IP


@pytest.fixture
def threat_intel(malicious_ip):
    return StaticThreatIntel(malicious_ips={malicious_ip})


@pytest.fixture
def store(db_session):
    return SqlAlchemyAuditStore(db_session)


@pytest.fixture
def recorder(store, threat_intel, clock):
    return AuditRecorder(store, threat_intel=threat_intel, clock=clock)


@pytest.fixture
def directory(db_session):
    return SqlAlchemyIdentityDirectory(db_session)
