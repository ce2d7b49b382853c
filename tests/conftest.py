"""
phiguard Test Configuration

Pytest fixtures and configuration for the test suite.
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from phiguard import config
from phiguard.api.auth import create_access_token
from phiguard.audit.ledger import AuditLedger
from phiguard.crypto.keys import KeyManager
from phiguard.encounter import EncounterRegistry
from phiguard.guard.identity import IdentityGuard
from phiguard.observability.metrics import reset_metrics
from phiguard.phi.types import TokenMap
from phiguard.storage.kv import InMemoryStore, SealedMapStore

TEST_SECRET = "test_audit_secret"


# ============================================
# Metrics
# ============================================


@pytest.fixture(autouse=True)
def clean_metrics() -> Generator[None, None, None]:
    """Start every test from zeroed counters."""
    reset_metrics()
    yield


# ============================================
# Component Fixtures
# ============================================


@pytest.fixture
def audit_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "audit" / "audit.log"


@pytest.fixture
def ledger(ledger_path: Path) -> AuditLedger:
    """Ledger writing to a temp file with a fixed secret."""
    return AuditLedger(path=ledger_path, secret=TEST_SECRET, strict=False, hostname="test-host")


@pytest.fixture
def session_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def durable_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def guard(session_store: InMemoryStore, durable_store: InMemoryStore, ledger: AuditLedger) -> IdentityGuard:
    return IdentityGuard(session_store, durable_store, ledger=ledger)


@pytest.fixture
def key_manager() -> KeyManager:
    return KeyManager()


@pytest.fixture
def registry(ledger: AuditLedger, durable_store: InMemoryStore, key_manager: KeyManager) -> EncounterRegistry:
    return EncounterRegistry(
        ledger=ledger,
        map_store=SealedMapStore(durable_store),
        keys=key_manager,
    )


# ============================================
# Client Fixtures
# ============================================


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, ledger_path: Path) -> Generator[TestClient, None, None]:
    """Authenticated test client with an isolated ledger and in-memory stores."""
    monkeypatch.setattr(config, "PHI_AUDIT_LOG", str(ledger_path))
    monkeypatch.setattr(config, "AUDIT_HMAC_SECRET", TEST_SECRET)
    monkeypatch.setattr(config, "AUDIT_STRICT_WRITES", False)
    monkeypatch.setattr(config, "REDIS_URL", None)
    monkeypatch.setattr(config, "ENABLE_LOCAL_PHI_REDACTION", True)

    from phiguard.main import app

    token = create_access_token({"sub": "test-clinician"})
    with TestClient(app, headers={"Authorization": f"Bearer {token}"}) as c:
        yield c


# ============================================
# Sample Data Fixtures
# ============================================


@pytest.fixture
def sample_transcript() -> str:
    """Sample dictation containing several PHI shapes."""
    return (
        "Patient John Smith, MRN: ABC123456, DOB 1985-06-10.\n"
        "Reachable at 555-123-4567 or john.smith@example.com.\n"
        "Lives at 123 Main Street, Vancouver V5K 1A1.\n"
        "History of Parkinson Disease, seen by Dr. Sarah Williams."
    )


@pytest.fixture
def sample_token_map() -> TokenMap:
    return TokenMap(
        {
            "NAME:1": "John Smith",
            "DATE:1": "1985-06-10",
            "PHONE:1": "555-123-4567",
        }
    )


@pytest.fixture
def sample_chart_page() -> str:
    return "Name: Doe, Jane\nDOB: 1985-06-10\nMRN: 00123456\nAllergies: none"


# ============================================
# Marker Configuration
# ============================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "requires_redis: test requires Redis connection")
