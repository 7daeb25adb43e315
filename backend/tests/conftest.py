"""
Pytest configuration and shared fixtures.

Every fixture keeps its state under tmp_path; nothing touches /config.

Run: cd backend && python -m pytest tests/ -q
"""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from ssl_identity.certificates import generate_self_signed_cert
from ssl_identity.service import SSLService
from ssl_identity.settings import SSLSettingsStore
from ssl_identity.storage import CertificateStorage


def _make_pem_pair(common_name: str = "test.example.com", host: str = "127.0.0.1", days: int = 30):
    return generate_self_signed_cert(
        common_name,
        host,
        datetime.now(timezone.utc) + timedelta(days=days),
    )


@pytest.fixture
def make_pem_pair():
    """Factory for fresh (cert_pem, key_pem) pairs."""
    return _make_pem_pair


@pytest.fixture
def pem_pair():
    """A PEM certificate/key pair for test.example.com."""
    return _make_pem_pair()


@pytest.fixture
def supplied_files(tmp_path: Path, pem_pair):
    """Operator-supplied certificate files outside the managed directory."""
    supplied_dir = tmp_path / "supplied"
    supplied_dir.mkdir()
    cert_file = supplied_dir / "server.pem"
    key_file = supplied_dir / "server.key"
    cert_file.write_bytes(pem_pair[0])
    key_file.write_bytes(pem_pair[1])
    return str(cert_file), str(key_file)


@pytest.fixture
def ssl_dir(tmp_path: Path) -> Path:
    return tmp_path / "config" / "certs"


@pytest.fixture
def storage(ssl_dir: Path) -> CertificateStorage:
    return CertificateStorage(ssl_dir)


@pytest.fixture
def settings_store(tmp_path: Path) -> SSLSettingsStore:
    return SSLSettingsStore(tmp_path / "config" / "ssl_settings.json")


@pytest.fixture
def restart_trigger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def ssl_service(storage, settings_store, restart_trigger) -> SSLService:
    return SSLService(storage, settings_store, restart_trigger)


@pytest_asyncio.fixture
async def async_client(ssl_service):
    """httpx client against the API app with an initialized SSL service."""
    from main import create_app

    ssl_service.init("127.0.0.1")
    app = create_app(ssl_service)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
