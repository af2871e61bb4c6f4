import datetime

import pytest

from license_server.app import create_app
from license_server.clock import utcnow
from license_server.config import Settings
from license_server.db import create_db_engine, init_db, make_session_factory
from license_server.envelope import Envelope
from license_server.lifecycle import LicenseManager, LicensePatch
from license_server.store import LicenseStore
from license_server.verification import LicenseVerifier

SHARED_SECRET = "test-shared-secret"
APP_SECRET = "test-app-secret"


def days_from_now(days):
    return utcnow() + datetime.timedelta(days=days)


@pytest.fixture
def store():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield LicenseStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def envelope():
    return Envelope(SHARED_SECRET)


@pytest.fixture
def manager(store):
    return LicenseManager(store)


@pytest.fixture
def verifier(envelope, store):
    return LicenseVerifier(envelope, store)


@pytest.fixture
def alice(manager):
    return manager.create_user("alice")


@pytest.fixture
def make_license(manager, alice):
    def _make(days=30, binding=False, user=None, software="Tool"):
        owner = user or alice
        return manager.create_license(owner.id, software, days_from_now(days), binding)
    return _make


@pytest.fixture
def expire(manager):
    def _expire(license):
        patch = LicensePatch(expiration_date=days_from_now(-1))
        return manager.edit_license(license.id, patch)
    return _expire


@pytest.fixture
def call(verifier, envelope):
    """Send a plaintext request through the verifier; returns (status, decrypted body)."""
    def _call(payload):
        response = verifier.verify(envelope.seal(payload))
        assert response.encrypted
        return response.status, envelope.open(response.body)
    return _call


@pytest.fixture
def settings():
    return Settings(
        SECRET_KEY=APP_SECRET,
        AES_SECRET_KEY=SHARED_SECRET,
        DATABASE_URL="sqlite://",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client):
    r = client.post("/api/admin/auth/login", json={"username": "root", "password": "s3cret-pass"})
    assert r.status_code in (200, 201)
    return {"Authorization": "Bearer " + r.get_json()["token"]}
