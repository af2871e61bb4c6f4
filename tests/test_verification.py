import json

import pytest

from license_server.errors import StoreError
from license_server.lifecycle import LicenseManager, LicensePatch
from license_server.store import LicenseStore
from license_server.verification import LicenseVerifier


def test_empty_body_is_rejected_in_the_clear(verifier):
    for body in ("", "   ", None):
        response = verifier.verify(body)
        assert response.status == 400
        assert not response.encrypted
        assert json.loads(response.body) == {"error": "Missing encrypted data"}


def test_undecryptable_body_gets_encrypted_error(verifier, envelope):
    response = verifier.verify("this is not a sealed payload")
    assert response.status == 400
    assert response.encrypted
    assert envelope.open(response.body) == {"error": "Invalid encrypted data"}


@pytest.mark.parametrize("payload", [{}, {"licenseKey": ""}, {"licenseKey": 7}, ["licenseKey"], None])
def test_license_key_is_required(call, payload):
    assert call(payload) == (400, {"error": "License key is required"})


def test_unknown_key(call):
    assert call({"licenseKey": "00000000-00000000-00000000-00000000"}) == (404, {"error": "Invalid license key"})


def test_valid_license(call, make_license):
    lic = make_license()
    status, body = call({"licenseKey": lic.license_key})
    assert status == 200
    assert body["valid"] is True
    assert body["licenseKey"] == lic.license_key
    assert body["username"] == "alice"
    assert body["softwareName"] == "Tool"
    assert body["hardwareBindingEnabled"] is False
    assert body["status"] == "active"
    assert body["expirationDate"].endswith("Z")


def test_revoked_always_403(call, manager, make_license):
    plain = make_license()
    bound = make_license(binding=True)
    manager.revoke_license(plain.id)
    manager.revoke_license(bound.id)

    assert call({"licenseKey": plain.license_key}) == (403, {"error": "License has been revoked"})
    assert call({"licenseKey": bound.license_key}) == (403, {"error": "License has been revoked"})
    assert call({"licenseKey": bound.license_key, "hardwareId": "H1"}) == (403, {"error": "License has been revoked"})
    assert manager.store.find_by_id(bound.id).hardware_id is None


def test_revoked_wins_over_expired(call, manager, make_license, expire):
    lic = make_license()
    expire(lic)
    manager.revoke_license(lic.id)
    assert call({"licenseKey": lic.license_key}) == (403, {"error": "License has been revoked"})


def test_expired(call, make_license, expire):
    lic = make_license()
    expire(lic)
    assert call({"licenseKey": lic.license_key}) == (403, {"error": "License has expired"})


def test_expired_by_verification_clock(envelope, store, make_license):
    lic = make_license(days=1)
    later = store.find_by_id(lic.id).expiration_date
    verifier = LicenseVerifier(envelope, store, clock=lambda: later)
    response = verifier.verify(envelope.seal({"licenseKey": lic.license_key}))
    assert response.status == 403
    assert envelope.open(response.body) == {"error": "License has expired"}


def test_hardware_id_required(call, make_license):
    lic = make_license(binding=True)
    assert call({"licenseKey": lic.license_key}) == (400, {"error": "Hardware ID is required for this license"})
    assert call({"licenseKey": lic.license_key, "hardwareId": ""}) == (400, {"error": "Hardware ID is required for this license"})


def test_hardware_id_must_be_string(call, make_license):
    lic = make_license(binding=True)
    assert call({"licenseKey": lic.license_key, "hardwareId": 123}) == (400, {"error": "Hardware ID must be a string"})


def test_first_use_binding_then_enforced(call, store, make_license):
    lic = make_license(binding=True)

    status, body = call({"licenseKey": lic.license_key, "hardwareId": "H1"})
    assert status == 200 and body["valid"] is True
    assert store.find_by_id(lic.id).hardware_id == "H1"

    assert call({"licenseKey": lic.license_key, "hardwareId": "H2"}) == (
        403, {"error": "License is bound to a different hardware ID"})
    assert store.find_by_id(lic.id).hardware_id == "H1"

    status, body = call({"licenseKey": lic.license_key, "hardwareId": "H1"})
    assert status == 200 and body["valid"] is True


def test_binding_disabled_never_stores_hardware(call, store, make_license):
    lic = make_license(binding=False)
    status, _ = call({"licenseKey": lic.license_key, "hardwareId": "H1"})
    assert status == 200
    assert store.find_by_id(lic.id).hardware_id is None


class _RacingStore(LicenseStore):
    """Lets a competing request bind the license right after our lookup."""

    def __init__(self, session_factory, competitor_id):
        super().__init__(session_factory)
        self.competitor_id = competitor_id

    def find_by_key(self, license_key):
        license = super().find_by_key(license_key)
        if license is not None and self.competitor_id:
            super().bind_hardware_id(license.id, self.competitor_id)
            self.competitor_id = None
        return license


def test_concurrent_first_use_binds_once(envelope, store, make_license):
    lic = make_license(binding=True)
    racing = _RacingStore(store._session_factory, competitor_id="H1")
    verifier = LicenseVerifier(envelope, racing)

    response = verifier.verify(envelope.seal({"licenseKey": lic.license_key, "hardwareId": "H2"}))

    assert response.status == 403
    assert envelope.open(response.body) == {"error": "License is bound to a different hardware ID"}
    assert store.find_by_id(lic.id).hardware_id == "H1"


def test_concurrent_first_use_same_hardware_succeeds(envelope, store, make_license):
    lic = make_license(binding=True)
    racing = _RacingStore(store._session_factory, competitor_id="H1")
    verifier = LicenseVerifier(envelope, racing)

    response = verifier.verify(envelope.seal({"licenseKey": lic.license_key, "hardwareId": "H1"}))

    assert response.status == 200
    assert store.find_by_id(lic.id).hardware_id == "H1"


def test_bind_hardware_id_is_conditional(store, make_license):
    lic = make_license(binding=True)
    assert store.bind_hardware_id(lic.id, "H1") is True
    assert store.bind_hardware_id(lic.id, "H2") is False
    assert store.find_by_id(lic.id).hardware_id == "H1"


class _BindingDisabledMidway(LicenseStore):
    """An admin turns hardware binding off right after our lookup."""

    def find_by_key(self, license_key):
        license = super().find_by_key(license_key)
        if license is not None and license.hardware_binding_enabled:
            LicenseManager(self).edit_license(license.id, LicensePatch(hardware_binding_enabled=False))
        return license


def test_binding_disabled_between_read_and_write(envelope, store, make_license):
    lic = make_license(binding=True)
    verifier = LicenseVerifier(envelope, _BindingDisabledMidway(store._session_factory))

    response = verifier.verify(envelope.seal({"licenseKey": lic.license_key, "hardwareId": "H1"}))

    assert response.status == 200
    stored = store.find_by_id(lic.id)
    assert stored.hardware_binding_enabled is False
    assert stored.hardware_id is None


def test_bind_hardware_id_requires_binding_enabled(store, make_license):
    lic = make_license(binding=False)
    assert store.bind_hardware_id(lic.id, "H1") is False
    assert store.find_by_id(lic.id).hardware_id is None


class _BrokenStore:
    def __init__(self, exc):
        self.exc = exc

    def find_by_key(self, license_key):
        raise self.exc


@pytest.mark.parametrize("exc", [StoreError("database is down"), RuntimeError("boom")])
def test_failures_become_encrypted_500(envelope, exc):
    verifier = LicenseVerifier(envelope, _BrokenStore(exc))
    response = verifier.verify(envelope.seal({"licenseKey": "K"}))
    assert response.status == 500
    assert response.encrypted
    assert envelope.open(response.body) == {"error": "An unexpected error occurred"}


def test_deleted_user_licenses_are_unknown(call, manager, alice, make_license):
    first = make_license()
    second = make_license(software="Other")
    manager.delete_user(alice.id)
    for lic in (first, second):
        assert call({"licenseKey": lic.license_key}) == (404, {"error": "Invalid license key"})
