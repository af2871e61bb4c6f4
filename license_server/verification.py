import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from .binding import HARDWARE_MISMATCH, Bind, Reject, resolve
from .clock import to_iso, utcnow
from .envelope import Envelope
from .errors import LicenseServerError, NotFoundError, PolicyViolation, ValidationError
from .models import License
from .store import LicenseStore

logger = logging.getLogger(__name__)

MISSING_BODY = "Missing encrypted data"
LICENSE_KEY_REQUIRED = "License key is required"
HARDWARE_ID_NOT_STRING = "Hardware ID must be a string"
INVALID_LICENSE_KEY = "Invalid license key"
LICENSE_REVOKED = "License has been revoked"
LICENSE_EXPIRED = "License has expired"
UNEXPECTED_ERROR = "An unexpected error occurred"


@dataclass(frozen=True)
class VerificationResponse:
    body: str
    status: int
    encrypted: bool = True


def _mask(license_key: str) -> str:
    return license_key[:8] + "..."


def parse_request(payload: Any) -> Tuple[str, Optional[str]]:
    """Pull ``licenseKey`` and optional ``hardwareId`` out of a decrypted request."""
    if not isinstance(payload, dict):
        raise ValidationError(LICENSE_KEY_REQUIRED)

    license_key = payload.get("licenseKey")
    if not isinstance(license_key, str) or not license_key.strip():
        raise ValidationError(LICENSE_KEY_REQUIRED)

    hardware_id = payload.get("hardwareId")
    if hardware_id is not None and not isinstance(hardware_id, str):
        raise ValidationError(HARDWARE_ID_NOT_STRING)

    return license_key.strip(), (hardware_id or "").strip() or None


class LicenseVerifier:
    """
    Stateless decision procedure behind the verification endpoint:
    decrypt, look up, check status and expiry, resolve hardware binding,
    encrypt the answer. Every outcome except an empty body is encrypted.
    """

    def __init__(self, envelope: Envelope, store: LicenseStore, clock: Callable = utcnow):
        self.envelope = envelope
        self.store = store
        self.clock = clock

    def verify(self, body: Union[str, bytes, None]) -> VerificationResponse:
        if not body or not body.strip():
            return VerificationResponse(json.dumps({"error": MISSING_BODY}), 400, encrypted=False)

        try:
            result = self._verify(body)
        except LicenseServerError as exc:
            if exc.status_code >= 500:
                logger.error("license verification failed: %s", exc.message)
                return self._respond({"error": UNEXPECTED_ERROR}, 500)
            logger.info("license verification rejected (%s): %s", exc.status_code, exc.message)
            return self._respond({"error": exc.message}, exc.status_code)
        except Exception:
            logger.exception("license verification error")
            return self._respond({"error": UNEXPECTED_ERROR}, 500)

        return self._respond(result, 200)

    def _respond(self, payload: dict, status: int) -> VerificationResponse:
        return VerificationResponse(self.envelope.seal(payload), status)

    def _verify(self, body) -> dict:
        license_key, hardware_id = parse_request(self.envelope.open(body))

        license = self.store.find_by_key(license_key)
        if license is None:
            raise NotFoundError(INVALID_LICENSE_KEY)
        if license.is_revoked:
            raise PolicyViolation(LICENSE_REVOKED)
        if license.is_expired(self.clock()):
            raise PolicyViolation(LICENSE_EXPIRED)

        self._check_hardware(license, hardware_id)

        logger.info("license %s verified", _mask(license.license_key))
        return {
            "valid": True,
            "licenseKey": license.license_key,
            "username": license.user.username,
            "softwareName": license.software_name,
            "expirationDate": to_iso(license.expiration_date),
            "hardwareBindingEnabled": license.hardware_binding_enabled,
            "status": license.status.value,
        }

    def _check_hardware(self, license: License, hardware_id: Optional[str]) -> None:
        decision = resolve(license.hardware_binding_enabled, hardware_id, license.hardware_id)

        if isinstance(decision, Bind):
            if self.store.bind_hardware_id(license.id, decision.hardware_id):
                logger.info("license %s bound to hardware on first use", _mask(license.license_key))
                return
            # another request bound this license between our read and our write
            current = self.store.find_by_id(license.id)
            if current is None:
                raise NotFoundError(INVALID_LICENSE_KEY)
            decision = resolve(current.hardware_binding_enabled, hardware_id, current.hardware_id)
            if isinstance(decision, Bind):
                raise PolicyViolation(HARDWARE_MISMATCH)

        if isinstance(decision, Reject):
            raise decision.error
