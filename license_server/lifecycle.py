import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .clock import parse_iso, to_naive_utc, utcnow
from .errors import ConflictError, NotFoundError, PolicyViolation, ValidationError
from .models import License, LicenseStatus, User
from .security import make_license_key, make_user_hash
from .store import LicenseStore

logger = logging.getLogger(__name__)

KEY_ATTEMPTS = 5


def _parse_date(value, field: str) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return to_naive_utc(value)
    try:
        return parse_iso(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date") from None


def _expect(value, kind, field: str):
    if not isinstance(value, kind):
        raise ValidationError(f"{field} has the wrong type")
    return value


@dataclass(frozen=True)
class LicensePatch:
    """Admin edit of a license. ``None`` leaves a field untouched."""

    software_name: Optional[str] = None
    expiration_date: Optional[datetime.datetime] = None
    hardware_binding_enabled: Optional[bool] = None
    reset_hardware_id: bool = False
    revoke: bool = False

    @classmethod
    def from_json(cls, data) -> "LicensePatch":
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        software_name = data.get("softwareName")
        if software_name is not None:
            software_name = _expect(software_name, str, "softwareName").strip()
            if not software_name:
                raise ValidationError("softwareName must not be empty")

        expiration_date = data.get("expirationDate")
        if expiration_date is not None:
            expiration_date = _parse_date(expiration_date, "expirationDate")

        binding = data.get("hardwareBindingEnabled")
        if binding is not None:
            _expect(binding, bool, "hardwareBindingEnabled")

        return cls(
            software_name=software_name,
            expiration_date=expiration_date,
            hardware_binding_enabled=binding,
            reset_hardware_id=_expect(data.get("resetHardwareId", False), bool, "resetHardwareId"),
            revoke=_expect(data.get("revoke", False), bool, "revoke"),
        )

    def apply(self, license: License) -> None:
        if license.is_revoked:
            raise PolicyViolation("License has been revoked and can no longer be modified")

        if self.software_name is not None:
            license.software_name = self.software_name
        if self.expiration_date is not None:
            license.expiration_date = self.expiration_date
        if self.hardware_binding_enabled is not None:
            license.hardware_binding_enabled = self.hardware_binding_enabled
        if self.reset_hardware_id or not license.hardware_binding_enabled:
            license.hardware_id = None
        if self.revoke:
            license.status = LicenseStatus.REVOKED


class LicenseManager:
    """Admin-side creation, edits and revocation of users and licenses."""

    def __init__(self, store: LicenseStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    # ------------------------------ users ------------------------------

    def create_user(self, username) -> User:
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("Username is required")
        username = username.strip()
        if self.store.find_user_by_name(username):
            raise ConflictError("A user with this username already exists")

        user = self.store.add_user(User(username=username, user_hash=make_user_hash()))
        logger.info("created user %s", user.id)
        return user

    def delete_user(self, user_id: str) -> None:
        if not self.store.delete_user(user_id):
            raise NotFoundError("User not found")
        logger.info("deleted user %s and their licenses", user_id)

    # ----------------------------- licenses ----------------------------

    def create_license(self, user_id, software_name, expiration_date, hardware_binding_enabled=False) -> License:
        if not user_id or not software_name or not expiration_date:
            raise ValidationError("User, software name, and expiration date are required")
        if not _expect(software_name, str, "softwareName").strip():
            raise ValidationError("softwareName must not be empty")
        _expect(hardware_binding_enabled, bool, "hardwareBindingEnabled")
        expires = _parse_date(expiration_date, "expirationDate")
        if expires <= self.clock():
            raise ValidationError("Expiration date must be in the future")

        user = self.store.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found")

        license = self.store.add_license(License(
            license_key=self._unique_key(),
            user_id=user.id,
            software_name=software_name.strip(),
            expiration_date=expires,
            hardware_binding_enabled=hardware_binding_enabled,
            hardware_id=None,
            status=LicenseStatus.ACTIVE,
        ))
        logger.info("created license %s for user %s", license.id, user.id)
        return license

    def edit_license(self, license_id: str, patch: LicensePatch) -> License:
        license = self.store.update_license(license_id, patch.apply)
        logger.info("updated license %s", license_id)
        return license

    def revoke_license(self, license_id: str) -> License:
        def _revoke(license: License) -> None:
            license.status = LicenseStatus.REVOKED

        license = self.store.update_license(license_id, _revoke)
        logger.info("revoked license %s", license_id)
        return license

    def _unique_key(self) -> str:
        for _ in range(KEY_ATTEMPTS):
            key = make_license_key()
            if self.store.find_by_key(key) is None:
                return key
        raise ConflictError("Could not generate a unique license key")
