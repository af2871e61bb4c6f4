from dataclasses import dataclass
from typing import Optional, Union

from .errors import LicenseServerError, PolicyViolation, ValidationError

HARDWARE_ID_REQUIRED = "Hardware ID is required for this license"
HARDWARE_MISMATCH = "License is bound to a different hardware ID"


@dataclass(frozen=True)
class Accept:
    pass


@dataclass(frozen=True)
class Bind:
    hardware_id: str


@dataclass(frozen=True)
class Reject:
    error: LicenseServerError


Decision = Union[Accept, Bind, Reject]


def resolve(binding_enabled: bool, supplied_id: Optional[str], stored_id: Optional[str]) -> Decision:
    """Decide what to do with the hardware id a client presented. No side effects."""
    if not binding_enabled:
        return Accept()
    if not supplied_id:
        return Reject(ValidationError(HARDWARE_ID_REQUIRED))
    if stored_id is None:
        return Bind(supplied_id)
    if stored_id != supplied_id:
        return Reject(PolicyViolation(HARDWARE_MISMATCH))
    return Accept()
