from .app import create_app
from .config import Settings
from .envelope import Envelope
from .verification import LicenseVerifier

__all__ = ["create_app", "Settings", "Envelope", "LicenseVerifier"]
