class LicenseServerError(Exception):
    """Base error; ``status_code`` is the HTTP status reported to the caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(LicenseServerError):
    """Missing or invalid server configuration. Fatal: raised at startup."""


class DecryptionError(LicenseServerError):
    status_code = 400


class ValidationError(LicenseServerError):
    status_code = 400


class AuthenticationError(LicenseServerError):
    status_code = 401


class PolicyViolation(LicenseServerError):
    status_code = 403


class NotFoundError(LicenseServerError):
    status_code = 404


class ConflictError(LicenseServerError):
    status_code = 409


class StoreError(LicenseServerError):
    status_code = 500
