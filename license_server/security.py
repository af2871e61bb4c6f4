import secrets
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

TOKEN_SALT = "portal-session"


def make_license_key() -> str:
    # four groups of 8 uppercase hex chars, e.g. A1B2C3D4-E5F6A7B8-...
    return "-".join(secrets.token_hex(4).upper() for _ in range(4))


def make_user_hash() -> str:
    return secrets.token_hex(16)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def check_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)


def sign_token(payload: dict, secret_key: str) -> str:
    return _serializer(secret_key).dumps(payload)


def unsign_token(token: str, secret_key: str, max_age_seconds: int) -> Optional[dict]:
    try:
        payload = _serializer(secret_key).loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None
    return payload if isinstance(payload, dict) else None
