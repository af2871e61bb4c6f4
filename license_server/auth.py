import logging
from functools import wraps

from flask import current_app, g, request

from .errors import AuthenticationError, ValidationError
from .models import Admin
from .security import check_password, hash_password, sign_token, unsign_token
from .store import LicenseStore

logger = logging.getLogger(__name__)

ADMIN = "admin"
USER = "user"


class PortalAuth:
    """Bearer-token logins for the admin and end-user portals."""

    def __init__(self, store: LicenseStore, secret_key: str, max_age_seconds: int):
        self.store = store
        self.secret_key = secret_key
        self.max_age_seconds = max_age_seconds

    def issue_token(self, **payload) -> str:
        return sign_token(payload, self.secret_key)

    def read_token(self, token: str):
        if not token:
            return None
        return unsign_token(token, self.secret_key, self.max_age_seconds)

    def login_admin(self, username, password):
        """
        Returns (token, created). The very first login on an empty admin
        table creates the owner account with the supplied credentials.
        """
        if not isinstance(username, str) or not isinstance(password, str) or not username.strip() or not password:
            raise ValidationError("Username and password are required")
        username = username.strip()

        admin = self.store.find_admin(username)
        created = False
        if admin is None:
            if self.store.count_admins() > 0:
                raise AuthenticationError("Invalid credentials")
            admin = self.store.add_admin(Admin(username=username, password_hash=hash_password(password), role="owner"))
            created = True
            logger.info("created owner admin %s", admin.username)
        elif not check_password(admin.password_hash, password):
            raise AuthenticationError("Invalid credentials")

        token = self.issue_token(id=admin.id, username=admin.username, role=admin.role, type=ADMIN)
        return token, created

    def login_user(self, user_hash) -> str:
        if not isinstance(user_hash, str) or not user_hash.strip():
            raise ValidationError("User hash is required")
        user = self.store.find_user_by_hash(user_hash.strip())
        if user is None:
            raise AuthenticationError("Invalid user hash")
        return self.issue_token(id=user.id, username=user.username, type=USER)


def _bearer_token() -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


def _require(kind):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            auth = current_app.extensions["license_server"].auth
            payload = auth.read_token(_bearer_token())
            if not payload or payload.get("type") != kind:
                raise AuthenticationError("Unauthorized")
            g.session = payload
            return f(*args, **kwargs)
        return wrapper
    return decorator


admin_required = _require(ADMIN)
user_required = _require(USER)
