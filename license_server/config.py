import os

from .errors import ConfigurationError


def normalize_database_url(url: str) -> str:
    # Hosted Postgres hands out "postgres://", SQLAlchemy wants "postgresql://"
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


class Settings:
    def __init__(self, **overrides):
        self.SECRET_KEY = os.environ.get("APP_SECRET", "")
        self.AES_SECRET_KEY = os.environ.get("AES_SECRET_KEY", "")
        self.DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///local.db")
        self.SESSION_MAX_AGE = int(os.environ.get("SESSION_MAX_AGE", str(8 * 60 * 60)))
        self.EXPIRING_SOON_DAYS = int(os.environ.get("EXPIRING_SOON_DAYS", "30"))
        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
        self.SQLALCHEMY_ECHO = os.environ.get("SQLALCHEMY_ECHO", "0") == "1"

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"unknown setting: {name}")
            setattr(self, name, value)

        self.DATABASE_URL = normalize_database_url(self.DATABASE_URL)

    def validate(self) -> "Settings":
        if not self.AES_SECRET_KEY:
            raise ConfigurationError("AES_SECRET_KEY is not defined")
        if not self.SECRET_KEY:
            raise ConfigurationError("APP_SECRET is not defined")
        return self
