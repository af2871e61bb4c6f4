import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship

from .clock import to_iso, utcnow
from .db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class LicenseStatus(enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class User(Base):
    __tablename__ = "users"
    id = Column(String(32), primary_key=True, default=_new_id)
    username = Column(String(255), unique=True, index=True, nullable=False)
    user_hash = Column(String(64), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    licenses = relationship(
        "License",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "userHash": self.user_hash,
            "createdAt": to_iso(self.created_at),
        }


class License(Base):
    __tablename__ = "licenses"
    id = Column(String(32), primary_key=True, default=_new_id)
    license_key = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    software_name = Column(String(255), nullable=False)
    expiration_date = Column(DateTime, nullable=False)
    hardware_binding_enabled = Column(Boolean, default=False, nullable=False)
    hardware_id = Column(String(255), nullable=True)
    status = Column(
        Enum(LicenseStatus, name="license_status", values_callable=lambda e: [m.value for m in e]),
        default=LicenseStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="licenses")

    @property
    def is_revoked(self) -> bool:
        return self.status is LicenseStatus.REVOKED

    def is_expired(self, now) -> bool:
        return now >= self.expiration_date

    def to_dict(self, username=None) -> dict:
        data = {
            "id": self.id,
            "licenseKey": self.license_key,
            "userId": self.user_id,
            "softwareName": self.software_name,
            "expirationDate": to_iso(self.expiration_date),
            "hardwareBindingEnabled": self.hardware_binding_enabled,
            "hardwareId": self.hardware_id,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }
        if username is not None:
            data["username"] = username
        return data


class Admin(Base):
    __tablename__ = "admins"
    id = Column(String(32), primary_key=True, default=_new_id)
    username = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), default="admin", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
