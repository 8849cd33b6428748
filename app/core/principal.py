"""
Authenticated identities.

A principal is either a regular user backed by a ``users`` row or the single
distinguished admin defined in configuration. The admin is never stored, has
no password hash and can only complete login through the emailed OTP.
"""
import secrets
from dataclasses import dataclass
from typing import Union

from app.models import User, UserRole

from .config import Settings


@dataclass(frozen=True)
class RegularUser:
    user: User

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def mfa_enabled(self) -> bool:
        return bool(self.user.mfa_enabled)


@dataclass(frozen=True)
class DistinguishedAdmin:
    id: str
    email: str
    name: str

    role = UserRole.ADMIN
    mfa_enabled = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "DistinguishedAdmin":
        return cls(id=settings.admin_id, email=settings.admin_email_normalized, name=settings.admin_name)


Principal = Union[RegularUser, DistinguishedAdmin]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_admin_email(settings: Settings, email: str) -> bool:
    configured = settings.admin_email_normalized
    return bool(configured) and secrets.compare_digest(
        normalize_email(email).encode("utf-8"), configured.encode("utf-8")
    )


def admin_password_matches(settings: Settings, password: str) -> bool:
    if not settings.admin_password:
        return False
    return secrets.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))


def principal_summary(principal: Principal) -> dict:
    return {
        "id": principal.id,
        "name": principal.name,
        "email": principal.email,
        "role": principal.role.value,
        "mfaEnabled": principal.mfa_enabled,
    }
