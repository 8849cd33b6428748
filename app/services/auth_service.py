import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core import security
from app.core.config import Settings
from app.core.errors import InvalidCredentials, InvalidMfaCode, TokenError, TokenInvalid, http_error_for
from app.core.principal import (
    DistinguishedAdmin,
    Principal,
    RegularUser,
    admin_password_matches,
    is_admin_email,
    normalize_email,
)
from app.core.time import as_utc
from app.models import User, UserRole
from app.services import mfa_service
from app.services.credential_service import get_user_by_email, get_user_by_id, verify_user_password
from app.services.otp_service import OtpEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MfaChallenge:
    method: str = "otp"
    message: str = "OTP sent to registered email"


@dataclass(frozen=True)
class IssuedSession:
    principal: Principal
    access_token: str
    refresh_token: str


LoginOutcome = Union[MfaChallenge, IssuedSession]


def issue_session(principal: Principal, now: datetime | None = None) -> IssuedSession:
    access = security.create_access_token(principal.id, principal.email, principal.role.value, now=now)
    refresh = security.create_refresh_token(principal.id, now=now)
    return IssuedSession(principal=principal, access_token=access, refresh_token=refresh)


def register_user(
    db: Session,
    settings: Settings,
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    country: str | None = None,
) -> User:
    normalized = normalize_email(email)
    if is_admin_email(settings, normalized):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account cannot be registered.")
    if get_user_by_email(db, normalized):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        name=name.strip(),
        email=normalized,
        password_hash=security.hash_password(password),
        role=UserRole.USER,
        phone=phone,
        country=country,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    db.refresh(user)
    logger.info("USER_REGISTERED user_id=%s", user.id)
    return user


async def authenticate_password(db: Session, settings: Settings, email: str, password: str) -> Principal:
    """First factor. Unknown email and wrong password are indistinguishable."""
    if is_admin_email(settings, email):
        if not admin_password_matches(settings, password):
            logger.warning("ADMIN_LOGIN_FAILED reason=password")
            raise InvalidCredentials()
        return DistinguishedAdmin.from_settings(settings)

    user = await run_in_threadpool(get_user_by_email, db, email, True)
    if not await run_in_threadpool(verify_user_password, user, password):
        logger.info("LOGIN_FAILED reason=credentials")
        raise InvalidCredentials()
    return RegularUser(user)


def _verify_second_factor(db: Session, otp_engine: OtpEngine, principal: Principal, code: str, now: datetime | None) -> bool:
    if otp_engine.verify(db, principal, code, now=now):
        return True
    if isinstance(principal, DistinguishedAdmin):
        # the admin only ever authenticates through the emailed code
        return False
    user = principal.user
    if user.mfa_secret and mfa_service.verify_active_totp(user, code, now=now):
        return True
    if user.mfa_backup_codes and mfa_service.consume_backup_code(db, user, code):
        return True
    return False


async def login(
    db: Session,
    settings: Settings,
    otp_engine: OtpEngine,
    email: str,
    password: str,
    mfa_code: str | None = None,
    now: datetime | None = None,
    admin_only: bool = False,
) -> LoginOutcome:
    if admin_only and not is_admin_email(settings, email):
        raise InvalidCredentials()
    principal = await authenticate_password(db, settings, email, password)

    if not mfa_code:
        await otp_engine.issue(db, principal, now=now)
        if isinstance(principal, DistinguishedAdmin):
            return MfaChallenge(message="OTP sent to admin email")
        return MfaChallenge()

    if not await run_in_threadpool(_verify_second_factor, db, otp_engine, principal, mfa_code, now):
        logger.info("LOGIN_FAILED reason=mfa principal_id=%s", principal.id)
        raise InvalidMfaCode()

    logger.info("LOGIN_SUCCESS principal_id=%s role=%s", principal.id, principal.role.value)
    return issue_session(principal, now=now)


def _load_principal(db: Session, settings: Settings, principal_id: str) -> Principal | None:
    if principal_id == settings.admin_id and settings.admin_email_normalized:
        return DistinguishedAdmin.from_settings(settings)
    user = get_user_by_id(db, principal_id)
    if user is None:
        return None
    return RegularUser(user)


def _revoked(principal: Principal, payload: dict) -> bool:
    if isinstance(principal, DistinguishedAdmin):
        return False
    return security.issued_before(payload, as_utc(principal.user.tokens_valid_after_utc))


def resolve_access_token(db: Session, settings: Settings, token: str) -> Principal:
    try:
        payload = security.decode_access_token(token)
    except TokenError as exc:
        raise http_error_for(exc)

    principal = _load_principal(db, settings, payload["sub"])
    if principal is None:
        raise TokenInvalid("User not found")
    if _revoked(principal, payload):
        raise TokenInvalid()
    return principal


def refresh_session(db: Session, settings: Settings, refresh_token: str | None) -> tuple[Principal, str]:
    """Mint a new access token. MFA is not repeated; the role is read fresh."""
    if not refresh_token:
        raise TokenInvalid("Refresh token missing")
    try:
        payload = security.decode_refresh_token(refresh_token)
    except TokenError:
        raise TokenInvalid("Invalid refresh token")

    principal = _load_principal(db, settings, payload["sub"])
    if principal is None or _revoked(principal, payload):
        raise TokenInvalid("Invalid refresh token")

    access = security.create_access_token(principal.id, principal.email, principal.role.value)
    return principal, access
