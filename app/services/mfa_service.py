"""Authenticator-app (TOTP) enrollment and backup codes for regular users."""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from app.core import mfa, security
from app.core.errors import MfaNotInitiated
from app.core.time import utcnow
from app.models import User
from app.services.credential_service import verify_user_password

logger = logging.getLogger(__name__)

BACKUP_CODE_COUNT = 10
BACKUP_CODE_RETRIES = 3


@dataclass(frozen=True)
class MfaSetup:
    secret: str
    otpauth_url: str
    qr_code_data_uri: str


def start_enrollment(db: Session, user: User) -> MfaSetup:
    """Generate a pending secret. The active secret, if any, keeps working until confirmation."""
    secret = mfa.generate_secret()
    user.mfa_temp_secret = secret
    db.add(user)
    db.commit()

    otpauth_url = mfa.provisioning_uri(secret, user.email)
    logger.info("MFA_SETUP_STARTED user_id=%s", user.id)
    return MfaSetup(secret=secret, otpauth_url=otpauth_url, qr_code_data_uri=mfa.qr_code_data_uri(otpauth_url))


def confirm_enrollment(db: Session, user: User, code: str, now: datetime | None = None) -> bool:
    pending = user.mfa_temp_secret
    if not pending:
        raise MfaNotInitiated()
    # a wrong code leaves the pending secret in place so the user can retry without rescanning
    if not mfa.verify_totp(pending, code, for_time=now or utcnow()):
        logger.info("MFA_CONFIRM_FAILED user_id=%s", user.id)
        return False

    user.mfa_secret = pending
    user.mfa_temp_secret = None
    user.mfa_enabled = True
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("MFA_ENABLED user_id=%s", user.id)
    return True


def disable_mfa(db: Session, user: User, password: str) -> User:
    if not verify_user_password(user, password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid password")

    user.mfa_enabled = False
    user.mfa_secret = None
    user.mfa_temp_secret = None
    user.mfa_backup_codes = None
    user.mfa_backup_codes_version = User.mfa_backup_codes_version + 1
    user.tokens_valid_after_utc = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("MFA_DISABLED user_id=%s", user.id)
    return user


def verify_active_totp(user: User, code: str, now: datetime | None = None) -> bool:
    return mfa.verify_totp(user.mfa_secret, code, for_time=now or utcnow())


def generate_backup_codes(db: Session, user: User) -> list[str]:
    """Replace the user's backup codes. Plaintext is returned once, only hashes are kept."""
    if not user.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Enable MFA first")

    codes = [secrets.token_hex(4) for _ in range(BACKUP_CODE_COUNT)]
    user.mfa_backup_codes = [security.hash_code(code) for code in codes]
    user.mfa_backup_codes_version = User.mfa_backup_codes_version + 1
    db.add(user)
    db.commit()
    logger.info("BACKUP_CODES_GENERATED user_id=%s", user.id)
    return codes


def consume_backup_code(db: Session, user: User, code: str) -> bool:
    """
    Spend one backup code.

    The list is rewritten with a conditional UPDATE on its version, so two
    logins racing on the same code cannot both succeed. A lost race reloads
    the list and looks again.
    """
    candidate = (code or "").strip().lower()
    if not candidate:
        return False
    for _ in range(BACKUP_CODE_RETRIES):
        stored = list(user.mfa_backup_codes or [])
        version = user.mfa_backup_codes_version or 0
        match = next((h for h in stored if security.verify_code(candidate, h)), None)
        if match is None:
            return False
        stored.remove(match)

        result = db.execute(
            update(User)
            .where(User.id == user.id, User.mfa_backup_codes_version == version)
            .values(mfa_backup_codes=stored, mfa_backup_codes_version=version + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            set_committed_value(user, "mfa_backup_codes", stored)
            set_committed_value(user, "mfa_backup_codes_version", version + 1)
            logger.info("BACKUP_CODE_USED user_id=%s remaining=%d", user.id, len(stored))
            return True
        db.refresh(user, attribute_names=["mfa_backup_codes", "mfa_backup_codes_version"])
    logger.warning("BACKUP_CODE_CONTENDED user_id=%s", user.id)
    return False
