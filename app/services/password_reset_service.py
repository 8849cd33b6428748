"""
Password reset tokens.

The plaintext token only ever exists in the emailed link; the user row holds
its SHA-256 hash and an expiry. Redemption is one conditional UPDATE that
matches hash and expiry together and clears the token in the same statement,
so two concurrent redemptions cannot both succeed.
"""
import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

from sqlalchemy import update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core import security
from app.core.config import Settings
from app.core.errors import InvalidResetToken
from app.core.principal import is_admin_email
from app.core.time import utcnow
from app.models import User
from app.services.credential_service import get_user_by_email
from app.services.email_service import EmailSender

logger = logging.getLogger(__name__)

GENERIC_RESET_MESSAGE = "If the email exists, a reset link will be sent"


def _store_token(db: Session, user_id: str, token_hash: str, expires_at: datetime) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(reset_token_hash=token_hash, reset_token_expires_at_utc=expires_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _discard_token(db: Session, user_id: str, token_hash: str) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id, User.reset_token_hash == token_hash)
        .values(reset_token_hash=None, reset_token_expires_at_utc=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def reset_url(settings: Settings, token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


async def request_reset(
    db: Session,
    settings: Settings,
    mailer: EmailSender,
    email: str,
    now: datetime | None = None,
) -> str | None:
    """
    Issue and email a reset token when ``email`` belongs to a stored user.

    Returns the plaintext token, or None when nothing was sent. Callers must
    answer with the same generic message either way.
    """
    if is_admin_email(settings, email):
        return None
    user = await run_in_threadpool(get_user_by_email, db, email)
    if user is None:
        logger.info("PASSWORD_RESET_REQUESTED match=false")
        return None

    moment = now or utcnow()
    token = secrets.token_hex(32)
    token_hash = security.sha256_hex(token)
    await run_in_threadpool(
        _store_token, db, user.id, token_hash, moment + timedelta(minutes=settings.reset_token_exp_minutes)
    )

    link = reset_url(settings, token)
    html = (
        "<p>You requested a password reset.</p>"
        "<p>Click the link below to reset your password:</p>"
        f'<a href="{link}">{link}</a>'
        "<p>If you did not request this, please ignore this email.</p>"
    )
    text = f"Reset your password: {link}\nIf you did not request this, please ignore this email."
    try:
        result = await asyncio.wait_for(
            mailer.send(user.email, "Password Reset", html, text),
            timeout=settings.otp_send_timeout_seconds,
        )
        error = None if result.ok else result.error or "delivery rejected"
    except asyncio.TimeoutError:
        error = "timed out"
    except Exception as exc:
        error = str(exc)

    if error is not None:
        await run_in_threadpool(_discard_token, db, user.id, token_hash)
        logger.error("PASSWORD_RESET_SEND_FAILED user_id=%s error=%s", user.id, error)
        return None

    logger.info("PASSWORD_RESET_REQUESTED match=true user_id=%s", user.id)
    return token


def redeem(db: Session, token: str, new_password: str, now: datetime | None = None) -> None:
    """Set a new password if ``token`` is live, consuming the token."""
    if not token:
        raise InvalidResetToken()
    moment = now or utcnow()
    new_hash = security.hash_password(new_password)
    result = db.execute(
        update(User)
        .where(
            User.reset_token_hash == security.sha256_hex(token),
            User.reset_token_expires_at_utc > moment,
        )
        .values(
            password_hash=new_hash,
            reset_token_hash=None,
            reset_token_expires_at_utc=None,
            tokens_valid_after_utc=moment,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        logger.info("PASSWORD_RESET_REJECTED")
        raise InvalidResetToken()
    logger.info("PASSWORD_RESET_COMPLETED")
