"""
Email one-time codes used as the second login factor.

Each principal has at most one live code. Issuing overwrites the previous
one; a successful verification consumes it with a compare-and-delete so a
second, concurrent verification of the same code observes nothing and fails.

Regular users keep their code on the ``users`` row. The distinguished admin
has no row, so its code lives in a process-wide ExpiringCache keyed by the
admin id (lost on restart, not shared between instances).
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core import security
from app.core.config import Settings
from app.core.errors import DeliveryFailure
from app.core.otp_cache import ExpiringCache
from app.core.principal import DistinguishedAdmin, Principal
from app.core.time import as_utc, utcnow
from app.models import User
from app.services.email_service import EmailSender

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


@dataclass(frozen=True)
class OtpRecord:
    code_hash: str
    expires_at: datetime


class OtpStore(Protocol):
    def get(self, key: str) -> OtpRecord | None:
        ...

    def put(self, key: str, record: OtpRecord) -> None:
        ...

    def discard(self, key: str, record: OtpRecord) -> bool:
        """Remove the record only if it is still the one stored."""
        ...


class UserOtpStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> OtpRecord | None:
        row = (
            self.db.query(User.mfa_otp_hash, User.mfa_otp_expires_at_utc)
            .filter(User.id == key)
            .first()
        )
        if row is None or not row.mfa_otp_hash or row.mfa_otp_expires_at_utc is None:
            return None
        return OtpRecord(row.mfa_otp_hash, as_utc(row.mfa_otp_expires_at_utc))

    def put(self, key: str, record: OtpRecord) -> None:
        self.db.execute(
            update(User)
            .where(User.id == key)
            .values(mfa_otp_hash=record.code_hash, mfa_otp_expires_at_utc=record.expires_at)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def discard(self, key: str, record: OtpRecord) -> bool:
        result = self.db.execute(
            update(User)
            .where(User.id == key, User.mfa_otp_hash == record.code_hash)
            .values(mfa_otp_hash=None, mfa_otp_expires_at_utc=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1


class AdminOtpStore:
    def __init__(self, cache: ExpiringCache[OtpRecord]):
        self.cache = cache

    def get(self, key: str) -> OtpRecord | None:
        return self.cache.get(key)

    def put(self, key: str, record: OtpRecord) -> None:
        self.cache.set(key, record, record.expires_at)

    def discard(self, key: str, record: OtpRecord) -> bool:
        return self.cache.pop_if(key, record)


def generate_otp() -> str:
    # leading zeros are valid codes
    return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"


def otp_email(code: str, minutes: int, admin: bool = False) -> tuple[str, str, str]:
    subject = "Your admin login code" if admin else "Your login code"
    html = (
        f"<p>Your one-time login code is <strong>{code}</strong>. "
        f"It expires in {minutes} minutes.</p>"
    )
    text = f"Your one-time login code is {code}. It expires in {minutes} minutes."
    return subject, html, text


class OtpEngine:
    def __init__(self, settings: Settings, mailer: EmailSender, admin_cache: ExpiringCache[OtpRecord]):
        self.settings = settings
        self.mailer = mailer
        self.admin_cache = admin_cache

    def store_for(self, db: Session, principal: Principal) -> OtpStore:
        if isinstance(principal, DistinguishedAdmin):
            return AdminOtpStore(self.admin_cache)
        return UserOtpStore(db)

    async def issue(self, db: Session, principal: Principal, now: datetime | None = None) -> str:
        """Store a fresh code for ``principal``, email it and return the plaintext."""
        moment = now or utcnow()
        store = self.store_for(db, principal)
        code = generate_otp()
        code_hash = await run_in_threadpool(security.hash_code, code)
        record = OtpRecord(code_hash, moment + timedelta(minutes=self.settings.otp_exp_minutes))
        await run_in_threadpool(store.put, principal.id, record)

        is_admin = isinstance(principal, DistinguishedAdmin)
        event = "ADMIN_OTP_SEND_FAILED" if is_admin else "USER_OTP_SEND_FAILED"
        subject, html, text = otp_email(code, self.settings.otp_exp_minutes, admin=is_admin)
        try:
            result = await asyncio.wait_for(
                self.mailer.send(principal.email, subject, html, text),
                timeout=self.settings.otp_send_timeout_seconds,
            )
            error = None if result.ok else result.error or "delivery rejected"
        except asyncio.TimeoutError:
            error = "timed out"
        except Exception as exc:
            error = str(exc)

        if error is not None:
            # an undeliverable code must not stay live
            await run_in_threadpool(store.discard, principal.id, record)
            logger.error("%s principal_id=%s error=%s", event, principal.id, error)
            raise DeliveryFailure()

        logger.info("OTP_ISSUED principal_id=%s", principal.id)
        return code

    def verify(self, db: Session, principal: Principal, candidate: str | None, now: datetime | None = None) -> bool:
        """Check ``candidate`` against the live code and consume it on success."""
        if not candidate:
            return False
        moment = now or utcnow()
        store = self.store_for(db, principal)
        record = store.get(principal.id)
        if record is None:
            return False
        if moment >= record.expires_at:
            store.discard(principal.id, record)
            return False
        if not security.verify_code(candidate.strip(), record.code_hash):
            return False
        return store.discard(principal.id, record)
