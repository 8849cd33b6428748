import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import deferred

from app.core.time import utcnow
from app.db.base import Base

# Secret columns are never loaded unless a query asks for this group.
CREDENTIALS = "credentials"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(Enum(UserRole, values_callable=lambda e: [m.value for m in e]), nullable=False, default=UserRole.USER)
    phone = Column(String(32), nullable=True)
    country = Column(String(64), nullable=True)
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    tokens_valid_after_utc = Column(DateTime(timezone=True), nullable=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    password_hash = deferred(Column(String(255), nullable=False), group=CREDENTIALS)
    mfa_secret = deferred(Column(String(64), nullable=True), group=CREDENTIALS)
    mfa_temp_secret = deferred(Column(String(64), nullable=True), group=CREDENTIALS)
    mfa_otp_hash = deferred(Column(String(255), nullable=True), group=CREDENTIALS)
    mfa_otp_expires_at_utc = deferred(Column(DateTime(timezone=True), nullable=True), group=CREDENTIALS)
    mfa_backup_codes = deferred(Column(JSON, nullable=True), group=CREDENTIALS)
    # bumped on every change to the backup code list; consumers update conditionally on it
    mfa_backup_codes_version = deferred(Column(Integer, nullable=False, default=0), group=CREDENTIALS)
    reset_token_hash = deferred(Column(String(64), nullable=True, index=True), group=CREDENTIALS)
    reset_token_expires_at_utc = deferred(Column(DateTime(timezone=True), nullable=True), group=CREDENTIALS)
