"""Password verification and updates for stored users."""
import logging
from functools import lru_cache

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, undefer_group

from app.core import security
from app.core.principal import normalize_email
from app.core.time import utcnow
from app.models import User
from app.models.user import CREDENTIALS

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return security.hash_password("not-a-real-password-used-for-timing-only")


def get_user_by_email(db: Session, email: str, with_credentials: bool = False) -> User | None:
    query = db.query(User).filter(User.email == normalize_email(email))
    if with_credentials:
        query = query.options(undefer_group(CREDENTIALS))
    return query.first()


def get_user_by_id(db: Session, user_id: str, with_credentials: bool = False) -> User | None:
    query = db.query(User).filter(User.id == user_id)
    if with_credentials:
        query = query.options(undefer_group(CREDENTIALS))
    return query.first()


def verify_user_password(user: User | None, candidate: str) -> bool:
    if user is None:
        # burn the same hashing time as a real check
        security.verify_password(candidate, _dummy_hash())
        return False
    return security.verify_password(candidate, user.password_hash)


def set_password(db: Session, user: User, new_password: str) -> User:
    user.password_hash = security.hash_password(new_password)
    user.tokens_valid_after_utc = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("PASSWORD_CHANGED user_id=%s", user.id)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> User:
    if not verify_user_password(user, current_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password incorrect")
    return set_password(db, user, new_password)
