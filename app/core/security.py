import hashlib
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

from .config import get_settings
from .errors import TokenError, TokenErrorCode
from .time import utcnow

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@lru_cache(maxsize=4)
def _crypt_context(rounds: int) -> CryptContext:
    # bcrypt_sha256 pre-hashes, so bytes past bcrypt's 72-byte limit still count; plain bcrypt stays verifiable
    return CryptContext(
        schemes=["bcrypt_sha256", "bcrypt"],
        deprecated="auto",
        bcrypt_sha256__rounds=rounds,
        bcrypt__rounds=rounds,
    )


def hash_password(password: str) -> str:
    return _crypt_context(get_settings().password_hash_rounds).hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return _crypt_context(get_settings().password_hash_rounds).verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def hash_code(code: str) -> str:
    """Hash a short-lived code (login OTP, backup code) at the cheaper OTP cost."""
    return _crypt_context(get_settings().otp_hash_rounds).hash(code)


def verify_code(code: str, code_hash: str | None) -> bool:
    if not code or not code_hash:
        return False
    try:
        return _crypt_context(get_settings().otp_hash_rounds).verify(code, code_hash)
    except (ValueError, TypeError):
        return False


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _create_token(payload: Dict[str, Any], secret: str, expires_minutes: int, now: datetime | None) -> str:
    settings = get_settings()
    issued_at = now or utcnow()
    claims = {
        **payload,
        "iss": settings.jwt_issuer,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def _decode_token(token: str, secret: str, token_type: str) -> Dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            secret,
            issuer=settings.jwt_issuer,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "iss", "iat", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError(TokenErrorCode.EXPIRED) from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError(TokenErrorCode.INVALID, str(exc)) from exc

    if payload.get("type") != token_type:
        raise TokenError(TokenErrorCode.INVALID, "Invalid token type")
    return payload


def create_access_token(
    principal_id: str,
    email: str,
    role: str,
    now: datetime | None = None,
    expires_minutes: int | None = None,
) -> str:
    settings = get_settings()
    return _create_token(
        {"sub": principal_id, "email": email, "role": role, "type": ACCESS_TOKEN_TYPE},
        settings.jwt_secret,
        expires_minutes if expires_minutes is not None else settings.access_token_exp_minutes,
        now,
    )


def create_refresh_token(principal_id: str, now: datetime | None = None) -> str:
    # no role claim: the role is looked up again whenever the session is refreshed
    settings = get_settings()
    return _create_token(
        {"sub": principal_id, "type": REFRESH_TOKEN_TYPE},
        settings.jwt_refresh_secret,
        settings.refresh_token_exp_minutes,
        now,
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    payload = _decode_token(token, get_settings().jwt_secret, ACCESS_TOKEN_TYPE)
    if not payload.get("role"):
        raise TokenError(TokenErrorCode.INVALID, "Invalid token payload")
    return payload


def decode_refresh_token(token: str) -> Dict[str, Any]:
    return _decode_token(token, get_settings().jwt_refresh_secret, REFRESH_TOKEN_TYPE)


def issued_before(payload: Dict[str, Any], cutoff: datetime | None) -> bool:
    """True when the token was minted before ``cutoff`` (second precision)."""
    if cutoff is None:
        return False
    return int(payload["iat"]) < int(cutoff.timestamp())
