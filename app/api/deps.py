from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.encryption import FieldCipher, get_field_cipher
from app.core.errors import TokenInvalid
from app.core.principal import Principal, RegularUser
from app.core.session_transport import SessionTransport
from app.db.session import SessionLocal
from app.models import User, UserRole
from app.services.auth_service import resolve_access_token
from app.services.email_service import EmailSender
from app.services.otp_service import OtpEngine


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_mailer(request: Request) -> EmailSender:
    return request.app.state.mailer


def get_otp_engine(request: Request) -> OtpEngine:
    return request.app.state.otp_engine


def get_transport(request: Request) -> SessionTransport:
    return request.app.state.transport


def get_cipher() -> FieldCipher:
    return get_field_cipher()


def get_current_principal(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    transport: SessionTransport = Depends(get_transport),
) -> Principal:
    token = transport.access_token_from(request)
    if token is None:
        raise TokenInvalid("Access token required")
    return resolve_access_token(db, settings, token)


def get_current_user(principal: Principal = Depends(get_current_principal)) -> User:
    """Routes that act on a stored account; the configuration-defined admin has none."""
    if not isinstance(principal, RegularUser):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not available for the system admin account")
    return principal.user


def require_role(role: UserRole):
    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied. Admin privileges required.")
        return principal

    return checker
