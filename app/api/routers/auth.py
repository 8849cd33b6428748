from typing import Union

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import (
    get_app_settings,
    get_current_principal,
    get_current_user,
    get_db,
    get_mailer,
    get_otp_engine,
    get_transport,
)
from app.core.config import Settings
from app.core.errors import InvalidMfaCode
from app.core.principal import Principal, RegularUser
from app.core.session_transport import SessionTransport, select_strategy
from app.models import User
from app.schemas.auth import (
    BackupCodesResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    MfaChallengeResponse,
    MfaDisableRequest,
    MfaSetupResponse,
    MfaVerifyRequest,
    MfaVerifyResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    UserOut,
)
from app.services import auth_service, credential_service, mfa_service, password_reset_service
from app.services.auth_service import IssuedSession, MfaChallenge
from app.services.email_service import EmailSender
from app.services.otp_service import OtpEngine

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_out(principal: Principal) -> UserOut:
    phone = country = None
    if isinstance(principal, RegularUser):
        phone, country = principal.user.phone, principal.user.country
    return UserOut(
        id=principal.id,
        name=principal.name,
        email=principal.email,
        role=principal.role,
        mfa_enabled=principal.mfa_enabled,
        phone=phone,
        country=country,
    )


def _session_response(
    request: Request,
    response: Response,
    transport: SessionTransport,
    session: IssuedSession,
    message: str,
) -> SessionResponse:
    strategy = select_strategy(request)
    transport.attach(response, strategy, session.access_token, session.refresh_token)
    tokens = transport.body(strategy, session.access_token, session.refresh_token)
    return SessionResponse(
        message=message,
        token=tokens["token"],
        refresh_token=tokens["refreshToken"],
        user=_user_out(session.principal),
    )


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    transport: SessionTransport = Depends(get_transport),
):
    user = auth_service.register_user(db, settings, body.name, body.email, body.password, body.phone, body.country)
    session = auth_service.issue_session(RegularUser(user))
    return _session_response(request, response, transport, session, "Registration successful")


async def _login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session,
    settings: Settings,
    otp_engine: OtpEngine,
    transport: SessionTransport,
    admin_only: bool = False,
):
    outcome = await auth_service.login(
        db, settings, otp_engine, body.email, body.password, body.mfa_code, admin_only=admin_only
    )
    if isinstance(outcome, MfaChallenge):
        return MfaChallengeResponse(method=outcome.method, message=outcome.message)
    message = "Admin login successful" if admin_only else "Login successful"
    return _session_response(request, response, transport, outcome, message)


@router.post("/login", response_model=Union[SessionResponse, MfaChallengeResponse])
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    otp_engine: OtpEngine = Depends(get_otp_engine),
    transport: SessionTransport = Depends(get_transport),
):
    return await _login(body, request, response, db, settings, otp_engine, transport)


@router.post("/admin/login", response_model=Union[SessionResponse, MfaChallengeResponse])
async def admin_login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    otp_engine: OtpEngine = Depends(get_otp_engine),
    transport: SessionTransport = Depends(get_transport),
):
    return await _login(body, request, response, db, settings, otp_engine, transport, admin_only=True)


@router.post("/refresh-token", response_model=RefreshResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    transport: SessionTransport = Depends(get_transport),
):
    presented = transport.refresh_token_from(request, body.refresh_token if body else None)
    _, access = auth_service.refresh_session(db, settings, presented)
    strategy = select_strategy(request)
    transport.attach(response, strategy, access)
    return RefreshResponse(token=transport.body(strategy, access, None)["token"])


@router.get("/me", response_model=UserOut)
def me(principal: Principal = Depends(get_current_principal)):
    return _user_out(principal)


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    transport: SessionTransport = Depends(get_transport),
):
    # tokens are stateless; clearing the cookies ends the browser session
    transport.clear(response)
    return MessageResponse(message="Logout successful")


@router.put("/change-password", response_model=SessionResponse)
def change_password(
    body: ChangePasswordRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    transport: SessionTransport = Depends(get_transport),
):
    user = credential_service.change_password(db, user, body.current_password, body.new_password)
    # earlier tokens are now rejected, so hand this client a fresh pair
    session = auth_service.issue_session(RegularUser(user))
    return _session_response(request, response, transport, session, "Password changed successfully")


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    mailer: EmailSender = Depends(get_mailer),
):
    token = await password_reset_service.request_reset(db, settings, mailer, body.email)
    reset_url = None
    if token and settings.environment.lower() == "development":
        reset_url = password_reset_service.reset_url(settings, token)
    return ForgotPasswordResponse(message=password_reset_service.GENERIC_RESET_MESSAGE, reset_url=reset_url)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordRequest, db: Session = Depends(get_db)):
    password_reset_service.redeem(db, body.token, body.new_password)
    return MessageResponse(message="Password reset successful")


@router.post("/mfa/setup", response_model=MfaSetupResponse)
def mfa_setup(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    setup = mfa_service.start_enrollment(db, user)
    return MfaSetupResponse(secret=setup.secret, qr_code=setup.qr_code_data_uri, otpauth_url=setup.otpauth_url)


@router.post("/mfa/verify", response_model=MfaVerifyResponse)
def mfa_verify(body: MfaVerifyRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if not mfa_service.confirm_enrollment(db, user, body.code):
        raise InvalidMfaCode()
    return MfaVerifyResponse(message="MFA enabled", mfa_enabled=True)


@router.post("/mfa/disable", response_model=MessageResponse)
def mfa_disable(body: MfaDisableRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    mfa_service.disable_mfa(db, user, body.password)
    return MessageResponse(message="MFA disabled")


@router.post("/mfa/backup-codes", response_model=BackupCodesResponse)
def mfa_backup_codes(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    codes = mfa_service.generate_backup_codes(db, user)
    return BackupCodesResponse(backup_codes=codes)
