from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import UserRole

MIN_PASSWORD_LENGTH = 12


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    phone: Optional[str] = Field(None, max_length=32)
    country: Optional[str] = Field(None, max_length=64)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str
    mfa_code: Optional[str] = Field(None, alias="mfaCode", max_length=16)


class UserOut(CamelModel):
    id: str
    name: str
    email: str
    role: UserRole
    mfa_enabled: bool = Field(False, alias="mfaEnabled")
    phone: Optional[str] = None
    country: Optional[str] = None


class MfaChallengeResponse(CamelModel):
    requires_mfa: bool = Field(True, alias="requiresMFA")
    method: str = "otp"
    message: str


class SessionResponse(CamelModel):
    message: str
    token: Optional[str] = None
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    user: UserOut


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class RefreshResponse(CamelModel):
    message: str = "Token refreshed"
    token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=MIN_PASSWORD_LENGTH)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ForgotPasswordResponse(CamelModel):
    message: str
    reset_url: Optional[str] = Field(None, alias="resetUrl")


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., alias="newPassword", min_length=MIN_PASSWORD_LENGTH)


class MfaSetupResponse(CamelModel):
    secret: str
    qr_code: str = Field(..., alias="qrCode")
    otpauth_url: str = Field(..., alias="otpauthUrl")
    message: str = "Scan QR with authenticator app"


class MfaVerifyRequest(CamelModel):
    code: str = Field(..., min_length=6, max_length=8)


class MfaVerifyResponse(CamelModel):
    message: str
    mfa_enabled: bool = Field(..., alias="mfaEnabled")


class MfaDisableRequest(CamelModel):
    password: str


class BackupCodesResponse(CamelModel):
    message: str = "Backup codes generated successfully"
    backup_codes: List[str] = Field(..., alias="backupCodes")


class MessageResponse(CamelModel):
    message: str
