"""
Error taxonomy for authentication, session and encryption failures.

HTTP-facing errors subclass HTTPException so services can raise them directly;
the detail text is always generic so responses never reveal which factor
failed or whether an account exists.
"""
import enum

from fastapi import HTTPException, status


class ConfigurationError(RuntimeError):
    """Missing or malformed operator configuration. Fatal at startup."""


class TokenErrorCode(str, enum.Enum):
    EXPIRED = "TOKEN_EXPIRED"
    INVALID = "TOKEN_INVALID"


class TokenError(Exception):
    def __init__(self, code: TokenErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code


class InvalidCredentials(HTTPException):
    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class InvalidMfaCode(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid MFA code")


class MfaNotInitiated(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA setup not initiated")


class InvalidResetToken(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired token")


class DeliveryFailure(HTTPException):
    def __init__(self, detail: str = "Failed to send OTP"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


class TokenExpired(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Token expired", "code": TokenErrorCode.EXPIRED.value},
        )


class TokenInvalid(HTTPException):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": message, "code": TokenErrorCode.INVALID.value},
        )


def http_error_for(exc: TokenError) -> HTTPException:
    if exc.code is TokenErrorCode.EXPIRED:
        return TokenExpired()
    return TokenInvalid()
