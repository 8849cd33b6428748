"""
Binds issued tokens to HTTP responses.

Tokens travel in the JSON body (bearer clients), in HttpOnly cookies
(browsers), or both. The refresh cookie is scoped to the refresh endpoint
path so it is never sent anywhere else.
"""
import enum
from dataclasses import dataclass

from fastapi import Request, Response

from .config import Settings

TRANSPORT_HEADER = "X-Auth-Transport"


class TransportStrategy(str, enum.Enum):
    BEARER = "bearer"
    COOKIE = "cookie"
    BOTH = "both"

    @property
    def uses_body(self) -> bool:
        return self in (TransportStrategy.BEARER, TransportStrategy.BOTH)

    @property
    def uses_cookies(self) -> bool:
        return self in (TransportStrategy.COOKIE, TransportStrategy.BOTH)


def select_strategy(request: Request) -> TransportStrategy:
    requested = request.headers.get(TRANSPORT_HEADER, "").strip().lower()
    if requested:
        try:
            return TransportStrategy(requested)
        except ValueError:
            pass
    if request.headers.get("origin"):
        return TransportStrategy.BOTH
    return TransportStrategy.BEARER


@dataclass(frozen=True)
class CookiePolicy:
    secure: bool
    samesite: str
    domain: str | None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookiePolicy":
        secure = settings.secure_cookies
        return cls(
            secure=secure,
            samesite="none" if secure else "lax",
            domain=settings.cookie_domain or None,
        )


class SessionTransport:
    def __init__(self, settings: Settings):
        self.policy = CookiePolicy.from_settings(settings)
        self.access_cookie = settings.access_cookie_name
        self.refresh_cookie = settings.refresh_cookie_name
        self.refresh_path = settings.refresh_cookie_path
        self.access_max_age = settings.access_token_exp_minutes * 60
        self.refresh_max_age = settings.refresh_token_exp_minutes * 60

    def body(self, strategy: TransportStrategy, access_token: str, refresh_token: str | None) -> dict:
        if not strategy.uses_body:
            return {"token": None, "refreshToken": None}
        return {"token": access_token, "refreshToken": refresh_token}

    def attach(
        self,
        response: Response,
        strategy: TransportStrategy,
        access_token: str,
        refresh_token: str | None = None,
    ) -> None:
        if not strategy.uses_cookies:
            return
        response.set_cookie(
            self.access_cookie,
            access_token,
            max_age=self.access_max_age,
            path="/",
            domain=self.policy.domain,
            secure=self.policy.secure,
            httponly=True,
            samesite=self.policy.samesite,
        )
        if refresh_token:
            response.set_cookie(
                self.refresh_cookie,
                refresh_token,
                max_age=self.refresh_max_age,
                path=self.refresh_path,
                domain=self.policy.domain,
                secure=self.policy.secure,
                httponly=True,
                samesite=self.policy.samesite,
            )

    def clear(self, response: Response) -> None:
        response.delete_cookie(
            self.access_cookie,
            path="/",
            domain=self.policy.domain,
            secure=self.policy.secure,
            httponly=True,
            samesite=self.policy.samesite,
        )
        response.delete_cookie(
            self.refresh_cookie,
            path=self.refresh_path,
            domain=self.policy.domain,
            secure=self.policy.secure,
            httponly=True,
            samesite=self.policy.samesite,
        )

    def access_token_from(self, request: Request) -> str | None:
        authorization = request.headers.get("authorization", "")
        if authorization.lower().startswith("bearer "):
            token = authorization.split(" ", 1)[1].strip()
            if token:
                return token
        return request.cookies.get(self.access_cookie) or None

    def refresh_token_from(self, request: Request, body_token: str | None = None) -> str | None:
        return request.cookies.get(self.refresh_cookie) or body_token or None
