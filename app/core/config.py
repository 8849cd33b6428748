from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

MIN_PASSWORD_HASH_ROUNDS = 12


def _split_csv(value: str | List[str]) -> List[str]:
    if isinstance(value, list):
        return value
    return [v.strip() for v in str(value).split(",") if v and v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TOURBOOK_",
        extra="ignore",
    )

    app_name: str = "Bhutan Tours Booking API"
    environment: str = "development"
    # values must come from environment/.env to avoid hardcoding secrets
    database_url: str = "sqlite:///./tourbook.db"
    db_echo: bool = False

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_issuer: str = "tourbook-api"
    access_token_exp_minutes: int = 60
    refresh_token_exp_minutes: int = 7 * 24 * 60

    otp_exp_minutes: int = 5
    otp_send_timeout_seconds: float = 5.0
    reset_token_exp_minutes: int = 60
    password_hash_rounds: int = MIN_PASSWORD_HASH_ROUNDS
    otp_hash_rounds: int = 10

    totp_issuer: str = "Bhutan Tours"
    totp_valid_window: int = 2

    admin_email: str = ""
    admin_password: str = ""
    admin_id: str = "admin-0001"
    admin_name: str = "System Admin"

    # 64 hex chars (256 bits); the process refuses to start without it
    encryption_key: str = ""

    frontend_url: str = "http://localhost:3000"
    cookie_domain: str | None = None
    access_cookie_name: str = "accessToken"
    refresh_cookie_name: str = "refreshToken"
    refresh_cookie_path: str = "/api/auth/refresh-token"

    email_provider: str = "console"
    email_from: str = "Bhutan Tours <no-reply@bhutantours.example>"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    sendgrid_api_key: str = ""

    cors_origins_raw: str = "http://localhost:3000"
    enable_docs: bool = True

    log_level: str = "INFO"
    log_dir: str | None = None

    @property
    def cors_origins(self) -> List[str]:
        parsed = _split_csv(self.cors_origins_raw)
        return parsed or ["http://localhost:3000"]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def secure_cookies(self) -> bool:
        # cross-site browsers only send SameSite=None cookies when Secure is set
        return self.is_production or self.frontend_url.lower().startswith("https://")

    @property
    def admin_email_normalized(self) -> str:
        return self.admin_email.strip().lower()

    def validate_security(self) -> None:
        if not self.jwt_secret or not self.jwt_refresh_secret:
            raise ConfigurationError("JWT signing secrets must be configured")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ConfigurationError("Access and refresh tokens must use different signing secrets")
        if self.password_hash_rounds < MIN_PASSWORD_HASH_ROUNDS:
            raise ConfigurationError(
                f"password_hash_rounds must be at least {MIN_PASSWORD_HASH_ROUNDS}"
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
