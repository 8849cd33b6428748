import base64
import io
from datetime import datetime

import pyotp
import qrcode

from .config import get_settings

# 32 base32 chars = 160 bits
SECRET_LENGTH = 32


def generate_secret() -> str:
    return pyotp.random_base32(length=SECRET_LENGTH)


def totp_from_secret(secret: str) -> pyotp.TOTP:
    settings = get_settings()
    return pyotp.TOTP(secret, issuer=settings.totp_issuer)


def verify_totp(secret: str | None, code: str | None, for_time: datetime | None = None) -> bool:
    if not secret or not code:
        return False
    totp = totp_from_secret(secret)
    # ±valid_window 30-second steps absorb authenticator clock drift
    return totp.verify(code.strip(), for_time=for_time, valid_window=get_settings().totp_valid_window)


def provisioning_uri(secret: str, account: str) -> str:
    return totp_from_secret(secret).provisioning_uri(name=account, issuer_name=get_settings().totp_issuer)


def qr_code_data_uri(payload: str) -> str:
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
