from datetime import timedelta

import pyotp
import pytest

from app.core import security
from app.core.otp_cache import ExpiringCache
from app.core.time import utcnow
from app.services.otp_service import OtpEngine

NEW_USER = {
    "name": "Karma Dorji",
    "email": "karma@example.com",
    "password": "Thimphu-Valley-88",
    "phone": "+975 17 000 000",
    "country": "Bhutan",
}


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _login(client, mailer, email, password, path="/api/auth/login", headers=None):
    challenge = client.post(path, json={"email": email, "password": password}, headers=headers)
    assert challenge.status_code == 200, challenge.text
    assert challenge.json()["requiresMFA"] is True
    return client.post(
        path, json={"email": email, "password": password, "mfaCode": mailer.last_code()}, headers=headers
    )


@pytest.fixture()
def registered(client):
    response = client.post("/api/auth/register", json=NEW_USER)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_returns_session_for_bearer_clients(client, registered):
    assert registered["token"]
    assert registered["refreshToken"]
    assert registered["user"]["email"] == "karma@example.com"
    assert registered["user"]["role"] == "user"
    assert registered["user"]["mfaEnabled"] is False
    assert "passwordHash" not in registered["user"]

    me = client.get("/api/auth/me", headers=_bearer(registered["token"]))
    assert me.status_code == 200
    assert me.json()["country"] == "Bhutan"


def test_register_rejects_duplicates_admin_email_and_short_passwords(client, registered, settings):
    assert client.post("/api/auth/register", json={**NEW_USER, "email": "KARMA@example.com"}).status_code == 400
    assert client.post("/api/auth/register", json={**NEW_USER, "email": settings.admin_email}).status_code == 403
    assert client.post("/api/auth/register", json={**NEW_USER, "email": "x@example.com", "password": "short"}).status_code == 422


def test_email_otp_login(client, mailer, registered):
    challenge = client.post("/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"]})
    body = challenge.json()
    assert body == {"requiresMFA": True, "method": "otp", "message": "OTP sent to registered email"}
    code = mailer.last_code()

    wrong = f"{(int(code) + 1) % 1000000:06d}"
    rejected = client.post(
        "/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"], "mfaCode": wrong}
    )
    assert rejected.status_code == 401
    assert rejected.json()["detail"] == "Invalid MFA code"

    accepted = client.post(
        "/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"], "mfaCode": code}
    )
    assert accepted.status_code == 200
    assert accepted.json()["message"] == "Login successful"
    assert client.get("/api/auth/me", headers=_bearer(accepted.json()["token"])).status_code == 200

    replay = client.post(
        "/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"], "mfaCode": code}
    )
    assert replay.status_code == 401


def test_bad_credentials_are_indistinguishable(client, mailer, registered):
    wrong_password = client.post("/api/auth/login", json={"email": NEW_USER["email"], "password": "Not-The-Password-1"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "Not-The-Password-1"})
    assert wrong_password.status_code == unknown.status_code == 401
    assert wrong_password.json() == unknown.json() == {"detail": "Invalid credentials"}
    assert mailer.sent == []


def test_otp_delivery_failure_is_503(client, settings, make_mailer, registered):
    client.app.state.otp_engine = OtpEngine(settings, make_mailer(ok=False), ExpiringCache())
    response = client.post("/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"]})
    assert response.status_code == 503
    assert response.json()["detail"] == "Failed to send OTP"


def test_totp_enrollment_and_login(client, registered):
    headers = _bearer(registered["token"])
    setup = client.post("/api/auth/mfa/setup", headers=headers)
    assert setup.status_code == 200
    secret = setup.json()["secret"]
    assert setup.json()["qrCode"].startswith("data:image/png;base64,")

    totp = pyotp.TOTP(secret)
    live = {totp.at(utcnow() + timedelta(seconds=30 * step)) for step in range(-3, 4)}
    bad = next(c for c in ("000000", "111111", "222222") if c not in live)
    assert client.post("/api/auth/mfa/verify", json={"code": bad}, headers=headers).status_code == 401
    verified = client.post("/api/auth/mfa/verify", json={"code": pyotp.TOTP(secret).now()}, headers=headers)
    assert verified.status_code == 200
    assert verified.json()["mfaEnabled"] is True

    session = client.post(
        "/api/auth/login",
        json={"email": NEW_USER["email"], "password": NEW_USER["password"], "mfaCode": pyotp.TOTP(secret).now()},
    )
    assert session.status_code == 200
    assert session.json()["user"]["mfaEnabled"] is True


def test_backup_code_login(client, registered):
    headers = _bearer(registered["token"])
    secret = client.post("/api/auth/mfa/setup", headers=headers).json()["secret"]
    client.post("/api/auth/mfa/verify", json={"code": pyotp.TOTP(secret).now()}, headers=headers)
    codes = client.post("/api/auth/mfa/backup-codes", headers=headers).json()["backupCodes"]
    assert len(codes) == 10

    creds = {"email": NEW_USER["email"], "password": NEW_USER["password"], "mfaCode": codes[0]}
    assert client.post("/api/auth/login", json=creds).status_code == 200
    assert client.post("/api/auth/login", json=creds).status_code == 401


def test_mfa_verify_without_setup_is_400(client, registered):
    response = client.post("/api/auth/mfa/verify", json={"code": "123456"}, headers=_bearer(registered["token"]))
    assert response.status_code == 400


def test_admin_login_uses_email_otp(client, mailer, settings):
    response = _login(client, mailer, settings.admin_email, settings.admin_password, path="/api/auth/admin/login")
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Admin login successful"
    assert body["user"]["role"] == "admin"
    assert body["user"]["id"] == settings.admin_id
    assert mailer.sent[-1]["to"] == settings.admin_email_normalized

    me = client.get("/api/auth/me", headers=_bearer(body["token"]))
    assert me.json()["role"] == "admin"
    # no stored account to enroll
    assert client.post("/api/auth/mfa/setup", headers=_bearer(body["token"])).status_code == 403


def test_admin_login_rejects_other_accounts_and_wrong_password(client, registered, settings):
    other = client.post("/api/auth/admin/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"]})
    assert other.status_code == 401
    wrong = client.post("/api/auth/admin/login", json={"email": settings.admin_email, "password": "Wrong-Admin-Pass-1"})
    assert wrong.status_code == 401


def test_refresh_with_body_token(client, registered):
    refreshed = client.post("/api/auth/refresh-token", json={"refreshToken": registered["refreshToken"]})
    assert refreshed.status_code == 200
    token = refreshed.json()["token"]
    assert client.get("/api/auth/me", headers=_bearer(token)).status_code == 200


def test_refresh_rejects_access_tokens_and_missing_tokens(client, registered):
    wrong_kind = client.post("/api/auth/refresh-token", json={"refreshToken": registered["token"]})
    assert wrong_kind.status_code == 401
    assert wrong_kind.json()["detail"]["code"] == "TOKEN_INVALID"

    missing = client.post("/api/auth/refresh-token")
    assert missing.status_code == 401
    assert missing.json()["detail"]["message"] == "Refresh token missing"


def test_expired_access_token_reports_code(client, registered):
    stale = security.create_access_token(
        registered["user"]["id"], NEW_USER["email"], "user", now=utcnow() - timedelta(hours=3)
    )
    response = client.get("/api/auth/me", headers=_bearer(stale))
    assert response.status_code == 401
    assert response.json()["detail"] == {"message": "Token expired", "code": "TOKEN_EXPIRED"}


def test_missing_access_token(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "TOKEN_INVALID"


def test_cookie_transport_session_and_logout(client, mailer, registered):
    headers = {"X-Auth-Transport": "cookie"}
    response = _login(client, mailer, NEW_USER["email"], NEW_USER["password"], headers=headers)
    assert response.status_code == 200
    assert response.json()["token"] is None
    assert response.json()["refreshToken"] is None
    assert client.cookies.get("accessToken")

    assert client.get("/api/auth/me").status_code == 200
    refreshed = client.post("/api/auth/refresh-token", headers=headers)
    assert refreshed.status_code == 200
    assert refreshed.json()["token"] is None

    logout = client.post("/api/auth/logout")
    assert logout.status_code == 200
    assert all("Max-Age=0" in c for c in logout.headers.get_list("set-cookie"))
    assert client.get("/api/auth/me").status_code == 401


def test_browser_origin_gets_both_transports(client, mailer, registered):
    response = _login(client, mailer, NEW_USER["email"], NEW_USER["password"], headers={"Origin": "http://localhost:3000"})
    assert response.json()["token"]
    assert response.cookies.get("accessToken") == response.json()["token"]
    assert response.headers["Cache-Control"].startswith("no-store")


def test_password_change_revokes_earlier_tokens(client, registered):
    earlier = security.create_access_token(
        registered["user"]["id"], NEW_USER["email"], "user", now=utcnow() - timedelta(seconds=30)
    )
    earlier_refresh = security.create_refresh_token(registered["user"]["id"], now=utcnow() - timedelta(seconds=30))

    wrong = client.put(
        "/api/auth/change-password",
        json={"currentPassword": "Not-The-Password-1", "newPassword": "Paro-Taktsang-2027"},
        headers=_bearer(registered["token"]),
    )
    assert wrong.status_code == 400

    changed = client.put(
        "/api/auth/change-password",
        json={"currentPassword": NEW_USER["password"], "newPassword": "Paro-Taktsang-2027"},
        headers=_bearer(earlier),
    )
    assert changed.status_code == 200

    assert client.get("/api/auth/me", headers=_bearer(earlier)).status_code == 401
    assert client.post("/api/auth/refresh-token", json={"refreshToken": earlier_refresh}).status_code == 401
    assert client.get("/api/auth/me", headers=_bearer(changed.json()["token"])).status_code == 200


def test_forgot_and_reset_password(client, mailer, registered):
    response = client.post("/api/auth/forgot-password", json={"email": NEW_USER["email"]})
    assert response.status_code == 200
    assert response.json()["message"] == "If the email exists, a reset link will be sent"
    assert response.json()["resetUrl"] is None
    token = mailer.last_reset_token()

    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert unknown.json()["message"] == response.json()["message"]

    reset = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "Punakha-Dzong-2027"})
    assert reset.status_code == 200
    again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "Punakha-Dzong-2028"})
    assert again.status_code == 400

    assert client.post("/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"]}).status_code == 401
    assert client.post("/api/auth/login", json={"email": NEW_USER["email"], "password": "Punakha-Dzong-2027"}).status_code == 200


def test_disable_mfa_requires_password(client, registered):
    headers = _bearer(registered["token"])
    secret = client.post("/api/auth/mfa/setup", headers=headers).json()["secret"]
    client.post("/api/auth/mfa/verify", json={"code": pyotp.TOTP(secret).now()}, headers=headers)

    assert client.post("/api/auth/mfa/disable", json={"password": "Not-The-Password-1"}, headers=headers).status_code == 400
    assert client.post("/api/auth/mfa/disable", json={"password": NEW_USER["password"]}, headers=headers).status_code == 200
