from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from postpilot.models import PasswordReset, User, VerificationCode
from postpilot.security.auth import create_access_token
from postpilot.security.crypto import hash_token

def test_signup_creates_manager_and_sets_cookie(api, db):
    res = api.post("/api/auth/signup", json={"name": "  Riley  ", "email": "Riley@Studio.example.com",
                                              "password": "longenough"})
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["role"] == "manager"
    assert body["user"]["name"] == "Riley"
    assert body["user"]["email"] == "riley@studio.example.com"
    assert "access_token" in res.headers.get("set-cookie", "")
    assert db.query(User).count() == 1

def test_signup_rejects_duplicates_and_short_passwords(api, user):
    res = api.post("/api/auth/signup", json={"name": "Other", "email": "MANAGER@agency.example.com",
                                              "password": "longenough"})
    assert res.status_code == 409

    res = api.post("/api/auth/signup", json={"name": "Other", "email": "new@agency.example.com", "password": "short"})
    assert res.status_code == 422

def test_manager_login(api, user, password):
    res = api.post("/api/auth/login", json={"email": user.email, "password": password})
    assert res.status_code == 200
    token = res.json()["token"]

    me = api.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == user.email
    assert me.json()["report_schedule"] == {"enabled": False, "day_of_month": 1, "email": None}

def test_bad_credentials(api, user, password):
    res = api.post("/api/auth/login", json={"email": user.email, "password": "wrong-password"})
    assert res.status_code == 401
    res = api.post("/api/auth/login", json={"email": "nobody@agency.example.com", "password": password})
    assert res.status_code == 401

def test_admin_login_requires_emailed_code(api, db, admin_user, password):
    with patch("postpilot.routes.auth.send_verification_code") as send:
        first = api.post("/api/auth/login", json={"email": admin_user.email, "password": password})
        second = api.post("/api/auth/login", json={"email": admin_user.email, "password": password})

    assert first.status_code == 200
    assert first.json()["requires_verification"] is True
    assert "token" not in first.json()
    old_code = send.call_args_list[0].args[1]
    new_code = send.call_args_list[1].args[1]
    assert len(new_code) == 6

    if old_code != new_code:
        stale = api.post("/api/auth/verify-code", json={"email": admin_user.email, "code": old_code})
        assert stale.status_code == 401

    res = api.post("/api/auth/verify-code", json={"email": admin_user.email, "code": new_code})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"

    reused = api.post("/api/auth/verify-code", json={"email": admin_user.email, "code": new_code})
    assert reused.status_code == 401

def test_expired_code_is_rejected(api, db, admin_user):
    db.add(VerificationCode(user_id=admin_user.id, code="123456",
                            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
    db.commit()
    res = api.post("/api/auth/verify-code", json={"email": admin_user.email, "code": "123456"})
    assert res.status_code == 401

def test_password_reset_flow(api, db, user):
    with patch("postpilot.routes.auth.send_password_reset") as send:
        res = api.post("/api/auth/forgot-password", json={"email": user.email})
        unknown = api.post("/api/auth/forgot-password", json={"email": "ghost@agency.example.com"})

    assert res.status_code == 200
    assert unknown.status_code == 200
    assert res.json() == unknown.json()
    assert send.call_count == 1
    raw = send.call_args.args[1]
    assert db.query(PasswordReset).one().token_hash == hash_token(raw)

    res = api.post("/api/auth/reset-password", json={"token": raw, "password": "brand-new-password"})
    assert res.status_code == 200
    login = api.post("/api/auth/login", json={"email": user.email, "password": "brand-new-password"})
    assert login.status_code == 200

    again = api.post("/api/auth/reset-password", json={"token": raw, "password": "another-password"})
    assert again.status_code == 400

def test_missing_and_invalid_tokens(api):
    res = api.get("/api/auth/me")
    assert res.status_code == 401
    assert res.json()["detail"]["code"] == "NO_TOKEN"

    res = api.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.json()["detail"]["code"] == "INVALID_TOKEN"

    expired = create_access_token({"sub": "1"}, expires_delta=timedelta(seconds=-5))
    res = api.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert res.json()["detail"]["code"] == "TOKEN_EXPIRED"

def test_landing_route_by_role(api, user, admin_user, auth_headers):
    assert api.get("/api/auth/landing").json() == {"route": "/login"}
    assert api.get("/api/auth/landing", headers=auth_headers).json() == {"route": "/dashboard"}
    admin_token = create_access_token({"sub": str(admin_user.id), "role": "admin"})
    assert api.get("/api/auth/landing", params={"token": admin_token}).json() == {"route": "/admin"}

def test_logout_clears_cookie(api):
    res = api.post("/api/auth/logout")
    assert res.status_code == 200
    assert "access_token" in res.headers.get("set-cookie", "")
