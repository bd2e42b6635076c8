from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import auth, profiles
from api.jwt_utils import verify_access_token
from api.models import AuthLoginRequest, AuthRegisterRequest


class FakeConn:
    def __init__(self):
        self.commits = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


class FakeRequest:
    def __init__(self, headers=None, host="203.0.113.5"):
        self.headers = headers or {}
        self.client = SimpleNamespace(host=host)


@pytest.fixture
def token_store(monkeypatch):
    stored = []
    monkeypatch.setattr(main_mod, "store_refresh_token", lambda _c, user_id, refresh_id, exp, device_id: stored.append(user_id))
    monkeypatch.setattr(main_mod, "update_last_login", lambda _c, _u: None)
    return stored


def test_password_rules():
    assert auth.password_problem("short") == "password_too_short"
    assert auth.password_problem("x" * 200) == "password_too_long"
    assert auth.password_problem("long enough") is None
    assert auth.validate_email(auth.normalize_email("  Ruth@Example.com ")) is True
    assert auth.validate_email("not-an-email") is False


def test_register_rejects_bad_input(monkeypatch):
    with pytest.raises(HTTPException) as exc:
        main_mod.register(AuthRegisterRequest(email="nope", password="longpassword"), conn=FakeConn())
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        main_mod.register(AuthRegisterRequest(email="a@example.com", password="short"), conn=FakeConn())
    assert exc.value.status_code == 400
    assert exc.value.detail == "password too short"

    monkeypatch.setattr(main_mod, "get_user_by_email", lambda _c, _e: {"user_id": "u-1"})
    with pytest.raises(HTTPException) as exc:
        main_mod.register(AuthRegisterRequest(email="a@example.com", password="longpassword"), conn=FakeConn())
    assert exc.value.status_code == 409


def test_register_issues_tokens(monkeypatch, token_store):
    monkeypatch.setattr(main_mod, "get_user_by_email", lambda _c, _e: None)
    monkeypatch.setattr(
        main_mod, "create_user", lambda _c, email, _pw, _name: {"user_id": "u-7", "email": email}
    )
    monkeypatch.setattr(profiles, "ensure_preferences", lambda _c, _u: {})
    conn = FakeConn()

    response = main_mod.register(
        AuthRegisterRequest(email=" New@Example.com", password="longpassword"), conn=conn
    )
    assert response["user_id"] == "u-7"
    assert response["email"] == "new@example.com"
    assert response["token_type"] == "Bearer"
    assert verify_access_token(response["access_token"])["sub"] == "u-7"
    assert token_store == ["u-7"]
    assert conn.commits == 1


def test_login_blocked_returns_retry_after(monkeypatch):
    blocked = {"fail_count": 6, "blocked_until": datetime.now(timezone.utc) + timedelta(seconds=25)}
    monkeypatch.setattr(main_mod, "get_login_attempt", lambda _c, scope, _k: blocked if scope == "account" else None)

    with pytest.raises(HTTPException) as exc:
        main_mod.login(AuthLoginRequest(email="a@example.com", password="whatever1"), FakeRequest(), conn=FakeConn())
    assert exc.value.status_code == 429
    assert 0 < int(exc.value.headers["Retry-After"]) <= 25


def test_login_requires_captcha_after_many_failures(monkeypatch):
    attempt = {"fail_count": auth.LOGIN_CAPTCHA_THRESHOLD, "blocked_until": None}
    monkeypatch.setattr(main_mod, "get_login_attempt", lambda _c, _s, _k: attempt)
    monkeypatch.setattr(main_mod, "verify_captcha_token", lambda _t, _ip: False)

    with pytest.raises(HTTPException) as exc:
        main_mod.login(AuthLoginRequest(email="a@example.com", password="whatever1"), FakeRequest(), conn=FakeConn())
    assert exc.value.status_code == 403


def test_login_wrong_password_records_failures(monkeypatch):
    failures = []
    monkeypatch.setattr(main_mod, "get_login_attempt", lambda _c, _s, _k: None)
    monkeypatch.setattr(
        main_mod, "get_user_by_email", lambda _c, _e: {"user_id": "u-1", "email": "a@example.com", "password_hash": "x"}
    )
    monkeypatch.setattr(main_mod, "verify_password", lambda _pw, _stored: False)
    monkeypatch.setattr(main_mod, "record_login_failure", lambda _c, scope, key, _now: failures.append((scope, key)))
    conn = FakeConn()

    request = FakeRequest(headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})
    with pytest.raises(HTTPException) as exc:
        main_mod.login(AuthLoginRequest(email="A@example.com", password="wrongpass"), request, conn=conn)
    assert exc.value.status_code == 401
    assert failures == [("account", "a@example.com"), ("ip", "198.51.100.7")]
    assert conn.commits == 1


def test_login_success_clears_attempts(monkeypatch, token_store):
    cleared = []
    stored_hash = auth.hash_password("correct horse")
    monkeypatch.setattr(main_mod, "get_login_attempt", lambda _c, _s, _k: None)
    monkeypatch.setattr(
        main_mod, "get_user_by_email", lambda _c, _e: {"user_id": "u-1", "email": "a@example.com", "password_hash": stored_hash}
    )
    monkeypatch.setattr(main_mod, "clear_login_attempt", lambda _c, scope, _k: cleared.append(scope))

    response = main_mod.login(
        AuthLoginRequest(email="a@example.com", password="correct horse"), FakeRequest(), conn=FakeConn()
    )
    assert response["user_id"] == "u-1"
    assert cleared == ["account", "ip"]


def test_require_user_rejects_missing_and_bad_tokens():
    with pytest.raises(HTTPException) as exc:
        main_mod.require_user(FakeRequest(), conn=FakeConn())
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException) as exc:
        main_mod.require_user(FakeRequest(headers={"Authorization": "Bearer not-a-jwt"}), conn=FakeConn())
    assert exc.value.status_code == 401


def test_is_login_blocked():
    now = datetime(2026, 5, 6, 12, 0, tzinfo=timezone.utc)
    assert not auth.is_login_blocked(None, now)
    assert auth.is_login_blocked({"blocked_until": now + timedelta(seconds=5)}, now)
    assert auth.login_retry_after({"blocked_until": now + timedelta(seconds=5)}, now) == 5
    assert auth.next_block_until(auth.LOGIN_FAIL_DELAY_THRESHOLD - 1, now) is None
