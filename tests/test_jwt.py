import jwt

from api import jwt_utils


def test_access_token_round_trip():
    token, exp = jwt_utils.create_access_token("u-1", "a@example.com")
    payload = jwt_utils.verify_access_token(token)
    assert payload["sub"] == "u-1"
    assert payload["email"] == "a@example.com"
    assert payload["exp"] == exp


def test_refresh_token_is_not_an_access_token():
    token, refresh_id, _exp = jwt_utils.create_refresh_token("u-1")
    assert jwt_utils.verify_access_token(token) is None
    payload = jwt_utils.verify_refresh_token(token)
    assert payload["jti"] == refresh_id


def test_tampered_or_expired_tokens_are_rejected(monkeypatch):
    token, _ = jwt_utils.create_access_token("u-1")
    assert jwt_utils.verify_access_token(token + "x") is None

    foreign = jwt.encode({"sub": "u-1", "typ": "access"}, "other-secret", algorithm="HS256")
    assert jwt_utils.verify_access_token(foreign) is None

    monkeypatch.setattr(jwt_utils, "JWT_ACCESS_TTL_SEC", -120)
    expired, _ = jwt_utils.create_access_token("u-1")
    assert jwt_utils.verify_access_token(expired) is None


def test_hash_refresh_id_is_stable():
    assert jwt_utils.hash_refresh_id("abc") == jwt_utils.hash_refresh_id("abc")
    assert jwt_utils.hash_refresh_id("abc") != jwt_utils.hash_refresh_id("abd")
