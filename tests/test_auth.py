import pytest
from pydantic import ValidationError
from atelier.auth.utils import create_access_token, decode_token, hash_password, validate_password, verify_password
from atelier.cache.sessions import SessionStore
from atelier.config.settings import Settings

API = "/api/v1"
PASSWORD = "Passw0rd!x"


async def test_first_user_is_admin_then_customers(ac_client):
    r = await ac_client.post(f"{API}/auth/register", json={"email": "Root@Atelier.shop", "password": PASSWORD})
    assert r.status_code == 201, r.text
    first = r.json()["data"]["user"]
    assert first["role"] == "admin"
    assert first["email"] == "root@atelier.shop"

    r = await ac_client.post(f"{API}/auth/register", json={"email": "ivy@atelier.shop", "password": PASSWORD})
    assert r.json()["data"]["user"]["role"] == "customer"
    assert "password_hash" not in r.json()["data"]["user"]


async def test_register_rejections(ac_client):
    await ac_client.post(f"{API}/auth/register", json={"email": "jan@atelier.shop", "password": PASSWORD})

    r = await ac_client.post(f"{API}/auth/register", json={"email": "JAN@atelier.shop", "password": PASSWORD})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "EMAIL_TAKEN"

    r = await ac_client.post(f"{API}/auth/register", json={"email": "kim@atelier.shop", "password": "short1"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = await ac_client.post(f"{API}/auth/register", json={"email": "not-an-email", "password": PASSWORD})
    assert r.status_code == 400


async def test_login_wrong_password(ac_client, register_and_login):
    await register_and_login(ac_client, "lea@atelier.shop")

    r = await ac_client.post(f"{API}/auth/login", json={"email": "lea@atelier.shop", "password": "Wrong1234"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CREDENTIALS"
    assert r.headers["www-authenticate"] == "Bearer"

    r = await ac_client.post(f"{API}/auth/login", json={"email": "nobody@atelier.shop", "password": PASSWORD})
    assert r.status_code == 401


async def test_me_and_logout_revokes_token(ac_client, user_auth):
    r = await ac_client.get(f"{API}/auth/me", headers=user_auth.headers)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "alice@atelier.shop"
    assert r.json()["data"]["session"]["user_id"] == user_auth.user["id"]

    r = await ac_client.post(f"{API}/auth/logout", headers=user_auth.headers)
    assert r.status_code == 200

    # the token is still well formed and unexpired, the session behind it is gone
    r = await ac_client.get(f"{API}/auth/me", headers=user_auth.headers)
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "SESSION_EXPIRED"


async def test_bad_tokens_are_rejected(ac_client, user_auth, settings):
    r = await ac_client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "TOKEN_INVALID"

    r = await ac_client.get(f"{API}/auth/me", headers={"Authorization": "Basic abc"})
    assert r.json()["error"]["code"] == "TOKEN_INVALID"

    expired = create_access_token(settings, user_auth.user["id"], "customer", "alice@atelier.shop",
                                  expires_minutes=-5)
    r = await ac_client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "TOKEN_INVALID"

    r = await ac_client.get(f"{API}/auth/me")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "NOT_AUTHENTICATED"


async def test_admin_routes_require_admin_role(ac_client, user_auth, admin_auth):
    r = await ac_client.get(f"{API}/admin/orders", headers=user_auth.headers)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"

    r = await ac_client.get(f"{API}/admin/orders")
    assert r.status_code == 401

    r = await ac_client.get(f"{API}/admin/sessions", headers=admin_auth)
    assert r.status_code == 200
    assert r.json()["data"]["active_sessions"] == 2


async def test_admin_can_revoke_all_sessions(ac_client, user_auth, admin_auth):
    r = await ac_client.delete(f"{API}/admin/sessions", headers=admin_auth)
    assert r.status_code == 200
    assert r.json()["data"]["removed"] == 2

    r = await ac_client.get(f"{API}/auth/me", headers=user_auth.headers)
    assert r.json()["error"]["code"] == "SESSION_EXPIRED"


async def test_admin_revokes_single_user(ac_client, user_auth, admin_auth):
    r = await ac_client.delete(f"{API}/admin/sessions/{user_auth.user['id']}", headers=admin_auth)
    assert r.json()["data"]["revoked"] is True

    assert (await ac_client.get(f"{API}/auth/me", headers=user_auth.headers)).status_code == 401
    assert (await ac_client.get(f"{API}/auth/me", headers=admin_auth)).status_code == 200


async def test_sync_merges_client_data(ac_client, user_auth):
    r = await ac_client.post(f"{API}/auth/sync", headers=user_auth.headers, json={"client_data": {"theme": "dark"}})
    assert r.status_code == 200
    r = await ac_client.post(f"{API}/auth/sync", headers=user_auth.headers, json={"client_data": {"lang": "ru"}})
    assert r.json()["data"]["session"]["client_data"] == {"theme": "dark", "lang": "ru"}


async def test_session_store_keeps_ttl_on_touch(redis_client):
    store = SessionStore(redis_client, ttl_seconds=600)
    await store.create(7, user_agent="pytest")
    await redis_client.expire(store.key(7), 120)

    assert await store.exists(7) is True
    record = await store.touch(7)
    assert record is not None
    assert 0 < await store.remaining_ttl(7) <= 120

    assert await store.count() == 1
    assert await store.delete(7) is True
    assert await store.touch(7) is None
    assert await store.get(7) is None


async def test_session_store_clear_all(redis_client):
    store = SessionStore(redis_client, ttl_seconds=600)
    for uid in range(1, 6):
        await store.create(uid)
    await redis_client.set("unrelated:key", "1")

    assert await store.clear_all() == 5
    assert await store.count() == 0
    assert await redis_client.get("unrelated:key") == b"1"


def test_password_helpers():
    hashed = hash_password(PASSWORD, "pbkdf2_sha256")
    assert verify_password(PASSWORD, hashed, "pbkdf2_sha256")
    assert not verify_password("other-pass1", hashed, "pbkdf2_sha256")

    assert validate_password("abcdefgh")[0] is False
    assert validate_password("12345678")[0] is False
    assert validate_password("abcd1234")[0] is True


def test_token_round_trip(settings):
    token = create_access_token(settings, 42, "customer", "x@atelier.shop")
    claims = decode_token(settings, token)
    assert claims["user_id"] == 42
    assert claims["role"] == "customer"
    assert claims["jti"]

    assert decode_token(settings.model_copy(update={"JWT_SECRET": "other"}), token) is None


def test_signing_secret_must_be_configured(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError) as exc:
        Settings(_env_file=None)
    assert "JWT_SECRET" in str(exc.value)

    assert Settings(_env_file=None, JWT_SECRET="from-env").JWT_SECRET == "from-env"
