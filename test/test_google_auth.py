import asyncio
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from google.oauth2.credentials import Credentials

import storage.google_auth as google_auth
from storage.google_auth import GoogleAuthStore

KEY = Fernet.generate_key().decode()


class FakePool:
    def __init__(self):
        self.executed = []

    async def execute(self, query, *args):
        self.executed.append((query, args))
        return "INSERT 0 1"


def test_tokens_round_trip_through_encryption():
    store = GoogleAuthStore(key=KEY)
    token = store._encrypt("ya29.secret")
    assert token != "ya29.secret"
    assert store._decrypt(token) == "ya29.secret"
    assert store._encrypt(None) is None


def test_token_encrypted_with_another_key_is_unreadable():
    token = GoogleAuthStore(key=KEY)._encrypt("ya29.secret")
    assert GoogleAuthStore(key=Fernet.generate_key().decode())._decrypt(token) is None


def test_missing_key_falls_back_to_a_generated_one(monkeypatch):
    monkeypatch.delenv("GOOGLE_TOKEN_ENCRYPTION_KEY", raising=False)
    store = GoogleAuthStore()
    assert store._decrypt(store._encrypt("x")) == "x"


def test_save_credentials_stores_ciphertext_and_aware_expiry(monkeypatch):
    pool = FakePool()
    monkeypatch.setattr(google_auth, "get_pool", lambda: pool)
    store = GoogleAuthStore(key=KEY)

    creds = Credentials(token="access", refresh_token="refresh", expiry=datetime(2026, 3, 2, 12, 0))
    asyncio.run(store.save_credentials("alice", creds, "alice@example.com"))

    (query, args) = pool.executed[0]
    user_id, access_enc, refresh_enc, expiry, email = args
    assert user_id == "alice"
    assert store._decrypt(access_enc) == "access"
    assert store._decrypt(refresh_enc) == "refresh"
    assert expiry.tzinfo is not None
    assert email == "alice@example.com"
    assert "COALESCE(EXCLUDED.refresh_token" in query


def test_valid_credentials_are_returned_untouched(monkeypatch):
    store = GoogleAuthStore(key=KEY)
    creds = Credentials(token="access", expiry=datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1))

    async def fake_get(user_id):
        return creds

    monkeypatch.setattr(store, "get_credentials", fake_get)
    assert asyncio.run(store.get_valid_credentials("alice")) is creds


def test_expired_credentials_without_refresh_token_are_unusable(monkeypatch):
    store = GoogleAuthStore(key=KEY)
    creds = Credentials(token="access", expiry=datetime(2000, 1, 1))

    async def fake_get(user_id):
        return creds

    monkeypatch.setattr(store, "get_credentials", fake_get)
    assert asyncio.run(store.get_valid_credentials("alice")) is None


def test_expired_credentials_are_refreshed_and_saved(monkeypatch):
    store = GoogleAuthStore(key=KEY)
    creds = Credentials(token="old", refresh_token="refresh", expiry=datetime(2000, 1, 1))
    saved = []

    def fake_refresh(request):
        creds.token = "new"
        creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)

    async def fake_get(user_id):
        return creds

    async def fake_save(user_id, credentials, email=None):
        saved.append((user_id, credentials.token))

    monkeypatch.setattr(creds, "refresh", fake_refresh)
    monkeypatch.setattr(store, "get_credentials", fake_get)
    monkeypatch.setattr(store, "save_credentials", fake_save)

    out = asyncio.run(store.get_valid_credentials("alice"))
    assert out.token == "new"
    assert saved == [("alice", "new")]
