"""Tests for the typed, namespaced TokenStore."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pkceauth.exceptions import InvalidInput
from pkceauth.models import TokenResponse
from pkceauth.storage import MemoryStore, TokenStore


@pytest.fixture()
def backend() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def tokens(backend: MemoryStore) -> TokenStore:
    return TokenStore(backend, "client-123")


def _signed_in(tokens: TokenStore) -> None:
    tokens.save_result(
        {
            "access_token": "at",
            "id_token": "idt",
            "refresh_token": "rt",
            "scope": "openid email",
            "expires_in": 3600,
        }
    )
    tokens.save_user_profile(
        {"sub": "42", "name": "Ada", "email": "ada@example.com", "picture": "https://img/ada.png"}
    )


class TestKeys:
    def test_key_format(self, tokens: TokenStore) -> None:
        assert tokens.key_for("accessToken") == "DataStorage___client-123__accessToken"

    def test_custom_namespace(self, backend: MemoryStore) -> None:
        store = TokenStore(backend, "abc", namespace="MyApp")
        assert store.key_for("id") == "MyApp___abc__id"

    def test_setters_write_through(self, tokens: TokenStore, backend: MemoryStore) -> None:
        tokens.access_token = "at"
        assert backend.get("DataStorage___client-123__accessToken") == "at"

    def test_setting_none_removes_key(self, tokens: TokenStore, backend: MemoryStore) -> None:
        tokens.refresh_token = "rt"
        tokens.refresh_token = None
        assert backend.keys() == []

    def test_scopes_stored_space_joined(self, tokens: TokenStore, backend: MemoryStore) -> None:
        tokens.scopes = ["openid", "email"]
        assert backend.get(tokens.key_for("scope")) == "openid email"
        assert tokens.scopes == ["openid", "email"]

    def test_scopes_empty_when_absent(self, tokens: TokenStore) -> None:
        assert tokens.scopes == []

    def test_expires_at_roundtrip(self, tokens: TokenStore) -> None:
        when = datetime(2031, 5, 4, 12, 30, tzinfo=timezone.utc)
        tokens.expires_at = when
        assert tokens.expires_at == when

    def test_naive_expiry_read_as_utc(self, tokens: TokenStore, backend: MemoryStore) -> None:
        backend.set(tokens.key_for("expiresAt"), "2031-05-04T12:30:00")
        assert tokens.expires_at == datetime(2031, 5, 4, 12, 30, tzinfo=timezone.utc)

    def test_garbage_expiry_is_none(self, tokens: TokenStore, backend: MemoryStore) -> None:
        backend.set(tokens.key_for("expiresAt"), "next tuesday")
        assert tokens.expires_at is None


class TestSaveResult:
    def test_sets_all_fields(self, tokens: TokenStore) -> None:
        before = datetime.now(timezone.utc)
        tokens.save_result(
            {
                "access_token": "at",
                "id_token": "idt",
                "refresh_token": "rt",
                "scope": "openid email",
                "expires_in": 3600,
            }
        )
        assert tokens.access_token == "at"
        assert tokens.id_token == "idt"
        assert tokens.refresh_token == "rt"
        assert tokens.scopes == ["openid", "email"]
        assert tokens.expires_at is not None
        assert before + timedelta(seconds=3590) < tokens.expires_at
        assert tokens.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=3600)

    def test_keeps_refresh_token_when_response_has_none(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "a1", "refresh_token": "rt", "expires_in": 60})
        tokens.save_result({"access_token": "a2", "expires_in": 60})
        assert tokens.access_token == "a2"
        assert tokens.refresh_token == "rt"

    def test_replaces_refresh_token_when_rotated(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "a1", "refresh_token": "rt1"})
        tokens.save_result({"access_token": "a2", "refresh_token": "rt2"})
        assert tokens.refresh_token == "rt2"

    def test_numeric_string_expires_in(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "at", "expires_in": "120"})
        assert tokens.expires_at is not None
        remaining = tokens.expires_at - datetime.now(timezone.utc)
        assert timedelta(seconds=110) < remaining <= timedelta(seconds=120)

    def test_missing_expires_in_defaults_to_one_hour(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "at"})
        assert tokens.expires_at is not None
        remaining = tokens.expires_at - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    def test_missing_scope_uses_requested(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "at"}, requested_scopes=["openid", "drive"])
        assert tokens.scopes == ["openid", "drive"]

    def test_missing_scope_keeps_previous(self, tokens: TokenStore) -> None:
        tokens.save_result({"access_token": "a1", "scope": "openid email"})
        tokens.save_result({"access_token": "a2"})
        assert tokens.scopes == ["openid", "email"]

    def test_accepts_model(self, tokens: TokenStore) -> None:
        response = tokens.save_result(TokenResponse(access_token="at", expires_in=30))
        assert response.access_token == "at"
        assert tokens.access_token == "at"

    def test_malformed_response(self, tokens: TokenStore) -> None:
        with pytest.raises(InvalidInput):
            tokens.save_result({"token_type": "Bearer"})


class TestViews:
    def test_token_set_none_without_tokens(self, tokens: TokenStore) -> None:
        assert tokens.token_set is None

    def test_token_set(self, tokens: TokenStore) -> None:
        _signed_in(tokens)
        token_set = tokens.token_set
        assert token_set is not None
        assert token_set.access_token == "at"
        assert token_set.refresh_token == "rt"
        assert token_set.scopes == ["openid", "email"]
        assert not token_set.is_expired()

    def test_user_profile(self, tokens: TokenStore) -> None:
        _signed_in(tokens)
        profile = tokens.user_profile
        assert profile is not None
        assert profile.id == "42"
        assert profile.email == "ada@example.com"
        assert profile.display_name == "Ada"
        assert profile.photo_url == "https://img/ada.png"

    def test_user_profile_none_without_tokens(self, tokens: TokenStore) -> None:
        tokens.save_user_profile({"sub": "42", "email": "ada@example.com"})
        assert tokens.user_profile is None


class TestClearing:
    def test_clear_keeps_id_only(self, tokens: TokenStore, backend: MemoryStore) -> None:
        _signed_in(tokens)
        tokens.clear()
        assert tokens.id == "42"
        assert backend.keys() == [tokens.key_for("id")]
        assert tokens.token_set is None
        assert tokens.user_profile is None

    def test_purge_removes_id(self, tokens: TokenStore, backend: MemoryStore) -> None:
        _signed_in(tokens)
        tokens.purge()
        assert tokens.id is None
        assert backend.keys() == []

    def test_purge_leaves_other_clients(self, backend: MemoryStore) -> None:
        first = TokenStore(backend, "first")
        second = TokenStore(backend, "second")
        _signed_in(first)
        _signed_in(second)

        first.purge()

        assert first.token_set is None
        assert second.access_token == "at"

    def test_clear_all_wipes_every_client(self, backend: MemoryStore) -> None:
        first = TokenStore(backend, "first")
        second = TokenStore(backend, "second")
        _signed_in(first)
        _signed_in(second)
        backend.set("unrelated", "value")

        first.clear_all()

        assert backend.keys() == []
        assert first.id is None and second.id is None
