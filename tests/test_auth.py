"""Tests for the auth session lifecycle."""

from unittest.mock import MagicMock

from tile_inventory.auth import (
    AuthSession,
    SessionStore,
    UserContext,
    principal_from_headers,
)
from tile_inventory.i18n import resolve_locale, suffix_labeler, translate
from tile_inventory.subscriptions import LiveQuery


class TestPrincipalFromHeaders:
    def test_reads_easy_auth_headers(self):
        user = principal_from_headers(
            {"x-ms-client-principal-id": "abc", "x-ms-client-principal-name": "a@b.c"}
        )
        assert user == UserContext(user_id="abc", name="a@b.c")

    def test_missing_principal(self):
        assert principal_from_headers({}) is None
        assert principal_from_headers({"x-ms-client-principal-id": ""}) is None


class TestAuthSession:
    """Tests for AuthSession."""

    def test_sign_in(self, user):
        session = AuthSession()
        assert not session.is_signed_in

        session.sign_in(user)

        assert session.is_signed_in
        assert session.user == user

    def test_sign_out_force_clears_live_query(self, session):
        """Every open live query stops before the user is dropped."""
        handles = [MagicMock(spec=LiveQuery), MagicMock(spec=LiveQuery)]
        registries = [session.open_registry(), session.open_registry()]
        for registry, handle in zip(registries, handles):
            registry.set(handle)

        session.sign_out()

        for registry, handle in zip(registries, handles):
            handle.unsubscribe.assert_called_once()
            assert registry.current is None
        assert not session.is_signed_in

    def test_release_registry(self, session):
        registry = session.open_registry()
        handle = MagicMock(spec=LiveQuery)
        registry.set(handle)

        session.release_registry(registry)

        handle.unsubscribe.assert_called_once()
        assert registry not in session.registries


class TestSessionStore:
    """Tests for SessionStore."""

    def test_sign_in_reuses_session(self, user):
        store = SessionStore()
        assert store.sign_in(user) is store.sign_in(user)

    def test_sign_out_ends_session(self, user):
        store = SessionStore()
        session = store.sign_in(user)
        handle = MagicMock(spec=LiveQuery)
        session.open_registry().set(handle)

        store.sign_out(user.user_id)

        handle.unsubscribe.assert_called_once()
        assert store.get(user.user_id) is None
        assert not session.is_signed_in

    def test_sign_out_unknown_user(self):
        SessionStore().sign_out("nobody")


class TestI18n:
    """Tests for localized labels."""

    def test_resolve_locale(self):
        assert resolve_locale("gu-IN") == "gu"
        assert resolve_locale("en-US,en;q=0.9") == "en"
        assert resolve_locale("fr") == "en"
        assert resolve_locale(None) == "en"

    def test_missing_translation_falls_back_to_english(self):
        assert translate("storeInitError", "gu") == translate("storeInitError", "en")

    def test_suffix_labeler(self):
        label = suffix_labeler("gu")
        assert label("") == "બેઝ"
        assert label("HL-4") == "HL-4"
