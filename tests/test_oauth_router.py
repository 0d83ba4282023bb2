"""
Tests for OAuth router endpoints.
"""

import asyncio
import hashlib
from datetime import timedelta
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from respx import MockRouter
from sqlalchemy.pool import NullPool

from conftest import (
    ACCESS_SECRET,
    GOOGLE_PROVIDER,
    REFRESH_SECRET,
    count_rows,
    fetch_rows,
    insert_rows,
    make_settings,
)
from federated_login.core.tokens import utc_now
from federated_login.infrastructure.sql_store import SqlStore
from federated_login.main import app
from federated_login.oauth.config import get_oauth_settings
from federated_login.oauth.dependencies import get_store, reset_store, set_store


TOKEN_URL = GOOGLE_PROVIDER["token_url"]
USER_INFO_URL = GOOGLE_PROVIDER["user_info_url"]


def mock_google(respx_mock: MockRouter, token=None, user_info=None):
    """Mock the Google token and user-info endpoints."""
    token_route = respx_mock.post(TOKEN_URL).mock(
        return_value=httpx.Response(200, json=token or {"access_token": "xyz"})
    )
    info_route = respx_mock.get(USER_INFO_URL).mock(
        return_value=httpx.Response(
            200, json=user_info or {"sub": "117", "email": "a@b.com"}
        )
    )
    return token_route, info_route


def use_settings(**overrides):
    app.dependency_overrides[get_oauth_settings] = lambda: make_settings(**overrides)


def rows(store, table):
    return asyncio.run(fetch_rows(store, table))


def count(store, table):
    return asyncio.run(count_rows(store, table))


# ============================================================================
# Provider Listing Tests
# ============================================================================


class TestListProviders:
    """Tests for GET /oauth/providers."""

    def test_lists_only_active_providers(self, client):
        """Inactive providers are not offered on the login page."""
        response = client.get("/oauth/providers")

        assert response.status_code == 200
        assert response.json() == [{"name": "Google", "slug": "google"}]


# ============================================================================
# Login Tests
# ============================================================================


class TestLogin:
    """Tests for GET /oauth/{provider}/login."""

    def test_redirects_to_provider_authorization_url(self, client):
        """Should redirect with client id, redirect uri, code response type and scope."""
        response = client.get("/oauth/google/login", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == GOOGLE_PROVIDER["auth_url"]

        params = parse_qs(location.query)
        assert params["client_id"] == ["google-client-id"]
        assert params["redirect_uri"] == [GOOGLE_PROVIDER["redirect_uri"]]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["email profile"]
        assert "state" not in params

    def test_inactive_provider_is_rejected(self, client):
        response = client.get("/oauth/github/login", follow_redirects=False)

        assert response.status_code == 400
        assert response.text == "Provider not supported or inactive"

    def test_unknown_provider_is_rejected(self, client):
        response = client.get("/oauth/myspace/login", follow_redirects=False)

        assert response.status_code == 400
        assert response.text == "Provider not supported or inactive"

    def test_store_unavailable_returns_503(self, client, tmp_path):
        """An unreachable database is an infrastructure fault, not a client error."""
        broken = SqlStore.from_url(
            f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'login.db'}",
            poolclass=NullPool,
        )
        app.dependency_overrides[get_store] = lambda: broken

        response = client.get("/oauth/google/login", follow_redirects=False)

        assert response.status_code == 503
        assert response.text == "Database not available"


# ============================================================================
# Callback Tests
# ============================================================================


class TestCallback:
    """Tests for GET|POST /oauth/{provider}/callback."""

    def test_new_identity_is_registered_and_signed_in(
        self, client, app_store, respx_mock: MockRouter
    ):
        """
        Code "abc" exchanges to "xyz"; user info {sub: 117, email: a@b.com}
        creates one account and one link, and returns both tokens.
        """
        use_settings(allow_registrations=True)
        token_route, info_route = mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"accessToken", "refreshToken"}

        users = rows(app_store, app_store.tables.users)
        assert len(users) == 1
        assert users[0].email == "a@b.com"
        assert users[0].locale == "en"
        assert users[0].password.startswith("$2")

        links = rows(app_store, app_store.tables.user_providers)
        assert [(link.slug, link.sub, link.user_id) for link in links] == [
            ("google", "117", users[0].id)
        ]

        access = jwt.decode(body["accessToken"], ACCESS_SECRET, algorithms=["HS256"])
        assert access["sub"] == str(users[0].id)
        assert access["email"] == "a@b.com"
        assert access["locale"] == "en"
        assert access["roles"] == []
        assert access["capabilities"] == []

        refresh = jwt.decode(body["refreshToken"], REFRESH_SECRET, algorithms=["HS256"])
        assert refresh["sub"] == str(users[0].id)

        refresh_rows = rows(app_store, app_store.tables.refresh_tokens)
        assert len(refresh_rows) == 1
        assert refresh_rows[0].token == hashlib.sha256(body["refreshToken"].encode()).hexdigest()
        assert refresh_rows[0].user_id == users[0].id

        token_form = parse_qs(token_route.calls.last.request.content.decode())
        assert token_form["grant_type"] == ["authorization_code"]
        assert token_form["code"] == ["abc"]
        assert token_form["client_id"] == ["google-client-id"]
        assert token_form["client_secret"] == ["google-client-secret"]
        assert token_form["redirect_uri"] == [GOOGLE_PROVIDER["redirect_uri"]]
        assert info_route.calls.last.request.headers["Authorization"] == "Bearer xyz"

    def test_post_callback_is_accepted(self, client, respx_mock: MockRouter):
        use_settings(allow_registrations=True)
        mock_google(respx_mock)

        response = client.post("/oauth/google/callback?code=abc")

        assert response.status_code == 200

    def test_registration_disabled_creates_nothing(
        self, client, app_store, respx_mock: MockRouter
    ):
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 400
        assert response.text == "Automatic registration of new users is disabled"
        assert count(app_store, app_store.tables.users) == 0
        assert count(app_store, app_store.tables.user_providers) == 0
        assert count(app_store, app_store.tables.refresh_tokens) == 0

    def test_registration_option_overrides_environment(
        self, client, app_store, respx_mock: MockRouter
    ):
        """The allow_registrations option row wins over ALLOW_REGISTRATIONS."""
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.options,
                [{"name": "allow_registrations", "value": "true"}],
            )
        )
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 200
        assert count(app_store, app_store.tables.users) == 1

    def test_registration_option_can_disable(
        self, client, app_store, respx_mock: MockRouter
    ):
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.options,
                [{"name": "allow_registrations", "value": "false"}],
            )
        )
        use_settings(allow_registrations=True)
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 400
        assert count(app_store, app_store.tables.users) == 0

    @pytest.mark.parametrize("method", ["get", "post"])
    def test_missing_code_fails_without_store_writes(
        self, client, app_store, respx_mock: MockRouter, method
    ):
        token_route, _ = mock_google(respx_mock)

        response = getattr(client, method)("/oauth/google/callback")

        assert response.status_code == 400
        assert response.text == "Missing code"
        assert not token_route.called
        assert count(app_store, app_store.tables.users) == 0
        assert count(app_store, app_store.tables.refresh_tokens) == 0

    def test_missing_code_is_reported_before_provider_lookup(self, client):
        """Missing code has its own diagnostic even for unknown providers."""
        response = client.get("/oauth/myspace/callback")

        assert response.status_code == 400
        assert response.text == "Missing code"

    def test_inactive_provider_callback_is_rejected(
        self, client, respx_mock: MockRouter
    ):
        response = client.get("/oauth/github/callback?code=abc")

        assert response.status_code == 400
        assert response.text == "Provider not supported or inactive"

    def test_rejected_code_returns_401(self, client, app_store, respx_mock: MockRouter):
        use_settings(allow_registrations=True)
        respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )
        info_route = respx_mock.get(USER_INFO_URL)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 401
        assert response.text == "Failed to get access token"
        assert not info_route.called
        assert count(app_store, app_store.tables.users) == 0

    def test_token_response_without_access_token_returns_401(
        self, client, respx_mock: MockRouter
    ):
        use_settings(allow_registrations=True)
        mock_google(respx_mock, token={"token_type": "bearer"})

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 401
        assert response.text == "Failed to get access token"

    def test_user_info_failure_returns_502(self, client, respx_mock: MockRouter):
        use_settings(allow_registrations=True)
        respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "xyz"})
        )
        respx_mock.get(USER_INFO_URL).mock(return_value=httpx.Response(500))

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 502
        assert response.text == "Failed to fetch user info"

    def test_user_info_without_subject_is_invalid(
        self, client, app_store, respx_mock: MockRouter
    ):
        use_settings(allow_registrations=True)
        mock_google(respx_mock, user_info={"email": "a@b.com"})

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 400
        assert response.text == "Invalid user info returned by provider"
        assert count(app_store, app_store.tables.users) == 0

    def test_repeated_callback_does_not_duplicate_identity(
        self, client, app_store, respx_mock: MockRouter
    ):
        """Each login issues a new pair; accounts and links are not duplicated."""
        use_settings(allow_registrations=True)
        mock_google(respx_mock)

        first = client.get("/oauth/google/callback?code=abc")
        second = client.get("/oauth/google/callback?code=abc")

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["refreshToken"] != second.json()["refreshToken"]
        assert count(app_store, app_store.tables.users) == 1
        assert count(app_store, app_store.tables.user_providers) == 1
        assert count(app_store, app_store.tables.refresh_tokens) == 2

    def test_existing_account_is_linked_by_email(
        self, client, app_store, respx_mock: MockRouter
    ):
        """A matching email links the identity even with registration disabled."""
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.users,
                [{"id": 42, "email": "a@b.com", "password": "x", "locale": "fr"}],
            )
        )
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 200
        assert count(app_store, app_store.tables.users) == 1
        links = rows(app_store, app_store.tables.user_providers)
        assert [(link.sub, link.user_id) for link in links] == [("117", 42)]

        access = jwt.decode(
            response.json()["accessToken"], ACCESS_SECRET, algorithms=["HS256"]
        )
        assert access["sub"] == "42"
        assert access["locale"] == "fr"

    def test_default_roles_are_assigned_to_new_accounts(
        self, client, app_store, respx_mock: MockRouter
    ):
        """Known default roles are assigned; unknown ones are skipped."""
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.roles,
                [{"slug": "member", "name": "Member"}, {"slug": "admin", "name": "Admin"}],
            )
        )
        use_settings(allow_registrations=True, default_roles=["member", "ghost"])
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 200
        access = jwt.decode(
            response.json()["accessToken"], ACCESS_SECRET, algorithms=["HS256"]
        )
        assert access["roles"] == ["member"]
        assert count(app_store, app_store.tables.user_roles) == 1

    def test_expired_token_records_are_swept_after_callback(
        self, client, app_store, respx_mock: MockRouter
    ):
        now = utc_now()
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.users,
                [{"id": 7, "email": "old@b.com", "password": "x", "locale": "en"}],
            )
        )
        asyncio.run(
            insert_rows(
                app_store,
                app_store.tables.refresh_tokens,
                [
                    {"user_id": 7, "token": "expired", "expires_at": now - timedelta(days=1)},
                    {"user_id": 7, "token": "current", "expires_at": now + timedelta(days=1)},
                ],
            )
        )
        use_settings(allow_registrations=True)
        mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 200
        tokens = {row.token for row in rows(app_store, app_store.tables.refresh_tokens)}
        assert "expired" not in tokens
        assert "current" in tokens
        assert len(tokens) == 2


# ============================================================================
# State Check Tests
# ============================================================================


class TestStateCheck:
    """Tests for the optional CSRF state round trip."""

    def test_state_from_login_is_accepted_once(
        self, client, respx_mock: MockRouter
    ):
        use_settings(allow_registrations=True, state_check=True)
        mock_google(respx_mock)

        login = client.get("/oauth/google/login", follow_redirects=False)
        state = parse_qs(urlparse(login.headers["location"]).query)["state"][0]

        first = client.get(f"/oauth/google/callback?code=abc&state={state}")
        replay = client.get(f"/oauth/google/callback?code=abc&state={state}")

        assert first.status_code == 200
        assert replay.status_code == 400
        assert replay.text == "Invalid or expired state parameter"

    def test_missing_state_is_rejected(self, client, respx_mock: MockRouter):
        use_settings(state_check=True)
        token_route, _ = mock_google(respx_mock)

        response = client.get("/oauth/google/callback?code=abc")

        assert response.status_code == 400
        assert response.text == "Missing state parameter"
        assert not token_route.called


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifespan:
    """Tests for application startup."""

    def test_startup_creates_schema_and_seeds_providers(self, database_url):
        store = SqlStore.from_url(database_url, poolclass=NullPool)
        set_store(store)
        use_settings()
        try:
            with patch(
                "federated_login.main.get_oauth_settings",
                return_value=make_settings(create_schema=True),
            ):
                with TestClient(app) as client:
                    response = client.get("/oauth/providers")

            assert response.status_code == 200
            assert response.json() == []
            assert count(store, store.tables.auth_providers) == 6
        finally:
            app.dependency_overrides.clear()
            reset_store()
