"""
HTTP-level tests for the portal routes.

Collaborators are swapped through app.dependency_overrides; the Discord
API is the in-process fake from conftest.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from portal.api.dependencies.providers import get_guild_client, get_oauth_client
from portal.api.routes.discord_join import build_result_url
from portal.config.settings import PortalSettings, get_settings
from portal.database.session import get_db_session
from portal.main import create_app
from portal.models.webhook_event import ProcessedWebhookEvent
from portal.platform.join_state import JoinStateSigner
from portal.repositories.applications import ApplicationRepository
from portal.services.join_flow import JoinOutcome, JoinErrorCode
from portal.tests.conftest import (
    ROLE_ID,
    WEBHOOK_SECRET,
    make_application,
    make_member,
    sign_payload,
    stripe_event,
)


APP_URL = "https://portal.test"
CRON_SECRET = "cron-secret-value"
JOIN_STATE_SECRET = "join-state-secret"


def _settings(**overrides):
    values = dict(
        stripe_secret_key="sk_test_portal",
        stripe_webhook_secret=WEBHOOK_SECRET,
        member_role_id=ROLE_ID,
        discord_guild_id="guild-1",
        discord_bot_token="bot-token",
        discord_client_id="client-1",
        discord_client_secret="client-secret",
        discord_join_redirect_uri=f"{APP_URL}/api/discord/join/callback",
        join_state_secret=JOIN_STATE_SECRET,
        cron_secret=CRON_SECRET,
        app_url=APP_URL,
    )
    values.update(overrides)
    return PortalSettings(**values)


@pytest.fixture
def app(db_session, guild_client, oauth_client):
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: _settings()
    app.dependency_overrides[get_db_session] = lambda: db_session
    app.dependency_overrides[get_guild_client] = lambda: guild_client
    app.dependency_overrides[get_oauth_client] = lambda: oauth_client
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def _use_settings(app, **overrides):
    app.dependency_overrides[get_settings] = lambda: _settings(**overrides)


# =============================================================================
# Webhook Route Tests
# =============================================================================

class TestStripeWebhookRoute:

    def _post(self, client, body, signature):
        return client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
        )

    def test_acknowledges_signed_event(self, client, db_session):
        body = stripe_event("evt_route_1", "charge.refunded", {"id": "ch_1"})

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert db_session.query(ProcessedWebhookEvent).count() == 1

    def test_duplicate_flagged(self, client):
        body = stripe_event("evt_route_2", "charge.refunded", {})
        signature = sign_payload(body)

        self._post(client, body, signature)
        response = self._post(client, body, signature)

        assert response.status_code == 200
        assert response.json() == {"received": True, "duplicate": True}

    def test_bad_signature_is_400(self, client, db_session):
        body = stripe_event("evt_route_3", "charge.refunded", {})

        response = self._post(client, body, sign_payload(body, secret="whsec_other"))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_SIGNATURE"
        assert db_session.query(ProcessedWebhookEvent).count() == 0

    def test_missing_signature_header_is_400(self, client):
        response = client.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    def test_missing_role_id_is_503(self, app, client, db_session):
        _use_settings(app, member_role_id=None)
        body = stripe_event("evt_route_4", "charge.refunded", {})

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"
        assert db_session.query(ProcessedWebhookEvent).count() == 0

    def test_missing_billing_key_is_503(self, app, client):
        _use_settings(app, stripe_secret_key=None)
        body = stripe_event("evt_route_5", "charge.refunded", {})

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_handler_error_is_400(self, client, db_session):
        body = stripe_event("evt_route_6", "customer.subscription.updated", {"status": "active"})

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_HANDLER_ERROR"
        assert db_session.query(ProcessedWebhookEvent).count() == 0


# =============================================================================
# Cron Route Tests
# =============================================================================

class TestCronRoute:

    def test_missing_bearer_is_401(self, client):
        response = client.get("/api/cron/sync-roles")

        assert response.status_code == 401

    def test_wrong_bearer_is_401(self, client):
        response = client.get("/api/cron/sync-roles", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_unset_secret_refuses_everything(self, app, client):
        _use_settings(app, cron_secret=None)

        response = client.get("/api/cron/sync-roles", headers={"Authorization": "Bearer "})

        assert response.status_code == 401

    def test_auth_checked_before_role_config(self, app, client):
        _use_settings(app, member_role_id=None)

        response = client.get("/api/cron/sync-roles")

        assert response.status_code == 401

    def test_missing_role_id_is_400(self, app, client):
        _use_settings(app, member_role_id=None)

        response = client.get("/api/cron/sync-roles", headers={"Authorization": f"Bearer {CRON_SECRET}"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"

    def test_returns_counters(self, client, db_session, fake_discord):
        make_member(db_session, "user-1")
        fake_discord.add_member("user-1")

        response = client.get("/api/cron/sync-roles", headers={"Authorization": f"Bearer {CRON_SECRET}"})

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "processed": 1,
            "assigned": 1,
            "removed": 0,
            "skipped": 0,
            "errored": 0,
        }
        assert fake_discord.has_role("user-1")


# =============================================================================
# Join Route Tests
# =============================================================================

class TestJoinRoutes:

    def test_start_redirects_to_authorize(self, client, db_session):
        application = make_application(db_session, "user-1")

        response = client.get(
            "/api/discord/join",
            params={"application_id": application.id},
            follow_redirects=False,
        )

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "discord.com"
        state = parse_qs(location.query)["state"][0]
        assert JoinStateSigner(JOIN_STATE_SECRET).verify(state).application_id == application.id

    def test_start_unknown_application_is_404(self, client):
        response = client.get(
            "/api/discord/join",
            params={"application_id": "missing"},
            follow_redirects=False,
        )

        assert response.status_code == 404

    def test_callback_without_state(self, client):
        response = client.get(
            "/api/discord/join/callback",
            params={"code": "good-code"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"{APP_URL}/success?joined=0&error=missing_state"

    def test_callback_joins_member(self, client, db_session, fake_discord):
        make_member(db_session, "user-1")
        state = JoinStateSigner(JOIN_STATE_SECRET).issue(
            ApplicationRepository(db_session).get_by_identity("user-1").id,
        )

        response = client.get(
            "/api/discord/join/callback",
            params={"code": "good-code", "state": state},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"{APP_URL}/success?joined=1"
        assert fake_discord.has_role("user-1")


class TestBuildResultUrl:

    def test_success(self):
        assert build_result_url(APP_URL, JoinOutcome(joined=True)) == f"{APP_URL}/success?joined=1"

    def test_refusal_carries_code(self):
        outcome = JoinOutcome.refused(JoinErrorCode.NO_SUBSCRIPTION)
        assert build_result_url(APP_URL, outcome) == f"{APP_URL}/success?joined=0&error=no_subscription"
