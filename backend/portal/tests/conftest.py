"""
Shared fixtures for portal tests.

- In-memory SQLite session built from the real ORM metadata
- FakeDiscord: an in-process stand-in for the Discord API served through
  httpx.MockTransport, so the real clients are exercised end to end
- Row factories and a Stripe signature helper
"""

import hashlib
import hmac
import json
import re
import time
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional, Set, Union

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.db_base import Base
import portal.models  # noqa: F401  registers tables
from portal.models.application import Application, ApplicationStatus
from portal.models.customer import Customer
from portal.models.subscription import Subscription, SubscriptionStatus
from portal.integrations.discord.community_client import DiscordGuildClient
from portal.integrations.discord.oauth_client import DiscordOAuthClient, DiscordOAuthConfig
from portal.services.retry_policy import RetryPolicy
from portal.services.role_actuator import RoleActuator


GUILD_ID = "guild-1"
ROLE_ID = "role-member"
API_BASE = "https://discord.test/api/v10"
WEBHOOK_SECRET = "whsec_test_secret"
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Factories
# =============================================================================

def make_application(
    db_session,
    discord_user_id: str,
    status: ApplicationStatus = ApplicationStatus.APPROVED,
    application_id: Optional[str] = None,
) -> Application:
    application = Application(discord_user_id=discord_user_id, status=status)
    if application_id:
        application.id = application_id
    if status != ApplicationStatus.PENDING:
        application.reviewed_by = "admin-1"
        application.reviewed_at = NOW - timedelta(days=30)
    db_session.add(application)
    db_session.commit()
    return application


def make_customer(
    db_session,
    discord_user_id: str,
    stripe_customer_id: Optional[str] = None,
    email: str = "member@example.com",
) -> Customer:
    customer = Customer(
        discord_user_id=discord_user_id,
        stripe_customer_id=stripe_customer_id or f"cus_{discord_user_id}",
        email=email,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


def make_subscription(
    db_session,
    customer: Customer,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    current_period_end: Optional[datetime] = None,
    stripe_subscription_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Subscription:
    subscription = Subscription(
        customer_id=customer.id,
        stripe_subscription_id=stripe_subscription_id or f"sub_{customer.discord_user_id}",
        status=status,
        current_period_start=NOW - timedelta(days=20),
        current_period_end=current_period_end or NOW + timedelta(days=10),
        cancel_at_period_end=False,
    )
    if created_at is not None:
        subscription.created_at = created_at
    db_session.add(subscription)
    db_session.commit()
    return subscription


def make_member(
    db_session,
    discord_user_id: str,
    application_status: ApplicationStatus = ApplicationStatus.APPROVED,
    subscription_status: Optional[SubscriptionStatus] = SubscriptionStatus.ACTIVE,
    current_period_end: Optional[datetime] = None,
):
    """Application + customer + (optional) subscription for one identity."""
    make_application(db_session, discord_user_id, application_status)
    customer = make_customer(db_session, discord_user_id)
    subscription = None
    if subscription_status is not None:
        subscription = make_subscription(
            db_session, customer, subscription_status, current_period_end=current_period_end,
        )
    return customer, subscription


# =============================================================================
# Fake Discord API
# =============================================================================

_MEMBER_PATH = re.compile(r"^/api/v10/guilds/(?P<guild>[^/]+)/members/(?P<user>[^/]+)$")
_ROLE_PATH = re.compile(r"^/api/v10/guilds/(?P<guild>[^/]+)/members/(?P<user>[^/]+)/roles/(?P<role>[^/]+)$")

Failure = Union[int, Exception]


class FakeDiscord:
    """
    In-memory guild with members and their roles.

    Queue failures with fail_next(); each queued entry answers one request
    with that status code or raises that exception.
    """

    def __init__(self):
        self.members: Dict[str, Set[str]] = {}
        self.failures: List[Failure] = []
        self.requests: List[httpx.Request] = []
        self.valid_codes: Set[str] = {"good-code"}
        self.oauth_user_id = "user-1"
        self.join_status: Optional[int] = None

    def add_member(self, user_id: str, roles: Optional[Set[str]] = None) -> None:
        self.members[user_id] = set(roles or ())

    def has_role(self, user_id: str, role_id: str = ROLE_ID) -> bool:
        return role_id in self.members.get(user_id, set())

    def fail_next(self, *failures: Failure) -> None:
        self.failures.extend(failures)

    def calls(self, method: str, fragment: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and fragment in r.url.path]

    @property
    def mutating_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method in ("PUT", "DELETE")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure, json={"message": "injected", "code": 0})

        if path == "/api/v10/oauth2/token" and request.method == "POST":
            form = dict(pair.split("=", 1) for pair in request.content.decode().split("&"))
            if form.get("code") not in self.valid_codes:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={
                "access_token": "user-access-token",
                "token_type": "Bearer",
                "scope": "identify guilds.join",
            })

        if path == "/api/v10/users/@me" and request.method == "GET":
            return httpx.Response(200, json={"id": self.oauth_user_id, "username": "member"})

        role_match = _ROLE_PATH.match(path)
        if role_match:
            user_id, role_id = role_match.group("user"), role_match.group("role")
            if user_id not in self.members:
                return httpx.Response(404, json={"message": "Unknown Member", "code": 10007})
            if request.method == "PUT":
                self.members[user_id].add(role_id)
            elif request.method == "DELETE":
                self.members[user_id].discard(role_id)
            return httpx.Response(204)

        member_match = _MEMBER_PATH.match(path)
        if member_match:
            user_id = member_match.group("user")
            if request.method == "GET":
                if user_id not in self.members:
                    return httpx.Response(404, json={"message": "Unknown Member", "code": 10007})
                return httpx.Response(200, json={
                    "user": {"id": user_id},
                    "roles": sorted(self.members[user_id]),
                })
            if request.method == "PUT":
                if self.join_status is not None:
                    return httpx.Response(self.join_status, json={"message": "Missing Access", "code": 50001})
                if user_id in self.members:
                    return httpx.Response(204)
                body = json.loads(request.content or b"{}")
                self.members[user_id] = set(body.get("roles", []))
                return httpx.Response(201, json={"user": {"id": user_id}})

        return httpx.Response(404, json={"message": "Unknown route", "code": 0})


@pytest.fixture
def fake_discord():
    return FakeDiscord()


@pytest.fixture
def guild_client(fake_discord):
    return DiscordGuildClient(
        GUILD_ID,
        "bot-token",
        api_base=API_BASE,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_discord.handler)),
    )


@pytest.fixture
def oauth_client(fake_discord):
    return DiscordOAuthClient(
        DiscordOAuthConfig(
            client_id="client-1",
            client_secret="client-secret",
            redirect_uri="https://portal.test/api/discord/join/callback",
            api_base=API_BASE,
        ),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_discord.handler)),
    )


# =============================================================================
# Actuator
# =============================================================================

class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def actuator(db_session, guild_client, sleep_recorder):
    return RoleActuator(db_session, guild_client, RetryPolicy(), sleep=sleep_recorder)


# =============================================================================
# Stripe signatures
# =============================================================================

def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way the provider does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_id: str, event_type: str, data_object: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    })


def subscription_object(
    subscription_id: str,
    customer_id: str,
    status: str = "active",
    period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
) -> dict:
    period_end = period_end or NOW + timedelta(days=30)
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "current_period_start": int((period_end - timedelta(days=30)).timestamp()),
        "current_period_end": int(period_end.timestamp()),
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": None,
    }
