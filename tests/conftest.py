import pytest

from app import create_app
from db import SubscriptionStore
from services.discord_oauth import DiscordOAuthClient
from services.errors import UpstreamError


class FakeRoles:
    def __init__(self):
        self.is_ready = True
        self.grant_ok = True
        self.grant_error = None
        self.revoke_ok = True
        self.granted = []
        self.revoked = []

    def grant_role(self, discord_id):
        self.granted.append(discord_id)
        if self.grant_error:
            raise self.grant_error
        return self.grant_ok

    def revoke_role(self, discord_id):
        self.revoked.append(discord_id)
        return self.revoke_ok


class FakeOAuth(DiscordOAuthClient):
    def __init__(self):
        super().__init__("client-123", "shh", "http://localhost:3000/auth/discord/callback")
        self.profile = {"id": "111", "username": "buyer"}
        self.fail = False
        self.codes = []

    def identify(self, code):
        self.codes.append(code)
        if self.fail:
            raise UpstreamError("Discord OAuth request failed")
        return dict(self.profile)


TEST_CONFIG = {
    "TESTING": True,
    "DISCORD_START_BOT": False,
    "WEBSITE_URL": "https://shop.example.com",
    "WIX_WEBHOOK_SECRET": "",
}


@pytest.fixture
def roles():
    return FakeRoles()


@pytest.fixture
def oauth():
    return FakeOAuth()


@pytest.fixture
def store():
    return SubscriptionStore(pending_ttl_s=3600)


@pytest.fixture
def make_app(roles, oauth, store):
    def _make(**overrides):
        return create_app(dict(TEST_CONFIG, **overrides), roles=roles, oauth=oauth, store=store)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()
