# services/discord_oauth.py
# Discord OAuth2 (authorization code grant, scope=identify).

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from services.errors import UpstreamError

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api"
AUTHORIZE_URL = f"{DISCORD_API}/oauth2/authorize"
TOKEN_URL = f"{DISCORD_API}/oauth2/token"
PROFILE_URL = f"{DISCORD_API}/users/@me"


class DiscordOAuthClient:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 timeout_s: float = 10.0, session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def authorize_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "identify",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        payload = self._request("POST", TOKEN_URL, data=data,
                                headers={"Content-Type": "application/x-www-form-urlencoded"})
        token = payload.get("access_token")
        if not token:
            raise UpstreamError("Token response missing access_token")
        return token

    def fetch_profile(self, access_token: str) -> Dict[str, Any]:
        payload = self._request("GET", PROFILE_URL,
                                headers={"Authorization": f"Bearer {access_token}"})
        if not payload.get("id"):
            raise UpstreamError("Profile response missing id")
        return {"id": str(payload["id"]), "username": payload.get("username") or ""}

    def identify(self, code: str) -> Dict[str, Any]:
        return self.fetch_profile(self.exchange_code(code))

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self.session.request(method, url, timeout=self.timeout_s, **kwargs)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            logger.error("[OAUTH] %s %s failed: %s", method, url, e)
            raise UpstreamError("Discord OAuth request failed") from e
        except ValueError as e:
            logger.error("[OAUTH] %s %s returned non-JSON body", method, url)
            raise UpstreamError("Discord OAuth returned malformed JSON") from e
        if not isinstance(payload, dict):
            raise UpstreamError("Discord OAuth returned unexpected payload")
        return payload
