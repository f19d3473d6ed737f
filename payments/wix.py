# payments/wix.py
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Wix-Signature", "X-Signature")


@dataclass
class WixOrder:
    order_id: str
    discord_id: str
    session_id: str


def _clean(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


def parse_order(payload: Optional[Dict[str, Any]]) -> WixOrder:
    """
    Pull the fields we care about out of a Wix order webhook.
    The Discord id may come as a checkout custom field or at the top level;
    the session key (from /auth/discord/callback) is accepted the same way.
    """
    payload = payload if isinstance(payload, dict) else {}
    custom = payload.get("customFields")
    custom = custom if isinstance(custom, dict) else {}
    return WixOrder(
        order_id=_clean(payload.get("id")),
        discord_id=_clean(custom.get("discordUserId") or payload.get("discordUserId")),
        session_id=_clean(custom.get("session") or payload.get("session")),
    )


def read_signature(headers: Mapping[str, str]) -> str:
    for name in SIGNATURE_HEADERS:
        v = headers.get(name)
        if v:
            return v.strip()
    return ""


def verify_signature(secret: bytes, raw_body: bytes, header_sig: str) -> bool:
    """
    signature = hex(HMAC_SHA256(WIX_WEBHOOK_SECRET, raw_body)), optional "sha256=" prefix.
    With no secret configured the check is skipped (dev only).
    """
    if not secret:
        logger.warning("[WEBHOOK] WIX_WEBHOOK_SECRET not set; accepting unsigned webhook (dev).")
        return True
    if not header_sig:
        logger.warning("[WEBHOOK] Signature header missing.")
        return False
    if header_sig.lower().startswith("sha256="):
        header_sig = header_sig[len("sha256="):]
    expected = hmac.new(secret, raw_body or b"", hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode(), header_sig.lower().encode())


def sign(secret: bytes, raw_body: bytes) -> str:
    return hmac.new(secret, raw_body, hashlib.sha256).hexdigest()
