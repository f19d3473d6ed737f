# services/subscriptions.py
import logging
from typing import Optional, Tuple
from urllib.parse import urlencode

from db import SubscriptionStore
from db.models import PendingLink, Subscription, SubscriptionStatus
from payments import parse_order
from services.errors import ClientInputError, ConflictError, NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Glue between the HTTP routes, the Discord role client and the store.
    Store mutations always happen after the Discord call succeeded.
    """

    def __init__(self, store: SubscriptionStore, roles, oauth, website_url: str):
        self.store = store
        self.roles = roles
        self.oauth = oauth
        self.website_url = website_url.rstrip("/")

    # ---------------------------
    # OAuth handoff
    # ---------------------------
    def link_discord_account(self, code: Optional[str]) -> Tuple[PendingLink, str]:
        """Exchange the OAuth code, store a pending link and build the checkout redirect."""
        if not code:
            raise ClientInputError("No code provided")
        try:
            profile = self.oauth.identify(code)
        except UpstreamError as e:
            logger.error("[OAUTH] OAuth error: %s", e)
            raise UpstreamError("Authentication failed") from e

        link = self.store.add_pending_link(profile["id"], profile.get("username", ""))
        logger.info("[OAUTH] Linked Discord user %s (%s) to session %s",
                    link.username, link.discord_id, link.session_id)
        redirect = f"{self.website_url}/checkout?{urlencode({'session': link.session_id})}"
        return link, redirect

    # ---------------------------
    # Purchase
    # ---------------------------
    def record_purchase(self, payload) -> Subscription:
        order = parse_order(payload)
        logger.info("[WEBHOOK] New purchase: order=%s discord=%s session=%s",
                    order.order_id or "?", order.discord_id or "?", order.session_id or "-")
        logger.debug("[WEBHOOK] Purchase payload: %s", payload)

        discord_id = order.discord_id
        if not discord_id and order.session_id:
            link = self.store.get_pending_link(order.session_id)
            if link:
                discord_id = link.discord_id
        if not discord_id:
            logger.error("[WEBHOOK] No Discord user ID found in order %s", order.order_id or "?")
            raise ClientInputError("No Discord user ID")
        if not order.order_id:
            raise ClientInputError("No order ID")

        self.store.reserve_identity(discord_id, order.order_id)
        try:
            granted = self.roles.grant_role(discord_id)
        except Exception:
            self.store.release_identity(discord_id, order.order_id)
            raise
        if not granted:
            self.store.release_identity(discord_id, order.order_id)
            raise UpstreamError("Failed to assign role")

        # no revoke if activate loses: the role belongs to the order holding the index
        with self.store.transaction():
            sub = self.store.activate(order.order_id, discord_id)
            if order.session_id:
                self.store.pop_pending_link(order.session_id)
        logger.info("[WEBHOOK] Subscription %s active for %s", sub.order_id, sub.discord_id)
        return sub

    # ---------------------------
    # Cancellation
    # ---------------------------
    def cancel_subscription(self, payload) -> Tuple[Subscription, bool]:
        """Returns (subscription, already_cancelled)."""
        order = parse_order(payload)
        logger.info("[WEBHOOK] Subscription cancelled: order=%s", order.order_id or "?")
        logger.debug("[WEBHOOK] Cancellation payload: %s", payload)
        if not order.order_id:
            raise ClientInputError("No order ID")

        try:
            sub = self.store.claim_cancellation(order.order_id)
        except (NotFoundError, ConflictError) as e:
            logger.error("[WEBHOOK] Cancellation for %s rejected: %s", order.order_id, e)
            raise
        if sub.status is SubscriptionStatus.CANCELLED:
            return sub, True

        try:
            revoked = self.roles.revoke_role(sub.discord_id)
        except Exception:
            self.store.release_cancellation(order.order_id)
            raise
        if not revoked:
            self.store.release_cancellation(order.order_id)
            raise UpstreamError("Failed to remove role")

        sub = self.store.complete_cancellation(order.order_id)
        logger.info("[WEBHOOK] Subscription %s cancelled for %s", sub.order_id, sub.discord_id)
        return sub, False
