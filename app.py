from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from flask import Flask, current_app, jsonify, redirect, request
from flask_cors import CORS

from config import Config
from db import SubscriptionStore
from payments import read_signature, verify_signature
from services.discord_oauth import DiscordOAuthClient
from services.discord_roles import RoleAssignmentClient
from services.errors import BridgeError, SignatureError
from services.subscriptions import SubscriptionService


# ==========================================================
# App factory
# ==========================================================
def create_app(config: Optional[Mapping[str, Any]] = None, roles=None, oauth=None,
               store: Optional[SubscriptionStore] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    CORS(app)

    if roles is None:
        roles = RoleAssignmentClient(
            token=app.config["DISCORD_BOT_TOKEN"],
            guild_id=app.config["DISCORD_GUILD_ID"],
            role_id=app.config["PREMIUM_ROLE_ID"],
            timeout_s=app.config["DISCORD_CALL_TIMEOUT_SECONDS"],
        )
        if app.config["DISCORD_START_BOT"]:
            roles.start()
            app.logger.info("[BOOT] Discord bot starting.")
    if oauth is None:
        oauth = DiscordOAuthClient(
            client_id=app.config["DISCORD_CLIENT_ID"],
            client_secret=app.config["DISCORD_CLIENT_SECRET"],
            redirect_uri=app.config["DISCORD_REDIRECT_URI"],
            timeout_s=app.config["OAUTH_HTTP_TIMEOUT_SECONDS"],
        )
    if store is None:
        store = SubscriptionStore(pending_ttl_s=app.config["PENDING_LINK_TTL_SECONDS"])

    app.extensions["subscriptions"] = SubscriptionService(
        store=store, roles=roles, oauth=oauth, website_url=app.config["WEBSITE_URL"],
    )

    register_error_handlers(app)
    register_routes(app)
    return app


def _service() -> SubscriptionService:
    return current_app.extensions["subscriptions"]


# ==========================================================
# Errors
# ==========================================================
def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(BridgeError)
    def handle_bridge_error(e: BridgeError):
        current_app.logger.warning("[HTTP] %s %s -> %s %s",
                                   request.method, request.path, e.status_code, e.message)
        return jsonify({"error": e.message}), e.status_code


def _verify_webhook() -> None:
    secret = (current_app.config["WIX_WEBHOOK_SECRET"] or "").encode()
    raw = request.get_data(cache=True, as_text=False)
    if not verify_signature(secret, raw, read_signature(request.headers)):
        raise SignatureError()


# ==========================================================
# Routes
# ==========================================================
def register_routes(app: Flask) -> None:

    @app.get("/health")
    def health():
        roles = _service().roles
        return jsonify({
            "status": "healthy",
            "bot": "connected" if roles.is_ready else "disconnected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # --- OAuth ---
    @app.get("/auth/discord")
    def auth_discord():
        return jsonify({"authUrl": _service().oauth.authorize_url(request.args.get("state"))})

    @app.get("/auth/discord/callback")
    def auth_discord_callback():
        # state is echoed by Discord but not used for anything yet
        _, location = _service().link_discord_account(request.args.get("code"))
        return redirect(location, code=302)

    @app.get("/auth/session/<session_id>")
    def auth_session(session_id: str):
        link = _service().store.get_pending_link(session_id)
        if link is None:
            return jsonify({"error": "Session not found"}), 404
        return jsonify(link.to_dict())

    # --- Wix webhooks ---
    @app.post("/webhook/purchase")
    def webhook_purchase():
        _verify_webhook()
        payload = request.get_json(silent=True) or {}
        try:
            _service().record_purchase(payload)
        except BridgeError:
            raise
        except Exception:
            current_app.logger.exception("[WEBHOOK] Webhook error")
            return jsonify({"error": "Webhook processing failed"}), 500
        return jsonify({"success": True, "message": "Role assigned successfully"})

    @app.post("/webhook/cancellation")
    def webhook_cancellation():
        _verify_webhook()
        payload = request.get_json(silent=True) or {}
        try:
            _, already = _service().cancel_subscription(payload)
        except BridgeError:
            raise
        except Exception:
            current_app.logger.exception("[WEBHOOK] Cancellation webhook error")
            return jsonify({"error": "Webhook processing failed"}), 500
        if already:
            return jsonify({"success": True, "message": "Subscription already cancelled"})
        return jsonify({"success": True, "message": "Role removed successfully"})


# ==========================================================
# Boot local
# ==========================================================
if __name__ == "__main__":
    app = create_app()
    app.logger.info("[BOOT] Server running on port %s", app.config["PORT"])
    app.run(host="0.0.0.0", port=app.config["PORT"], threaded=True)
