import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Discord bot
    DISCORD_BOT_TOKEN = os.getenv("DISCORD_BOT_TOKEN", "")
    DISCORD_GUILD_ID = os.getenv("DISCORD_GUILD_ID", "")
    PREMIUM_ROLE_ID = os.getenv("PREMIUM_ROLE_ID", "")
    DISCORD_START_BOT = _env_bool("DISCORD_START_BOT")
    DISCORD_CALL_TIMEOUT_SECONDS = float(os.getenv("DISCORD_CALL_TIMEOUT_SECONDS", "15"))

    # Discord OAuth
    DISCORD_CLIENT_ID = os.getenv("DISCORD_CLIENT_ID", "")
    DISCORD_CLIENT_SECRET = os.getenv("DISCORD_CLIENT_SECRET", "")
    DISCORD_REDIRECT_URI = os.getenv("DISCORD_REDIRECT_URI", "")
    OAUTH_HTTP_TIMEOUT_SECONDS = float(os.getenv("OAUTH_HTTP_TIMEOUT_SECONDS", "10"))

    # Storefront
    WEBSITE_URL = os.getenv("WEBSITE_URL", "http://localhost:8080").rstrip("/")
    WIX_WEBHOOK_SECRET = os.getenv("WIX_WEBHOOK_SECRET", "")  # empty = dev mode, no check
    PENDING_LINK_TTL_SECONDS = int(os.getenv("PENDING_LINK_TTL_SECONDS", "3600"))

    # Server
    PORT = int(os.getenv("PORT", "3000"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
