# services/discord_roles.py
# Premium role grant/revoke through a discord.py bot.
# Env:
#   - DISCORD_BOT_TOKEN   (required to start the bot)
#   - DISCORD_GUILD_ID    (target server)
#   - PREMIUM_ROLE_ID     (role handed out on purchase)

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional

import discord

logger = logging.getLogger(__name__)


class PremiumBot(discord.Client):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        super().__init__(intents=intents)

    async def on_ready(self):
        logger.info("[DISCORD] Bot logged in as %s!", self.user)


class RoleAssignmentClient:
    """
    Owns the bot connection and exposes blocking grant/revoke calls for the
    Flask request threads.

    The bot runs on a daemon thread with its own event loop; requests submit
    coroutines to that loop and wait for the result. Every failure (unknown
    member, missing role, missing permission, network, timeout, bot not
    logged in yet) is logged and reported as False.
    """

    def __init__(
        self,
        token: str,
        guild_id: str,
        role_id: str,
        timeout_s: float = 15.0,
        client: Optional[discord.Client] = None,
    ):
        self.token = token
        self.guild_id = guild_id
        self.role_id = role_id
        self.timeout_s = timeout_s
        self.client = client or PremiumBot()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_ready(self) -> bool:
        return self.client.is_ready()

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def start(self) -> None:
        if self._thread is not None:
            return
        if not self.token:
            logger.warning("[DISCORD] DISCORD_BOT_TOKEN not set; bot will stay disconnected.")
            return
        if self.client.is_closed():
            # a previous login attempt failed; reset the client before retrying
            self.client.clear()
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._thread = threading.Thread(target=self._run, args=(loop,), name="discord-bot", daemon=True)
        self._thread.start()

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self.client.start(self.token))
        except Exception:
            logger.exception("[DISCORD] Bot stopped with an error")
        finally:
            loop.close()
            if self._loop is loop:
                self._loop = None
                self._thread = None

    def stop(self) -> None:
        loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self.client.close(), loop).result(timeout=self.timeout_s)
        except Exception:
            logger.exception("[DISCORD] Failed to close bot cleanly")
        thread.join(timeout=self.timeout_s)

    # ---------------------------
    # Role operations
    # ---------------------------
    def grant_role(self, discord_id: str) -> bool:
        return self._submit(discord_id, add=True)

    def revoke_role(self, discord_id: str) -> bool:
        return self._submit(discord_id, add=False)

    def _submit(self, discord_id: str, add: bool) -> bool:
        action = "assign" if add else "remove"
        if self._loop is None or not self.is_ready:
            logger.error("[DISCORD] Cannot %s role for %s: bot not connected", action, discord_id)
            return False
        fut = asyncio.run_coroutine_threadsafe(self.apply_role(discord_id, add), self._loop)
        try:
            return fut.result(timeout=self.timeout_s)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            logger.error("[DISCORD] Timed out trying to %s role for %s", action, discord_id)
            return False
        except Exception:
            # network errors from the HTTP layer surface here
            logger.exception("[DISCORD] Failed to %s role for %s", action, discord_id)
            return False

    async def apply_role(self, discord_id: str, add: bool) -> bool:
        action = "assigning" if add else "removing"
        try:
            guild = await self.client.fetch_guild(int(self.guild_id))
            member = await guild.fetch_member(int(discord_id))
            role = guild.get_role(int(self.role_id))
            if role is None:
                role = next((r for r in await guild.fetch_roles() if r.id == int(self.role_id)), None)
            if role is None:
                logger.error("[DISCORD] Error %s role: role %s not found in guild %s",
                             action, self.role_id, self.guild_id)
                return False

            if add:
                await member.add_roles(role, reason="Premium purchase")
                logger.info("[DISCORD] Assigned premium role to %s", member)
            else:
                await member.remove_roles(role, reason="Premium cancellation")
                logger.info("[DISCORD] Removed premium role from %s", member)
            return True
        except (discord.DiscordException, ValueError, TypeError):
            logger.exception("[DISCORD] Error %s role for %s", action, discord_id)
            return False
