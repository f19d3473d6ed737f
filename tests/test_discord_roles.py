import asyncio
import threading
import time
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from services.discord_roles import RoleAssignmentClient


def _fake_discord(role_found=True):
    role = MagicMock(id=222)
    member = MagicMock()
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    guild = MagicMock()
    guild.fetch_member = AsyncMock(return_value=member)
    guild.get_role = MagicMock(return_value=role if role_found else None)
    guild.fetch_roles = AsyncMock(return_value=[])
    client = MagicMock()
    client.fetch_guild = AsyncMock(return_value=guild)
    client.is_ready = MagicMock(return_value=True)
    return client, guild, member, role


def _roles(client):
    return RoleAssignmentClient(token="t", guild_id="111", role_id="222", timeout_s=2, client=client)


def test_apply_role_adds_and_removes():
    client, guild, member, role = _fake_discord()
    roles = _roles(client)

    assert asyncio.run(roles.apply_role("333", add=True)) is True
    client.fetch_guild.assert_awaited_with(111)
    guild.fetch_member.assert_awaited_with(333)
    member.add_roles.assert_awaited_once()
    assert member.add_roles.await_args.args == (role,)

    assert asyncio.run(roles.apply_role("333", add=False)) is True
    member.remove_roles.assert_awaited_once()


def test_apply_role_missing_role():
    client, _, member, _ = _fake_discord(role_found=False)
    assert asyncio.run(_roles(client).apply_role("333", add=True)) is False
    member.add_roles.assert_not_awaited()


def test_apply_role_swallows_discord_errors():
    client, guild, _, _ = _fake_discord()
    guild.fetch_member.side_effect = discord.DiscordException("Unknown Member")
    assert asyncio.run(_roles(client).apply_role("333", add=True)) is False


def test_apply_role_rejects_bad_id():
    client, _, _, _ = _fake_discord()
    assert asyncio.run(_roles(client).apply_role("not-a-snowflake", add=True)) is False


def test_grant_before_login_fails():
    client, _, member, _ = _fake_discord()
    roles = _roles(client)
    assert roles.grant_role("333") is False
    assert roles.revoke_role("333") is False
    member.add_roles.assert_not_awaited()


@pytest.fixture
def bot_loop():
    loop = asyncio.new_event_loop()
    t = threading.Thread(target=loop.run_forever, daemon=True)
    t.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    t.join(timeout=2)
    loop.close()


def test_grant_and_revoke_through_bot_loop(bot_loop):
    client, _, member, _ = _fake_discord()
    roles = _roles(client)
    roles._loop = bot_loop

    assert roles.grant_role("333") is True
    assert roles.revoke_role("333") is True
    member.add_roles.assert_awaited_once()
    member.remove_roles.assert_awaited_once()


def test_grant_not_ready(bot_loop):
    client, _, _, _ = _fake_discord()
    client.is_ready.return_value = False
    roles = _roles(client)
    roles._loop = bot_loop
    assert roles.is_ready is False
    assert roles.grant_role("333") is False


def test_start_without_token_stays_disconnected():
    client, _, _, _ = _fake_discord()
    client.is_ready.return_value = False
    roles = RoleAssignmentClient(token="", guild_id="1", role_id="2", client=client)
    roles.start()
    assert roles._thread is None
    assert roles.is_ready is False


def _wait_for_thread_exit(roles):
    for _ in range(200):
        if roles._thread is None:
            return True
        time.sleep(0.01)
    return False


def test_failed_login_can_be_retried():
    client, _, _, _ = _fake_discord()
    client.is_ready.return_value = False
    client.is_closed = MagicMock(return_value=True)
    client.start = AsyncMock(side_effect=discord.LoginFailure("Improper token has been passed."))
    roles = RoleAssignmentClient(token="bad", guild_id="1", role_id="2", client=client)

    roles.start()
    assert _wait_for_thread_exit(roles)
    assert roles._loop is None
    assert client.start.await_count == 1

    roles.start()
    assert _wait_for_thread_exit(roles)
    assert client.start.await_count == 2
    assert client.clear.call_count == 2
