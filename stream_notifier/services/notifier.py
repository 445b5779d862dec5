import logging
import time

import discord

from stream_notifier.utils.constants import (
    PLATFORM_TWITCH, PLATFORM_DISPLAY_NAMES,
    NOTIFY_CHANNEL_CACHE_TTL_SECONDS, ROLE_CACHE_TTL_SECONDS, DISCORD_UNKNOWN_MESSAGE_CODE
)

logger = logging.getLogger(__name__)


def build_live_message(payload: dict, mention_here: bool) -> str:
    platform = str(payload.get("platform") or "").lower()
    dot = "🟣" if platform == PLATFORM_TWITCH else "🟢"
    platform_name = PLATFORM_DISPLAY_NAMES.get(platform, "Kick")
    who = f"<@{payload['discord_id']}>" if payload.get("discord_id") else payload.get("handle", "")
    ping = "@here " if mention_here else ""
    return f"{ping}{dot} **{who}** is LIVE on **{platform_name}**\n{payload.get('url', '')}"


def build_allowed_mentions(payload: dict, mention_here: bool) -> discord.AllowedMentions:
    discord_id = payload.get("discord_id")
    users = [discord.Object(id=int(discord_id))] if discord_id and str(discord_id).isdigit() else False
    return discord.AllowedMentions(everyone=bool(mention_here), users=users, roles=False, replied_user=False)


def _snowflake(value):
    """Discord id as int, or None when the value is not purely numeric."""
    text = str(value).strip() if value is not None else ""
    if not text.isdigit():
        return None
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


class DiscordNotifier:
    """Sends/deletes/probes live notifications in the configured notify channel."""

    def __init__(self, bot_instance, state, time_func=time.monotonic):
        self.bot = bot_instance
        self.state = state
        self._time = time_func
        self._cached_channel_id = None
        self._cached_channel = None
        self._cached_at = 0.0

    def invalidate_channel_cache(self):
        self._cached_channel_id = None
        self._cached_channel = None
        self._cached_at = 0.0

    async def get_notify_channel(self):
        channel_id = self.state.settings.get("notifyChannelId")
        if not channel_id:
            return None

        now = self._time()
        if (self._cached_channel is not None and self._cached_channel_id == str(channel_id)
                and now - self._cached_at < NOTIFY_CHANNEL_CACHE_TTL_SECONDS):
            return self._cached_channel

        try:
            channel_id_int = int(channel_id)
        except (TypeError, ValueError):
            logger.error(f"Notifier: Invalid notify channel id '{channel_id}'.")
            return None

        channel = self.bot.get_channel(channel_id_int)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id_int)
            except discord.NotFound:
                logger.error(f"Notifier: Notify channel {channel_id} not found.")
                return None
            except discord.Forbidden:
                logger.error(f"Notifier: Bot lacks access to notify channel {channel_id}.")
                return None
            except discord.HTTPException as e:
                logger.error(f"Notifier: Failed to fetch notify channel {channel_id}: {e}")
                return None

        if isinstance(channel, discord.DMChannel) or not hasattr(channel, "send"):
            logger.error(f"Notifier: Channel {channel_id} cannot be used for notifications.")
            return None

        self._cached_channel_id = str(channel_id)
        self._cached_channel = channel
        self._cached_at = now
        return channel

    async def send_live_notification(self, payload: dict):
        """Returns the new message id as a string, or None when the send failed."""
        channel = await self.get_notify_channel()
        if channel is None:
            return None

        mention_here = bool(self.state.settings.get("mentionHere"))
        try:
            message = await channel.send(
                content=build_live_message(payload, mention_here),
                allowed_mentions=build_allowed_mentions(payload, mention_here),
            )
        except discord.Forbidden:
            logger.error(f"Notifier: Bot lacks permission to send messages in channel {channel.id}.")
            return None
        except discord.HTTPException as e:
            logger.error(f"Notifier: Failed to send live notification: {e}")
            return None
        return str(message.id)

    async def delete_notification(self, message_id) -> bool:
        """True once the message is gone, including when it was already deleted."""
        if not message_id:
            return False
        channel = await self.get_notify_channel()
        if channel is None or not hasattr(channel, "get_partial_message"):
            return False

        try:
            await channel.get_partial_message(int(message_id)).delete()
            return True
        except discord.NotFound:
            return True
        except discord.Forbidden:
            logger.error(f"Notifier: Bot lacks Manage Messages to delete notification {message_id}.")
            return False
        except discord.HTTPException as e:
            if getattr(e, "code", None) == DISCORD_UNKNOWN_MESSAGE_CODE:
                return True
            logger.error(f"Notifier: Failed to delete notification {message_id}: {e}")
            return False

    async def notification_exists(self, message_id) -> bool:
        """
        False only when Discord says the message is unknown. Transient errors report the
        message as present so the reconciler does not post a duplicate.
        """
        if not message_id:
            return False
        channel = await self.get_notify_channel()
        if channel is None or not hasattr(channel, "fetch_message"):
            return True

        try:
            await channel.fetch_message(int(message_id))
            return True
        except discord.NotFound:
            return False
        except discord.HTTPException as e:
            logger.warning(f"Notifier: Could not verify notification {message_id}: {e}")
            return True


class DiscordRoleManager:
    """Best-effort live role grant/revoke. Both calls return True when the member ends up in the desired state."""

    def __init__(self, bot_instance, notifier: DiscordNotifier, role_id=None, time_func=time.monotonic):
        self.bot = bot_instance
        self.notifier = notifier
        self.role_id = role_id
        self._time = time_func
        self._role_cache = {}  # (guild_id, role_id) -> (role, fetched_at)

    async def _resolve_guild(self):
        channel = await self.notifier.get_notify_channel()
        guild = getattr(channel, "guild", None)
        if guild is not None:
            return guild
        guilds = getattr(self.bot, "guilds", None) or []
        return guilds[0] if len(guilds) == 1 else None

    async def _resolve_role(self, guild, role_id: int):
        key = (guild.id, role_id)
        now = self._time()
        cached = self._role_cache.get(key)
        if cached and cached[0] is not None and now - cached[1] < ROLE_CACHE_TTL_SECONDS:
            return cached[0]

        role = guild.get_role(role_id)
        if role is None:
            try:
                roles = await guild.fetch_roles()
                role = next((r for r in roles if r.id == role_id), None)
            except discord.HTTPException as e:
                logger.error(f"Role Manager: Failed to fetch roles: {e}")
                role = None

        self._role_cache[key] = (role, now)
        return role

    async def _resolve_member(self, guild, user_id: int):
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None
        except discord.HTTPException as e:
            logger.error(f"Role Manager: Failed to fetch member {user_id}: {e}")
            return None

    async def _prepare(self, user_id):
        """Returns (guild, role, member_id, ok). ok is False when the live role cannot be handled at all."""
        if not self.role_id or not user_id:
            return None, None, None, False
        role_id = _snowflake(self.role_id)
        if role_id is None:
            logger.error(f"Role Manager: STREAMER_LIVE_ROLE_ID '{self.role_id}' is not a numeric role id.")
            return None, None, None, False
        member_id = _snowflake(user_id)
        if member_id is None:
            logger.error(f"Role Manager: Discord user id '{user_id}' is not numeric.")
            return None, None, None, False
        guild = await self._resolve_guild()
        if guild is None:
            logger.error("Role Manager: Could not resolve the guild for the live role.")
            return None, None, None, False
        return guild, await self._resolve_role(guild, role_id), member_id, True

    async def grant_live_role(self, user_id) -> bool:
        guild, role, member_id, ok = await self._prepare(user_id)
        if not ok:
            return False
        if role is None:
            logger.error(f"Role Manager: STREAMER_LIVE_ROLE_ID {self.role_id} not found in guild.")
            return False
        if not role.is_assignable():
            logger.error(f"Role Manager: Role {role.id} is not assignable by the bot (check role hierarchy / Manage Roles).")
            return False

        member = await self._resolve_member(guild, member_id)
        if member is None:
            logger.error(f"Role Manager: Member {user_id} not found. Cannot add live role.")
            return False
        if member.get_role(role.id) is not None:
            return True

        try:
            await member.add_roles(role, reason="Streamer is live")
            return True
        except discord.HTTPException as e:
            logger.error(f"Role Manager: Failed to add live role to {user_id}: {e}")
            return False

    async def revoke_live_role(self, user_id) -> bool:
        guild, role, member_id, ok = await self._prepare(user_id)
        if not ok:
            return False
        if role is None:
            return True
        if not role.is_assignable():
            logger.error(f"Role Manager: Role {role.id} is not assignable by the bot (check role hierarchy / Manage Roles).")
            return False

        member = await self._resolve_member(guild, member_id)
        if member is None or member.get_role(role.id) is None:
            return True

        try:
            await member.remove_roles(role, reason="Streamer went offline")
            return True
        except discord.HTTPException as e:
            logger.error(f"Role Manager: Failed to remove live role from {user_id}: {e}")
            return False
