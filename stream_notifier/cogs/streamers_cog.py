import discord
from discord.ext import commands
import logging

from stream_notifier import config_manager
from stream_notifier.cogs import has_bot_access
from stream_notifier.services.service_manager import persist_state
from stream_notifier.utils.constants import PLATFORM_KICK, PLATFORM_TWITCH, PLATFORM_DISPLAY_NAMES, STREAMER_HANDLE_FIELD
from stream_notifier.utils.formatters import format_streamer_line, chunk_lines
from stream_notifier.utils.stream_matching import normalize_name, extract_discord_id

logger = logging.getLogger(__name__)

RESERVED_SUBCOMMANDS = {"list", "add", "addmany", "remove", "clear", "setmention", "status"}
HANDLE_ARG_NAME = {PLATFORM_KICK: "kickSlug", PLATFORM_TWITCH: "twitchLogin"}
GROUP_NAME = {PLATFORM_KICK: "k", PLATFORM_TWITCH: "t"}

NO_MENTIONS = discord.AllowedMentions.none()


def add_streamer(state, platform: str, handle: str, discord_id=None) -> bool:
    """Appends a streamer. Returns False when the handle is already tracked."""
    handle = normalize_name(handle)
    if not handle or state.find_streamer(platform, handle) is not None:
        return False
    field = STREAMER_HANDLE_FIELD[platform]
    state.set_streamers(platform, state.streamers(platform) + [{field: handle, "discordId": discord_id}])
    return True


def remove_streamer(state, platform: str, handle: str) -> bool:
    handle = normalize_name(handle)
    field = STREAMER_HANDLE_FIELD[platform]
    before = state.streamers(platform)
    after = [entry for entry in before if normalize_name(entry.get(field)) != handle]
    state.set_streamers(platform, after)
    return len(after) != len(before)


class StreamersCog(commands.Cog, name="Streamer Lists"):
    def __init__(self, bot_instance):
        self.bot = bot_instance

    async def cog_check(self, ctx):
        if config_manager.notifier_state is None:
            await ctx.send("Bot is still starting up. Try again in a moment.", delete_after=10)
            return False
        if not await has_bot_access(ctx):
            await ctx.send("❌ You don't have permission to use this bot.", delete_after=10)
            return False
        return True

    @property
    def state(self):
        return config_manager.notifier_state

    def _usage(self, platform: str, rest: str) -> str:
        return f"⚠️ Usage: `{config_manager.COMMAND_PREFIX}{GROUP_NAME[platform]} {rest}`"

    # --- shared handlers ---

    async def _list(self, ctx, platform: str):
        name = PLATFORM_DISPLAY_NAMES[platform]
        field = STREAMER_HANDLE_FIELD[platform]
        streamers = self.state.streamers(platform)
        if not streamers:
            await ctx.send(f"**{name} Streamers**\nList is empty.")
            return

        lines = [format_streamer_line(i, entry.get(field), entry.get("discordId")) for i, entry in enumerate(streamers, start=1)]
        header = f"**{name} Streamers** (total: **{len(streamers)}**)"
        for chunk in chunk_lines(header, lines):
            await ctx.send(chunk, allowed_mentions=NO_MENTIONS)

    async def _add(self, ctx, platform: str, handle_raw, extra_args):
        name = PLATFORM_DISPLAY_NAMES[platform]
        handle = normalize_name(handle_raw)
        if not handle or handle in RESERVED_SUBCOMMANDS:
            await ctx.send(self._usage(platform, f"add <{HANDLE_ARG_NAME[platform]}> [@user]"))
            return

        discord_id = extract_discord_id(" ".join(extra_args), extra_args)
        if not add_streamer(self.state, platform, handle, discord_id):
            await ctx.send(f"⚠️ Streamer {handle} is already in the {name} list.")
            return

        await persist_state()
        logger.info(f"Streamers: {ctx.author} added {platform}/{handle} (discordId={discord_id}).")
        if discord_id:
            await ctx.send(f"✅ Streamer {handle} added to the {name} list. (ID: {discord_id})")
        else:
            await ctx.send(f"✅ Streamer {handle} added to the {name} list.")

    async def _addmany(self, ctx, platform: str, handles):
        handles = [normalize_name(h) for h in handles if normalize_name(h)]
        if not handles:
            await ctx.send(self._usage(platform, f"addmany <{HANDLE_ARG_NAME[platform]}1> <{HANDLE_ARG_NAME[platform]}2> ..."))
            return

        added = sum(1 for handle in handles if add_streamer(self.state, platform, handle))
        await persist_state()
        logger.info(f"Streamers: {ctx.author} bulk-added {added} {platform} streamer(s).")
        await ctx.send(f"✅ Added **{added}** {PLATFORM_DISPLAY_NAMES[platform]} streamer(s).")

    async def _setmention(self, ctx, platform: str, handle_raw, who_args):
        name = PLATFORM_DISPLAY_NAMES[platform]
        handle = normalize_name(handle_raw)
        if not handle:
            await ctx.send(self._usage(platform, f"setmention <{HANDLE_ARG_NAME[platform]}> <@user|id|none>"))
            return

        entry = self.state.find_streamer(platform, handle)
        if entry is None:
            await ctx.send(f"⚠️ Streamer {handle} not found in the {name} list.")
            return

        discord_id = None
        who = " ".join(who_args).strip()
        if who and normalize_name(who) != "none":
            discord_id = extract_discord_id(who, who_args)
            if not discord_id:
                await ctx.send("⚠️ Could not parse Discord user. Use a real mention, a raw ID, or `none`.")
                return

        # Revoke from the previous user before the mapping changes
        previous_id = entry.get("discordId")
        active = self.state.active_messages(platform).get(handle)
        if previous_id and previous_id != discord_id and active and config_manager.role_manager:
            await config_manager.role_manager.revoke_live_role(previous_id)

        entry["discordId"] = discord_id
        await persist_state()
        if discord_id:
            await ctx.send(f"✅ {handle} mention set to <@{discord_id}>", allowed_mentions=NO_MENTIONS)
        else:
            await ctx.send(f"✅ {handle} mention cleared.")

    async def _remove(self, ctx, platform: str, handle_raw):
        name = PLATFORM_DISPLAY_NAMES[platform]
        handle = normalize_name(handle_raw)
        if not handle:
            await ctx.send(self._usage(platform, f"remove <{HANDLE_ARG_NAME[platform]}>"))
            return

        entry = self.state.find_streamer(platform, handle)
        discord_id = entry.get("discordId") if entry else None
        removed = remove_streamer(self.state, platform, handle)
        deleted = await config_manager.reconciler.ensure_offline_message_deleted(platform, handle, discord_id)
        # Ticks only visit tracked handles
        lingering = self.state.active_messages(platform).pop(handle, None) if removed else None
        await persist_state()

        if not removed:
            await ctx.send(f"⚠️ Streamer {handle} was not in the {name} list.")
            return
        logger.info(f"Streamers: {ctx.author} removed {platform}/{handle}.")
        if lingering:
            logger.warning(f"Streamers: Dropped undeletable notification {lingering.get('messageId')} for {platform}/{handle}.")
            await ctx.send(
                f"⚠️ Streamer {handle} removed from the {name} list, but its live message "
                f"({lingering.get('messageId')}) could not be deleted. Please delete it manually."
            )
        elif deleted:
            await ctx.send(f"🗑️ Streamer {handle} removed from the {name} list and active message deleted.")
        else:
            await ctx.send(f"🗑️ Streamer {handle} removed from the {name} list.")

    async def _clear(self, ctx, platform: str, confirm):
        name = PLATFORM_DISPLAY_NAMES[platform]
        if confirm != "--yes":
            await ctx.send(f"⚠️ This will remove ALL {name} streamers. Confirm: "
                           f"`{config_manager.COMMAND_PREFIX}{GROUP_NAME[platform]} clear --yes`")
            return

        discord_ids = self.state.discord_id_map(platform)
        handles = self.state.handles(platform)
        self.state.set_streamers(platform, [])
        for handle in handles:
            await config_manager.reconciler.ensure_offline_message_deleted(platform, handle, discord_ids.get(handle))
        await persist_state()
        logger.info(f"Streamers: {ctx.author} cleared the {platform} list ({len(handles)} removed).")
        await ctx.send(f"🗑️ Cleared the {name} streamer list (**{len(handles)}** removed).")

    async def _status(self, ctx, platform: str, handle_raw):
        orchestrator = config_manager.tick_orchestrator
        async with ctx.typing():
            if platform == PLATFORM_KICK:
                _, msg = await orchestrator.kick_status(handle_raw)
            else:
                _, msg = await orchestrator.twitch_status(handle_raw)
        await ctx.send(msg, allowed_mentions=NO_MENTIONS)

    # --- Kick ---

    @commands.group(name="k", aliases=["kick"], case_insensitive=True, invoke_without_command=True,
                    help="Manages the Kick streamer list. Shortcut: k <kickSlug> [@user] adds a streamer.")
    async def kick_group(self, ctx: commands.Context, slug: str = None, *extra: str):
        if slug is None:
            await self._list(ctx, PLATFORM_KICK)
            return
        await self._add(ctx, PLATFORM_KICK, slug, list(extra))

    @kick_group.command(name="list")
    async def kick_list(self, ctx: commands.Context):
        await self._list(ctx, PLATFORM_KICK)

    @kick_group.command(name="add")
    async def kick_add(self, ctx: commands.Context, slug: str = None, *extra: str):
        await self._add(ctx, PLATFORM_KICK, slug, list(extra))

    @kick_group.command(name="addmany")
    async def kick_addmany(self, ctx: commands.Context, *slugs: str):
        await self._addmany(ctx, PLATFORM_KICK, slugs)

    @kick_group.command(name="setmention")
    async def kick_setmention(self, ctx: commands.Context, slug: str = None, *who: str):
        await self._setmention(ctx, PLATFORM_KICK, slug, list(who))

    @kick_group.command(name="remove", aliases=["rm", "del"])
    async def kick_remove(self, ctx: commands.Context, slug: str = None):
        await self._remove(ctx, PLATFORM_KICK, slug)

    @kick_group.command(name="clear")
    async def kick_clear(self, ctx: commands.Context, confirm: str = None):
        await self._clear(ctx, PLATFORM_KICK, confirm)

    @kick_group.command(name="status")
    async def kick_status(self, ctx: commands.Context, slug: str = None):
        await self._status(ctx, PLATFORM_KICK, slug)

    # --- Twitch ---

    @commands.group(name="t", aliases=["twitch"], case_insensitive=True, invoke_without_command=True,
                    help="Manages the Twitch streamer list. Shortcut: t <twitchLogin> [@user] adds a streamer.")
    async def twitch_group(self, ctx: commands.Context, login: str = None, *extra: str):
        if login is None:
            await self._list(ctx, PLATFORM_TWITCH)
            return
        await self._add(ctx, PLATFORM_TWITCH, login, list(extra))

    @twitch_group.command(name="list")
    async def twitch_list(self, ctx: commands.Context):
        await self._list(ctx, PLATFORM_TWITCH)

    @twitch_group.command(name="add")
    async def twitch_add(self, ctx: commands.Context, login: str = None, *extra: str):
        await self._add(ctx, PLATFORM_TWITCH, login, list(extra))

    @twitch_group.command(name="addmany")
    async def twitch_addmany(self, ctx: commands.Context, *logins: str):
        await self._addmany(ctx, PLATFORM_TWITCH, logins)

    @twitch_group.command(name="setmention")
    async def twitch_setmention(self, ctx: commands.Context, login: str = None, *who: str):
        await self._setmention(ctx, PLATFORM_TWITCH, login, list(who))

    @twitch_group.command(name="remove", aliases=["rm", "del"])
    async def twitch_remove(self, ctx: commands.Context, login: str = None):
        await self._remove(ctx, PLATFORM_TWITCH, login)

    @twitch_group.command(name="clear")
    async def twitch_clear(self, ctx: commands.Context, confirm: str = None):
        await self._clear(ctx, PLATFORM_TWITCH, confirm)

    @twitch_group.command(name="status")
    async def twitch_status(self, ctx: commands.Context, login: str = None):
        await self._status(ctx, PLATFORM_TWITCH, login)


async def setup(bot_instance):
    await bot_instance.add_cog(StreamersCog(bot_instance))
