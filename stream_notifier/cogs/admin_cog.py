import discord
from discord.ext import commands
import json
from datetime import datetime, timezone

from stream_notifier import config_manager
from stream_notifier.cogs import has_bot_access
from stream_notifier.core.bot_instance import apply_owner_id
from stream_notifier.core.background_tasks import reschedule_tick_loop, clamp_tick_interval
from stream_notifier.services.service_manager import persist_state, seed_settings_from_config
from stream_notifier.utils.constants import (
    PLATFORM_KICK, PLATFORM_TWITCH, PLATFORMS, PLATFORM_DISPLAY_NAMES,
    TWITCH_DISCOVERY_MAX_PAGES, KICK_DISCOVERY_MAX_LIMIT
)
from stream_notifier.utils.formatters import format_duration_human, format_discord_time, truncate, chunk_lines
from stream_notifier.utils.stream_matching import (
    normalize_name, parse_on_off, clamp_int, validate_regex_pattern, extract_channel_id
)
from stream_notifier.utils.data_store import now_ms


def get_config_diff(old_dict, new_dict):
    diff = {}
    all_keys = set(old_dict.keys()) | set(new_dict.keys())
    for k in all_keys:
        old_v = old_dict.get(k)
        new_v = new_dict.get(k)
        if old_v != new_v:
            if any(s in k.lower() for s in ["token", "secret"]):
                diff[k] = {"old": "**** (Sensitive)", "new": "**** (Sensitive)"}
            else:
                diff[k] = {"old": old_v, "new": new_v}
    return diff


def build_export_payload(state, what: str = "all") -> dict:
    """Settings and streamer lists only; runtime state and credentials never leave the bot."""
    settings = state.settings
    payload = {
        "settings": {
            "notifyChannelId": settings.get("notifyChannelId"),
            "mentionHere": settings.get("mentionHere"),
            "keywordRegex": settings.get("keywordRegex"),
            "checkIntervalSeconds": clamp_tick_interval(settings.get("checkIntervalSeconds")),
            "discoveryMode": settings.get("discoveryMode"),
            "discoveryTwitchPages": settings.get("discoveryTwitchPages"),
            "discoveryKickLimit": settings.get("discoveryKickLimit"),
            "twitchGameId": settings.get("twitchGameId"),
            "kickCategoryName": settings.get("kickCategoryName"),
        }
    }
    what = normalize_name(what) or "all"
    for platform in PLATFORMS:
        if what in ("all", platform):
            payload[platform] = {"streamers": state.streamers(platform)}
    return payload


def _health_lines(health: dict, enabled: bool, now: int) -> str:
    next_allowed_at = int(health.get("nextAllowedAt") or 0)
    backoff = format_discord_time(next_allowed_at) if next_allowed_at and now < next_allowed_at else "-"
    last_error = f"`{truncate(health['lastError'], 240)}`" if health.get("lastError") else "-"
    return "\n".join([
        f"Enabled: **{'yes' if enabled else 'no'}**",
        f"Failures: **{int(health.get('consecutiveFailures') or 0)}**",
        f"Backoff until: **{backoff}**",
        f"Last success: **{format_discord_time(health.get('lastSuccessAt'))}**",
        f"Last error: {last_error}",
    ])


class AdminCog(commands.Cog, name="Admin Commands"):
    def __init__(self, bot_instance):
        self.bot = bot_instance

    async def cog_check(self, ctx):
        if config_manager.notifier_state is None:
            await ctx.send("Bot is still starting up. Try again in a moment.", delete_after=10)
            return False
        return await has_bot_access(ctx)

    @property
    def state(self):
        return config_manager.notifier_state

    @commands.command(name="uptime", help="Shows how long the bot has been running in the current session.")
    async def uptime_command(self, ctx: commands.Context):
        uptime_delta = datetime.now(timezone.utc) - config_manager.bot_start_time
        human_uptime = format_duration_human(int(uptime_delta.total_seconds()))

        embed = discord.Embed(
            title="Bot Uptime (Current Session)",
            description=f"I have been running for **{human_uptime}** in this session.",
            color=discord.Color.green()
        )
        embed.add_field(name="Current Session Started At", value=discord.utils.format_dt(config_manager.bot_start_time, 'F'), inline=False)
        await ctx.send(embed=embed)

    @commands.command(name="config", aliases=['settings'], help="Shows the current notifier settings.")
    async def config_command(self, ctx: commands.Context):
        s = self.state.settings
        channel = f"<#{s['notifyChannelId']}>" if s.get("notifyChannelId") else "not set"

        embed = discord.Embed(title="Notifier Config", color=discord.Color.blue())
        embed.add_field(name="Notify channel", value=channel, inline=True)
        embed.add_field(name="Mention @here", value="on" if s.get("mentionHere") else "off", inline=True)
        embed.add_field(name="Interval", value=f"{clamp_tick_interval(s.get('checkIntervalSeconds'))}s", inline=True)
        embed.add_field(name="Keyword regex", value=f"`{truncate(s.get('keywordRegex'), 200)}`", inline=False)
        embed.add_field(
            name="Discovery",
            value=(f"Mode: **{'on' if s.get('discoveryMode') else 'off'}**\n"
                   f"Twitch pages: **{s.get('discoveryTwitchPages')}**\n"
                   f"Kick limit: **{s.get('discoveryKickLimit')}**"),
            inline=True
        )
        embed.add_field(
            name="Filters",
            value=(f"Twitch game_id: **{s.get('twitchGameId') or '-'}**\n"
                   f"Kick category: **{s.get('kickCategoryName') or '-'}**\n"
                   f"Kick category id: **{s.get('kickCategoryId') or '-'}**\n"
                   f"Resolved: {format_discord_time(s.get('kickCategoryResolvedAt'))}"),
            inline=True
        )
        embed.add_field(
            name="Lists",
            value=f"Kick: **{len(self.state.streamers(PLATFORM_KICK))}**\nTwitch: **{len(self.state.streamers(PLATFORM_TWITCH))}**",
            inline=True
        )
        role = f"<@&{config_manager.STREAMER_LIVE_ROLE_ID}>" if config_manager.STREAMER_LIVE_ROLE_ID else "not set"
        embed.add_field(name="Live role", value=role, inline=True)
        embed.set_footer(text=f"Prefix: {config_manager.COMMAND_PREFIX}")
        await ctx.send(embed=embed, allowed_mentions=discord.AllowedMentions.none())

    @commands.command(name="health", help="Shows tick timing and per-platform API/backoff status.")
    async def health_command(self, ctx: commands.Context):
        runtime = self.state.runtime
        now = now_ms()
        kick_active = len(self.state.active_messages(PLATFORM_KICK))
        twitch_active = len(self.state.active_messages(PLATFORM_TWITCH))

        embed = discord.Embed(title="Health", description="Tick + API/backoff status", color=discord.Color.blue())
        embed.add_field(name="Last tick", value=format_discord_time(runtime.get("lastTickAt")), inline=True)
        embed.add_field(name="Duration", value=f"{int(runtime.get('lastTickDurationMs') or 0)}ms", inline=True)
        embed.add_field(name="Active messages", value=f"Kick **{kick_active}** • Twitch **{twitch_active}**", inline=True)
        embed.add_field(
            name=PLATFORM_DISPLAY_NAMES[PLATFORM_KICK],
            value=_health_lines(self.state.health(PLATFORM_KICK), bool(config_manager.kick_client), now),
            inline=True
        )
        embed.add_field(
            name=PLATFORM_DISPLAY_NAMES[PLATFORM_TWITCH],
            value=_health_lines(self.state.health(PLATFORM_TWITCH), bool(config_manager.twitch_client), now),
            inline=True
        )
        await ctx.send(embed=embed)

    @commands.command(name="export", help="Exports settings and streamer lists as JSON. Usage: export [all|kick|twitch]")
    async def export_command(self, ctx: commands.Context, what: str = "all"):
        what = normalize_name(what)
        if what not in ("all", PLATFORM_KICK, PLATFORM_TWITCH):
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}export [all|kick|twitch]`")
            return

        text = json.dumps(build_export_payload(self.state, what), indent=2, ensure_ascii=False)
        for chunk in chunk_lines("", text.splitlines(), limit=1900):
            await ctx.send(f"```json\n{chunk}\n```")

    @commands.command(name="tick", aliases=['scan'], help="Runs one scan now and reports whether anything changed.")
    async def tick_command(self, ctx: commands.Context):
        orchestrator = config_manager.tick_orchestrator
        if orchestrator.tick_running:
            await ctx.send("A scan is already running. Try again in a moment.")
            return
        async with ctx.typing():
            result = await orchestrator.run_tick()
        duration = int(self.state.runtime.get("lastTickDurationMs") or 0)
        outcome = "Notifications updated." if result.get("changed") else "No changes."
        await ctx.send(f"✅ Scan finished in {duration}ms. {outcome}")

    @commands.command(name="refresh", help="Re-resolves cached lookups. Usage: refresh kickCategory")
    async def refresh_command(self, ctx: commands.Context, what: str = None):
        if normalize_name(what) != "kickcategory":
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}refresh kickCategory`")
            return

        settings = self.state.settings
        settings["kickCategoryId"] = None
        settings["kickCategoryResolvedAt"] = 0
        await persist_state()

        category_id = await config_manager.tick_orchestrator.ensure_kick_category_id()
        await persist_state()
        if isinstance(category_id, str) and category_id:
            await ctx.send(f"✅ Kick category resolved: **{category_id}** ({settings.get('kickCategoryName')})")
        else:
            await ctx.send(f"⚠️ Failed to resolve Kick category. Check `{config_manager.COMMAND_PREFIX}health` for details.")

    # --- set ---

    @commands.group(name="set", case_insensitive=True, invoke_without_command=True,
                    help="Changes a setting. Keys: channel, mentionhere, regex, interval, discovery, discoveryTwitchPages, discoveryKickLimit, twitchGameId, kickCategoryName")
    async def set_group(self, ctx: commands.Context):
        await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set <key> <value>`. Keys: "
                       "`channel`, `mentionhere`, `regex`, `interval`, `discovery`, `discoveryTwitchPages`, "
                       "`discoveryKickLimit`, `twitchGameId`, `kickCategoryName`")

    @set_group.command(name="channel")
    async def set_channel(self, ctx: commands.Context, channel_arg: str = None):
        channel_id = extract_channel_id(channel_arg, ctx.channel.id)
        if not channel_id:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set channel <#channel|id|this>`")
            return
        self.state.settings["notifyChannelId"] = channel_id
        config_manager.discord_notifier.invalidate_channel_cache()
        await persist_state()
        await ctx.send(f"✅ Notify channel set to <#{channel_id}>.")

    @set_group.command(name="mentionhere")
    async def set_mention_here(self, ctx: commands.Context, value: str = None):
        parsed = parse_on_off(value)
        if parsed is None:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set mentionhere <on|off>`")
            return
        self.state.settings["mentionHere"] = parsed
        await persist_state()
        await ctx.send(f"✅ @here mention is now **{'on' if parsed else 'off'}**.")

    @set_group.command(name="regex")
    async def set_regex(self, ctx: commands.Context, *, pattern: str = None):
        ok, error = validate_regex_pattern(pattern)
        if not ok:
            await ctx.send(f"⚠️ {error}")
            return
        self.state.settings["keywordRegex"] = pattern.strip()
        await persist_state()
        await ctx.send(f"✅ Keyword regex set to `{pattern.strip()}`.")

    @set_group.command(name="interval")
    async def set_interval(self, ctx: commands.Context, seconds: str = None):
        try:
            requested = int(seconds)
        except (TypeError, ValueError):
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set interval <10..3600>`")
            return
        applied = reschedule_tick_loop(requested)
        self.state.settings["checkIntervalSeconds"] = applied
        await persist_state()
        await ctx.send(f"✅ Check interval set to **{applied}s**.")

    @set_group.command(name="discovery")
    async def set_discovery(self, ctx: commands.Context, value: str = None):
        parsed = parse_on_off(value)
        if parsed is None:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set discovery <on|off>`")
            return
        self.state.settings["discoveryMode"] = parsed
        await persist_state()
        await ctx.send(f"✅ Discovery mode is now **{'on' if parsed else 'off'}**.")

    @set_group.command(name="discoverytwitchpages")
    async def set_discovery_twitch_pages(self, ctx: commands.Context, value: str = None):
        pages = clamp_int(value, 1, TWITCH_DISCOVERY_MAX_PAGES, None)
        if pages is None:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set discoveryTwitchPages <1..{TWITCH_DISCOVERY_MAX_PAGES}>`")
            return
        self.state.settings["discoveryTwitchPages"] = pages
        await persist_state()
        await ctx.send(f"✅ Twitch discovery pages set to **{pages}**.")

    @set_group.command(name="discoverykicklimit")
    async def set_discovery_kick_limit(self, ctx: commands.Context, value: str = None):
        limit = clamp_int(value, 1, KICK_DISCOVERY_MAX_LIMIT, None)
        if limit is None:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set discoveryKickLimit <1..{KICK_DISCOVERY_MAX_LIMIT}>`")
            return
        self.state.settings["discoveryKickLimit"] = limit
        await persist_state()
        await ctx.send(f"✅ Kick discovery limit set to **{limit}**.")

    @set_group.command(name="twitchgameid")
    async def set_twitch_game_id(self, ctx: commands.Context, game_id: str = None):
        if not game_id or not game_id.strip().isdigit():
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set twitchGameId <numeric id>`")
            return
        self.state.settings["twitchGameId"] = game_id.strip()
        await persist_state()
        await ctx.send(f"✅ Twitch game_id set to **{game_id.strip()}**.")

    @set_group.command(name="kickcategoryname")
    async def set_kick_category_name(self, ctx: commands.Context, *, name: str = None):
        if not name or not name.strip():
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}set kickCategoryName <name>`")
            return
        settings = self.state.settings
        settings["kickCategoryName"] = name.strip()
        settings["kickCategoryId"] = None
        settings["kickCategoryResolvedAt"] = 0
        await persist_state()
        await ctx.send(f"✅ Kick category name set to **{name.strip()}**. It will be resolved on the next scan.")

    # --- config reload ---

    @commands.command(name="reloadconfig", aliases=['reloadcfg', 'cfgrel'], help="Reloads config.json. (Bot owner only)")
    @commands.is_owner()
    async def reload_config_command(self, ctx: commands.Context):
        await ctx.send("Attempting to reload configuration...")
        config_manager.logger.info(f"Configuration reload initiated by {ctx.author} (ID: {ctx.author.id}).")

        old_config_data_copy = config_manager.config_data.copy()
        success, new_loaded_data_dict = config_manager.load_config(initial_load=False)

        if not success:
            await ctx.send(f"Configuration reload failed: {new_loaded_data_dict}")
            return

        config_manager.config_data = new_loaded_data_dict
        config_manager.apply_config_globally(config_manager.config_data)

        diff = get_config_diff(old_config_data_copy, config_manager.config_data)
        diff_summary = "\n".join([f"**'{k}'**: `{v['old']}` -> `{v['new']}`" for k, v in diff.items()]) if diff else "No changes detected."
        config_manager.logger.info(f"Configuration reload diff:\n{diff_summary.replace('**', '')}")

        if 'DISCORD_TOKEN' in diff:
            config_manager.logger.warning("DISCORD_TOKEN changed. Full bot restart by user is required for this to take effect.")
            await ctx.send("⚠️ **DISCORD_TOKEN changed!** A full manual bot restart is required for this to take effect.")

        if 'DISCORD_BOT_OWNER_ID' in diff:
            apply_owner_id()
            config_manager.logger.info(f"Bot owner ID updated to: {self.bot.owner_id}")

        if 'DATA_FILE' in diff:
            await ctx.send("⚠️ **DATA_FILE changed!** A restart is required to switch data files.")

        if config_manager.CONFIG_OVERRIDES_DATA:
            changed_values = config_manager.config_settings_values()
        else:
            changed_values = {}
        if seed_settings_from_config(self.state, changed_values, overwrite=True):
            reschedule_tick_loop(self.state.settings.get("checkIntervalSeconds"))
            config_manager.discord_notifier.invalidate_channel_cache()
            await persist_state()

        for chunk in chunk_lines("✅ Configuration reloaded.\n**Changes:**", diff_summary.splitlines()):
            await ctx.send(chunk)

    # --- help ---

    @commands.command(name="help", aliases=['commands'], help="Lists all available commands.")
    async def list_commands_command(self, ctx: commands.Context):
        prefix = config_manager.COMMAND_PREFIX
        embed = discord.Embed(title="Bot Commands", description=f"Prefix: `{prefix}`", color=discord.Color.blue())

        valid_commands = []
        for cmd in self.bot.commands:
            if cmd.hidden:
                continue
            try:
                if await cmd.can_run(ctx):
                    valid_commands.append(cmd)
            except commands.CheckFailure:
                pass

        for cmd in sorted(valid_commands, key=lambda c: c.name):
            name_aliases = f"`{prefix}{cmd.name}`"
            if cmd.aliases:
                name_aliases += f" (or {', '.join([f'`{prefix}{a}`' for a in cmd.aliases])})"
            description = cmd.help or "No description available."
            if isinstance(cmd, commands.Group):
                subcommands = ", ".join(sorted(f"`{c.name}`" for c in cmd.commands))
                description = f"{description}\nSubcommands: {subcommands}"
            embed.add_field(name=name_aliases, value=truncate(description, 1024), inline=False)

        if not embed.fields:
            embed.description = "No commands available for you in this context."
        await ctx.send(embed=embed)


async def setup(bot_instance):
    await bot_instance.add_cog(AdminCog(bot_instance))
