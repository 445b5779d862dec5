import discord
from discord.ext import commands
import logging

from stream_notifier import config_manager
from stream_notifier.cogs import has_bot_access
from stream_notifier.core.background_tasks import reschedule_fivem_loop
from stream_notifier.services.fivem_service import (
    normalize_base_url, parse_restart_times, guess_connect_command, clamp_check_interval
)
from stream_notifier.services.service_manager import persist_state
from stream_notifier.utils.formatters import format_discord_time, truncate
from stream_notifier.utils.stream_matching import extract_channel_id, normalize_name

logger = logging.getLogger(__name__)


def _describe_poll_failure(result: dict) -> str:
    message = result.get("message")
    if message and not message.get("ok"):
        detail = f" • {message['error']}" if message.get("error") else ""
        return f"message update failed: `{message.get('reason')}`{detail}"
    return ""


class FivemCog(commands.Cog, name="FiveM Status"):
    def __init__(self, bot_instance):
        self.bot = bot_instance

    async def cog_check(self, ctx):
        if config_manager.fivem_service is None:
            await ctx.send("Bot is still starting up. Try again in a moment.", delete_after=10)
            return False
        return await has_bot_access(ctx)

    @property
    def service(self):
        return config_manager.fivem_service

    @commands.group(name="fivem", aliases=["fm"], case_insensitive=True, invoke_without_command=True,
                    help="FiveM server status card. Subcommands: show, status, enable, disable, url, channel, interval, restarts, title, connect")
    async def fivem_group(self, ctx: commands.Context):
        await ctx.invoke(self.fivem_show)

    @fivem_group.command(name="show", aliases=["settings"])
    async def fivem_show(self, ctx: commands.Context):
        s = self.service.settings
        st = self.service.runtime
        embed = discord.Embed(title="FiveM Settings", color=discord.Color.blue())
        embed.add_field(name="Enabled", value="yes" if s.get("enabled") else "no", inline=True)
        embed.add_field(name="Interval", value=f"{clamp_check_interval(s.get('checkIntervalSeconds'))}s", inline=True)
        embed.add_field(name="Endpoint", value=f"`{s['baseUrl']}`" if s.get("baseUrl") else "_Not set_", inline=False)
        embed.add_field(name="Status channel", value=f"<#{s['statusChannelId']}>" if s.get("statusChannelId") else "_Not set_", inline=False)
        embed.add_field(name="Title", value=f"`{s['title']}`" if s.get("title") else "_Auto_", inline=True)
        connect = guess_connect_command(s.get("baseUrl"), s.get("connectCommand"))
        embed.add_field(name="Connect command", value=f"`{connect}`" if connect else "_None_", inline=True)
        restarts = s.get("restartTimes") or []
        embed.add_field(name="Restart times", value=f"`{', '.join(restarts)}`" if restarts else "_None_", inline=False)

        last_online = st.get("lastOnline")
        online_text = "unknown" if last_online is None else ("online" if last_online else "offline")
        embed.add_field(
            name="Last poll",
            value=(f"Server: **{online_text}** ({format_discord_time(st.get('lastCheckedAt'))})\n"
                   f"Failures: **{int(st.get('consecutiveFailures') or 0)}**\n"
                   f"Last error: {truncate(st.get('lastError'), 240) or '-'}"),
            inline=False
        )
        await ctx.send(embed=embed)

    @fivem_group.command(name="status", aliases=["poll"])
    async def fivem_status(self, ctx: commands.Context):
        async with ctx.typing():
            result = await self.service.do_poll(force=True, update_message=bool(self.service.settings.get("enabled")))

        if not result.get("ok"):
            await ctx.send(f"❌ Failed to fetch status. Reason: `{result.get('reason') or 'unknown_error'}`")
            return

        await ctx.send(embed=self.service.build_status_embed(result["status"]))
        failure = _describe_poll_failure(result)
        if failure:
            await ctx.send(f"⚠️ Status fetched, but {failure}")

    @fivem_group.command(name="enable", aliases=["on"])
    async def fivem_enable(self, ctx: commands.Context):
        self.service.settings["enabled"] = True
        await persist_state()
        logger.info(f"FiveM: Auto status enabled by {ctx.author}.")

        result = await self.service.do_poll(force=True, update_message=True)
        if not result.get("ok"):
            await ctx.send(f"⚠️ Enabled, but the first refresh failed. Reason: `{result.get('reason') or 'unknown_error'}`")
        else:
            failure = _describe_poll_failure(result)
            if failure:
                await ctx.send(f"⚠️ Enabled, but {failure}")
        await ctx.send("✅ FiveM auto status is now **on**.")

    @fivem_group.command(name="disable", aliases=["off"])
    async def fivem_disable(self, ctx: commands.Context):
        self.service.settings["enabled"] = False
        await persist_state()
        logger.info(f"FiveM: Auto status disabled by {ctx.author}.")
        await ctx.send("✅ FiveM auto status is now **off**.")

    @fivem_group.command(name="url", aliases=["endpoint"])
    async def fivem_url(self, ctx: commands.Context, url: str = None):
        normalized = normalize_base_url(url)
        if not normalized:
            await ctx.send("❌ Invalid URL. Example: `http://127.0.0.1:30120`")
            return
        self.service.settings["baseUrl"] = normalized
        await persist_state()
        await ctx.send(f"✅ Endpoint set to `{normalized}`.")

    @fivem_group.command(name="channel")
    async def fivem_channel(self, ctx: commands.Context, channel_arg: str = None):
        channel_id = extract_channel_id(channel_arg, ctx.channel.id)
        if not channel_id:
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}fivem channel <#channel|id|this>`")
            return
        s = self.service.settings
        s["statusChannelId"] = channel_id
        # The old message lives in the old channel
        s["statusMessageId"] = None
        await persist_state()
        await ctx.send(f"✅ Status channel set to <#{channel_id}>.")

    @fivem_group.command(name="interval")
    async def fivem_interval(self, ctx: commands.Context, seconds: str = None):
        try:
            requested = int(seconds)
        except (TypeError, ValueError):
            await ctx.send(f"Usage: `{config_manager.COMMAND_PREFIX}fivem interval <60..3600>`")
            return
        applied = reschedule_fivem_loop(requested)
        self.service.settings["checkIntervalSeconds"] = applied
        await persist_state()
        await ctx.send(f"✅ Interval set to {applied}s (recommended: 300s).")

    @fivem_group.command(name="restarts")
    async def fivem_restarts(self, ctx: commands.Context, *, times: str = None):
        s = self.service.settings
        if normalize_name(times) == "none":
            s["restartTimes"] = []
        else:
            parsed = parse_restart_times(times)
            if not parsed:
                await ctx.send('❌ Invalid times. Example: `04:00,16:00` (or `none` to clear)')
                return
            s["restartTimes"] = parsed
        await persist_state()
        await ctx.send(f"✅ Restart times updated: `{', '.join(s['restartTimes']) or 'none'}`.")

    @fivem_group.command(name="title")
    async def fivem_title(self, ctx: commands.Context, *, title: str = None):
        s = self.service.settings
        s["title"] = None if normalize_name(title) in ("", "none", "auto") else title.strip()[:256]
        await persist_state()
        await ctx.send(f"✅ Title set to `{s['title']}`." if s["title"] else "✅ Title will be taken from the server.")

    @fivem_group.command(name="connect")
    async def fivem_connect(self, ctx: commands.Context, *, command: str = None):
        s = self.service.settings
        s["connectCommand"] = None if normalize_name(command) in ("", "none", "auto") else command.strip()[:200]
        await persist_state()
        await ctx.send(f"✅ Connect command set to `{s['connectCommand']}`." if s["connectCommand"]
                       else "✅ Connect command will be derived from the endpoint.")


async def setup(bot_instance):
    await bot_instance.add_cog(FivemCog(bot_instance))
