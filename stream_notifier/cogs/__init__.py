import discord
from discord.ext import commands

from stream_notifier import config_manager


async def has_bot_access(ctx: commands.Context) -> bool:
    """Bot owner, members holding one of ALLOWED_ROLE_IDS, or anyone with Manage Server."""
    if await ctx.bot.is_owner(ctx.author):
        return True
    if ctx.guild is None or not isinstance(ctx.author, discord.Member):
        return False

    allowed = set(config_manager.ALLOWED_ROLE_IDS or [])
    if allowed and any(str(role.id) in allowed for role in ctx.author.roles):
        return True
    return ctx.author.guild_permissions.manage_guild


async def setup(bot):
    from .admin_cog import AdminCog
    from .streamers_cog import StreamersCog
    from .fivem_cog import FivemCog

    await bot.add_cog(AdminCog(bot))
    config_manager.logger.info("Loaded AdminCog")

    await bot.add_cog(StreamersCog(bot))
    config_manager.logger.info("Loaded StreamersCog")

    await bot.add_cog(FivemCog(bot))
    config_manager.logger.info("Loaded FivemCog")
