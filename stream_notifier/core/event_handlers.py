from discord.ext import commands
from datetime import datetime, timezone

from stream_notifier.core.bot_instance import bot
from stream_notifier import config_manager
from stream_notifier.services.service_manager import start_all_services


@bot.event
async def on_ready():
    config_manager.logger.info(f'{bot.user.name} (ID: {bot.user.id}) connected to Discord!')

    if config_manager._are_services_active:
        config_manager.logger.info("Reconnected to Discord. Services are already running.")
        return

    config_manager.bot_start_time = datetime.now(timezone.utc)
    config_manager.logger.info(f'Bot ready at: {config_manager.bot_start_time.isoformat()}')
    config_manager.logger.info(f'Command Prefix: {config_manager.COMMAND_PREFIX}')
    config_manager.logger.info(f'Connected to {len(bot.guilds)} guilds.')

    try:
        start_all_services(bot)
    except Exception as e:
        config_manager.logger.critical(f"Failed to start notifier services: {e}", exc_info=True)


@bot.event
async def on_command_error(ctx: commands.Context, error):
    if isinstance(error, commands.CommandNotFound):
        pass
    elif isinstance(error, commands.MissingRequiredArgument):
        await ctx.send(f"Missing argument for `{ctx.command.qualified_name}`. Use `{config_manager.COMMAND_PREFIX}help` for more info.", delete_after=15)
    elif isinstance(error, commands.NotOwner):
        await ctx.send("Sorry, this command can only be used by the bot owner.", delete_after=10)
    elif isinstance(error, commands.CheckFailure):
        config_manager.logger.warning(f"Command check failed for {ctx.author} on '{ctx.command}': {error}")
    elif isinstance(error, commands.CommandInvokeError):
        config_manager.logger.error(f'Error in command {ctx.command}: {error.original}', exc_info=error.original)
        await ctx.send(f"An error occurred while executing the command: {error.original}", delete_after=10)
    else:
        config_manager.logger.error(f'Unhandled command error for command {ctx.command}: {error}', exc_info=error)
