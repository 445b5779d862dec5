import discord
from discord.ext import commands
from stream_notifier import config_manager

intents = discord.Intents.default()
intents.message_content = True
intents.members = True # role add/remove needs reliable member lookups


def get_command_prefix(bot_instance, message):
    return commands.when_mentioned_or(config_manager.COMMAND_PREFIX)(bot_instance, message)


bot = commands.Bot(
    command_prefix=get_command_prefix,
    intents=intents,
    help_command=None,
)


def apply_owner_id():
    bot.owner_id = None
    if config_manager.owner_id_from_config:
        try:
            bot.owner_id = int(config_manager.owner_id_from_config)
        except ValueError:
            config_manager.logger.error(
                f"Invalid DISCORD_BOT_OWNER_ID in config: '{config_manager.owner_id_from_config}'. Must be an integer. Owner commands may not work correctly."
            )
