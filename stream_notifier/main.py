import asyncio
import discord
import os
import sys

PACKAGE_PARENT = '..'
SCRIPT_DIR = os.path.dirname(os.path.realpath(os.path.join(os.getcwd(), os.path.expanduser(__file__))))
sys.path.append(os.path.normpath(os.path.join(SCRIPT_DIR, PACKAGE_PARENT)))

from stream_notifier import config_manager
from stream_notifier.core.bot_instance import bot, apply_owner_id
from stream_notifier.core import event_handlers
from stream_notifier.services.service_manager import stop_all_services


async def load_cogs():
    config_manager.logger.info("Loading cogs...")
    try:
        from stream_notifier.cogs import setup as setup_cogs
        await setup_cogs(bot)
        config_manager.logger.info("All cogs loaded successfully.")
    except Exception as e:
        config_manager.logger.error(f"Failed to load cogs: {e}", exc_info=True)


async def run_bot():
    config_manager.logger.info("Starting bot...")

    try:
        async with bot:
            await load_cogs()
            await bot.start(config_manager.DISCORD_TOKEN)
    finally:
        config_manager.logger.info("Initiating final cleanup sequence...")
        await stop_all_services()


def main():
    config_manager.load_config(initial_load=True)
    config_manager.apply_config_globally(config_manager.config_data)
    apply_owner_id()

    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        config_manager.logger.info("KeyboardInterrupt received. Shutting down...")
    except discord.LoginFailure:
        config_manager.logger.critical("CRITICAL: Invalid Discord Bot Token. Please check your config.json.")
    except Exception as e:
        config_manager.logger.critical(f"Unexpected error during bot startup/runtime: {e}", exc_info=True)
    finally:
        config_manager.logger.info("Shutdown sequence finished. Exiting.")


if __name__ == "__main__":
    main()
