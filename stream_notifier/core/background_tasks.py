import logging

from discord.ext import tasks

from stream_notifier.core.bot_instance import bot
from stream_notifier import config_manager
from stream_notifier.utils.constants import (
    DEFAULT_CHECK_INTERVAL_SECONDS, MIN_CHECK_INTERVAL_SECONDS, MAX_CHECK_INTERVAL_SECONDS,
    FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS
)
from stream_notifier.utils.stream_matching import clamp_int
from stream_notifier.services.fivem_service import clamp_check_interval

logger = logging.getLogger(__name__)


def clamp_tick_interval(value) -> int:
    return clamp_int(value, MIN_CHECK_INTERVAL_SECONDS, MAX_CHECK_INTERVAL_SECONDS, DEFAULT_CHECK_INTERVAL_SECONDS)


@tasks.loop(seconds=DEFAULT_CHECK_INTERVAL_SECONDS)
async def stream_tick_loop():
    orchestrator = config_manager.tick_orchestrator
    if orchestrator is None:
        return
    try:
        await orchestrator.run_tick()
    except Exception as e:
        logger.error(f"Tick loop: Unexpected error: {e}", exc_info=True)


@stream_tick_loop.before_loop
async def before_stream_tick_loop():
    await bot.wait_until_ready()
    if config_manager.notifier_state is not None:
        reschedule_tick_loop(config_manager.notifier_state.settings.get("checkIntervalSeconds"))


def reschedule_tick_loop(seconds) -> int:
    desired = clamp_tick_interval(seconds)
    if stream_tick_loop.seconds != desired:
        logger.info(f"Tick loop: Interval changed ({stream_tick_loop.seconds}s -> {desired}s). Rescheduling.")
        stream_tick_loop.change_interval(seconds=desired)
    return desired


@tasks.loop(seconds=FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS)
async def fivem_status_loop():
    service = config_manager.fivem_service
    if service is None or not service.settings.get("enabled"):
        return
    try:
        result = await service.do_poll()
        if not result.get("ok") and result.get("reason") not in ("backoff", "disabled"):
            logger.debug(f"FiveM loop: Poll skipped ({result.get('reason')}).")
    except Exception as e:
        logger.error(f"FiveM loop: Unexpected error: {e}", exc_info=True)


@fivem_status_loop.before_loop
async def before_fivem_status_loop():
    await bot.wait_until_ready()
    if config_manager.notifier_state is not None:
        reschedule_fivem_loop(config_manager.notifier_state.fivem_settings.get("checkIntervalSeconds"))


def reschedule_fivem_loop(seconds) -> int:
    desired = clamp_check_interval(seconds)
    if fivem_status_loop.seconds != desired:
        logger.info(f"FiveM loop: Interval changed ({fivem_status_loop.seconds}s -> {desired}s). Rescheduling.")
        fivem_status_loop.change_interval(seconds=desired)
    return desired
