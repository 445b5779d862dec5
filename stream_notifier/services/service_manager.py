import asyncio
import logging

from stream_notifier import config_manager
from stream_notifier.utils.data_store import JsonDataStore

logger = logging.getLogger(__name__)


def seed_settings_from_config(state, config_values: dict, overwrite: bool = False) -> bool:
    """
    Copies config values into the stored settings. Stored values win unless they are
    empty or `overwrite` is set. Returns True when anything changed.
    """
    changed = False
    settings = state.settings
    for key, value in config_values.items():
        current = settings.get(key)
        if overwrite or current is None or current == "":
            if current != value:
                settings[key] = value
                changed = True
                if key == "kickCategoryName":
                    settings["kickCategoryId"] = None
                    settings["kickCategoryResolvedAt"] = 0
    return changed


async def persist_state():
    """Saves the shared state now. Used after command edits."""
    if config_manager.data_store is None or config_manager.notifier_state is None:
        return False
    try:
        snapshot = config_manager.notifier_state.to_dict()
        await asyncio.to_thread(config_manager.data_store.save_snapshot, snapshot)
        return True
    except Exception as e:
        logger.error(f"ServiceManager: Failed to save state: {e}", exc_info=True)
        return False


def init_runtime(bot_instance):
    """Loads the data file and builds the notifier components. Safe to call once per process."""
    from .health_tracker import HealthTracker
    from .notifier import DiscordNotifier, DiscordRoleManager
    from .reconciler import LiveMessageReconciler
    from .tick_orchestrator import TickOrchestrator
    from .fivem_service import FivemStatusService

    if config_manager.notifier_state is not None:
        return config_manager.notifier_state

    store = JsonDataStore(config_manager.DATA_FILE)
    state = store.load()
    if seed_settings_from_config(state, config_manager.config_settings_values(), config_manager.CONFIG_OVERRIDES_DATA):
        logger.info("ServiceManager: Seeded settings from config.json.")
    store.save(state)

    health = HealthTracker(state)
    notifier = DiscordNotifier(bot_instance, state)
    role_manager = DiscordRoleManager(bot_instance, notifier, config_manager.STREAMER_LIVE_ROLE_ID)
    reconciler = LiveMessageReconciler(state, notifier, role_manager)

    config_manager.data_store = store
    config_manager.notifier_state = state
    config_manager.health_tracker = health
    config_manager.discord_notifier = notifier
    config_manager.role_manager = role_manager
    config_manager.reconciler = reconciler
    config_manager.tick_orchestrator = TickOrchestrator(
        state, store, config_manager.kick_client, config_manager.twitch_client, reconciler, health
    )
    config_manager.fivem_service = FivemStatusService(bot_instance, state, store)

    logger.info(
        f"ServiceManager: Loaded {config_manager.DATA_FILE} "
        f"(kick={len(state.streamers('kick'))}, twitch={len(state.streamers('twitch'))} tracked streamers)."
    )
    return state


def start_all_services(bot_instance):
    from stream_notifier.core.background_tasks import (
        stream_tick_loop, fivem_status_loop, reschedule_tick_loop, reschedule_fivem_loop
    )

    if config_manager._are_services_active:
        logger.warning("ServiceManager: Attempted to start services, but they appear to be active already. Call stop_all_services first.")
        return

    init_runtime(bot_instance)
    state = config_manager.notifier_state

    if not config_manager.kick_client:
        logger.warning("ServiceManager: Kick API not configured (KICK_CLIENT_ID/KICK_CLIENT_SECRET). Kick checks disabled.")
    if not config_manager.twitch_client:
        logger.warning("ServiceManager: Twitch API not configured (TWITCH_CLIENT_ID/TWITCH_CLIENT_SECRET). Twitch checks disabled.")
    if not state.settings.get("notifyChannelId"):
        logger.warning("ServiceManager: Notify channel not set. Use the 'set channel' command.")

    reschedule_tick_loop(state.settings.get("checkIntervalSeconds"))
    if not stream_tick_loop.is_running():
        stream_tick_loop.start()
        logger.info("ServiceManager: Started stream tick loop.")

    reschedule_fivem_loop(state.fivem_settings.get("checkIntervalSeconds"))
    if not fivem_status_loop.is_running():
        fivem_status_loop.start()
        logger.info("ServiceManager: Started FiveM status loop.")

    config_manager._are_services_active = True


async def stop_all_services():
    from stream_notifier.core.background_tasks import stream_tick_loop, fivem_status_loop

    if not config_manager._are_services_active:
        logger.info("ServiceManager: No active services to stop.")
        return

    logger.info("ServiceManager: Stopping background loops...")
    for loop_task in (stream_tick_loop, fivem_status_loop):
        if loop_task.is_running():
            loop_task.cancel()

    await persist_state()
    config_manager._are_services_active = False
    logger.info("ServiceManager: All services stopped.")
