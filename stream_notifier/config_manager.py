import logging
import json
import sys
from datetime import datetime, timezone

# --- Logging Setup ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s:%(levelname)s:%(name)s: %(message)s')
logging.getLogger('discord').setLevel(logging.WARNING)
logger = logging.getLogger('stream_notifier_bot')

# --- Bot Start Time ---
bot_start_time = datetime.now(timezone.utc)

# --- Configuration Loading ---
CONFIG_FILE = 'config.json'
config_data = {} # This will hold the raw loaded dict

# --- Global Config Variables ---
DISCORD_TOKEN: str = None
COMMAND_PREFIX: str = '.'
owner_id_from_config: str = None # Stored as string from config, converted by bot instance
DISCORD_NOTIFY_CHANNEL_ID: str = None
MENTION_HERE: bool = True
KEYWORD_REGEX: str = r"nox\s*rp"
CHECK_INTERVAL_SECONDS: int = 60
DISCOVERY_MODE: bool = False
DISCOVERY_TWITCH_PAGES: int = 5
DISCOVERY_KICK_LIMIT: int = 100
TWITCH_CLIENT_ID: str = None
TWITCH_CLIENT_SECRET: str = None
TWITCH_GAME_ID: str = "32982"
KICK_CLIENT_ID: str = None
KICK_CLIENT_SECRET: str = None
KICK_CATEGORY_NAME: str = "Grand Theft Auto V"
STREAMER_LIVE_ROLE_ID: str = None
ALLOWED_ROLE_IDS: list = []
DATA_FILE: str = "data.json"
CONFIG_OVERRIDES_DATA: bool = False
LOG_LEVEL: str = "INFO"

# Config key -> settings key in the data file. Config only seeds these unless CONFIG_OVERRIDES_DATA is set.
SETTINGS_SEED_KEYS = {
    'DISCORD_NOTIFY_CHANNEL_ID': 'notifyChannelId',
    'MENTION_HERE': 'mentionHere',
    'KEYWORD_REGEX': 'keywordRegex',
    'CHECK_INTERVAL_SECONDS': 'checkIntervalSeconds',
    'DISCOVERY_MODE': 'discoveryMode',
    'DISCOVERY_TWITCH_PAGES': 'discoveryTwitchPages',
    'DISCOVERY_KICK_LIMIT': 'discoveryKickLimit',
    'TWITCH_GAME_ID': 'twitchGameId',
    'KICK_CATEGORY_NAME': 'kickCategoryName',
}

# Global runtime objects (created by services.service_manager, read by cogs and tasks)
kick_client: 'KickClient' = None
twitch_client: 'TwitchClient' = None
data_store: 'JsonDataStore' = None
notifier_state: 'NotifierState' = None
health_tracker: 'HealthTracker' = None
discord_notifier: 'DiscordNotifier' = None
role_manager: 'DiscordRoleManager' = None
reconciler: 'LiveMessageReconciler' = None
tick_orchestrator: 'TickOrchestrator' = None
fivem_service: 'FivemStatusService' = None
_are_services_active: bool = False


def load_config(initial_load=False):
    global config_data
    try:
        with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
            loaded_json = json.load(f)

        if not isinstance(loaded_json, dict):
            raise json.JSONDecodeError("Top-level value must be an object", "", 0)

        required_keys = ['DISCORD_TOKEN']
        for key in required_keys:
            if not loaded_json.get(key) or "YOUR_" in str(loaded_json.get(key)):
                err_msg = f"ERROR: Essential configuration key '{key}' is missing or contains a placeholder value in {CONFIG_FILE}."
                if initial_load:
                    print(err_msg)
                    sys.exit(1)
                logger.error(f"Reload Attempt: {err_msg}")
                return False, err_msg

        if initial_load:
            config_data = loaded_json
        return True, loaded_json

    except FileNotFoundError:
        err_msg = f"ERROR: {CONFIG_FILE} not found. Please create it based on config.example.json."
        if initial_load: print(err_msg); sys.exit(1)
        logger.error(f"Reload Attempt: {err_msg}"); return False, err_msg
    except json.JSONDecodeError as e:
        err_msg = f"ERROR: Error decoding {CONFIG_FILE}. Please check its JSON syntax. Details: {e}"
        if initial_load: print(err_msg); sys.exit(1)
        logger.error(f"Reload Attempt: {err_msg}"); return False, err_msg


def _as_bool(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_id(value):
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip()


def _as_snowflake(key, value):
    v = _as_id(value)
    if v is not None and not v.isdigit():
        logger.error(f"Applying Config: {key} '{v}' is not a numeric Discord id. Ignoring it.")
        return None
    return v


def _as_id_list(value):
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in (value or []) if str(v).strip()]


def apply_config_globally(source_config_dict):
    logger.info("Applying configuration dictionary to global variables...")
    global DISCORD_TOKEN, COMMAND_PREFIX, owner_id_from_config, DISCORD_NOTIFY_CHANNEL_ID, \
           MENTION_HERE, KEYWORD_REGEX, CHECK_INTERVAL_SECONDS, DISCOVERY_MODE, \
           DISCOVERY_TWITCH_PAGES, DISCOVERY_KICK_LIMIT, TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET, \
           TWITCH_GAME_ID, KICK_CLIENT_ID, KICK_CLIENT_SECRET, KICK_CATEGORY_NAME, \
           STREAMER_LIVE_ROLE_ID, ALLOWED_ROLE_IDS, DATA_FILE, CONFIG_OVERRIDES_DATA, LOG_LEVEL, \
           kick_client, twitch_client

    DISCORD_TOKEN = source_config_dict.get('DISCORD_TOKEN')
    COMMAND_PREFIX = source_config_dict.get('COMMAND_PREFIX', '.') or '.'
    owner_id_from_config = source_config_dict.get('DISCORD_BOT_OWNER_ID')
    DISCORD_NOTIFY_CHANNEL_ID = _as_id(source_config_dict.get('DISCORD_NOTIFY_CHANNEL_ID'))
    MENTION_HERE = _as_bool(source_config_dict.get('MENTION_HERE'), True)
    KEYWORD_REGEX = source_config_dict.get('KEYWORD_REGEX', r"nox\s*rp")
    CHECK_INTERVAL_SECONDS = source_config_dict.get('CHECK_INTERVAL_SECONDS', 60)
    DISCOVERY_MODE = _as_bool(source_config_dict.get('DISCOVERY_MODE'), False)
    DISCOVERY_TWITCH_PAGES = source_config_dict.get('DISCOVERY_TWITCH_PAGES', 5)
    DISCOVERY_KICK_LIMIT = source_config_dict.get('DISCOVERY_KICK_LIMIT', 100)
    TWITCH_CLIENT_ID = source_config_dict.get('TWITCH_CLIENT_ID')
    TWITCH_CLIENT_SECRET = source_config_dict.get('TWITCH_CLIENT_SECRET')
    TWITCH_GAME_ID = str(source_config_dict.get('TWITCH_GAME_ID', "32982"))
    KICK_CLIENT_ID = source_config_dict.get('KICK_CLIENT_ID')
    KICK_CLIENT_SECRET = source_config_dict.get('KICK_CLIENT_SECRET')
    KICK_CATEGORY_NAME = source_config_dict.get('KICK_CATEGORY_NAME', "Grand Theft Auto V")
    STREAMER_LIVE_ROLE_ID = _as_snowflake('STREAMER_LIVE_ROLE_ID', source_config_dict.get('STREAMER_LIVE_ROLE_ID'))
    ALLOWED_ROLE_IDS = _as_id_list(source_config_dict.get('ALLOWED_ROLE_IDS'))
    DATA_FILE = source_config_dict.get('DATA_FILE', "data.json") or "data.json"
    CONFIG_OVERRIDES_DATA = _as_bool(source_config_dict.get('CONFIG_OVERRIDES_DATA'), False)
    LOG_LEVEL = str(source_config_dict.get('LOG_LEVEL', "INFO")).upper()

    logging.getLogger().setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    from stream_notifier.services.kick_api_handler import KickClient
    from stream_notifier.services.twitch_api_handler import TwitchClient

    if KICK_CLIENT_ID and KICK_CLIENT_SECRET:
        if kick_client is None or \
           kick_client.client_id != KICK_CLIENT_ID or \
           kick_client.client_secret != KICK_CLIENT_SECRET:
            logger.info("Applying Config: Initializing/Re-initializing Kick API client.")
            kick_client = KickClient(KICK_CLIENT_ID, KICK_CLIENT_SECRET)
    elif kick_client is not None:
        logger.warning("Applying Config: Kick Client ID/Secret missing or removed. Clearing Kick API client.")
        kick_client = None

    if TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET:
        if twitch_client is None or \
           twitch_client.client_id != TWITCH_CLIENT_ID or \
           twitch_client.client_secret != TWITCH_CLIENT_SECRET:
            logger.info("Applying Config: Initializing/Re-initializing Twitch API client.")
            twitch_client = TwitchClient(TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET)
    elif twitch_client is not None:
        logger.warning("Applying Config: Twitch Client ID/Secret missing or removed. Clearing Twitch API client.")
        twitch_client = None

    if tick_orchestrator is not None:
        tick_orchestrator.kick_client = kick_client
        tick_orchestrator.twitch_client = twitch_client
    if role_manager is not None:
        role_manager.role_id = STREAMER_LIVE_ROLE_ID

    logger.info("Configuration applied globally from source dictionary.")


def config_settings_values(source_config_dict=None) -> dict:
    """Applied config values keyed by their data-file settings name, for keys present in the config file."""
    source_config_dict = config_data if source_config_dict is None else source_config_dict
    current = globals()
    return {
        settings_key: current[config_key]
        for config_key, settings_key in SETTINGS_SEED_KEYS.items()
        if config_key in source_config_dict and current[config_key] is not None
    }
