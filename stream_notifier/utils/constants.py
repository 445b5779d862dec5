# --- Platforms ---
PLATFORM_KICK = "kick"
PLATFORM_TWITCH = "twitch"
PLATFORMS = (PLATFORM_KICK, PLATFORM_TWITCH)

PLATFORM_DISPLAY_NAMES = {
    PLATFORM_KICK: "Kick",
    PLATFORM_TWITCH: "Twitch",
}

# Key of the handle field inside a tracked streamer entry, per platform
STREAMER_HANDLE_FIELD = {
    PLATFORM_KICK: "slug",
    PLATFORM_TWITCH: "login",
}

# --- Platform API endpoints ---
KICK_OAUTH_URL = "https://id.kick.com/oauth/token"
KICK_API_BASE_URL = "https://api.kick.com/public/v1"
TWITCH_OAUTH_URL = "https://id.twitch.tv/oauth2/token"
TWITCH_API_BASE_URL = "https://api.twitch.tv/helix"

API_REQUEST_TIMEOUT_SECONDS = 15
TOKEN_REFRESH_MARGIN_SECONDS = 30
TOKEN_MIN_LIFETIME_SECONDS = 60

# --- Batching ---
KICK_MAX_BATCH_SIZE = 50
TWITCH_MAX_BATCH_SIZE = 100
KICK_DISCOVERY_MAX_LIMIT = 100
TWITCH_DISCOVERY_PAGE_SIZE = 100
TWITCH_DISCOVERY_MAX_PAGES = 50

# --- Session keys ---
ZERO_TIME_SENTINEL = "0001-01-01T00:00:00Z"
SESSION_KEY_TITLE_PREFIX = "live:"

# --- Keyword matching ---
DEFAULT_KEYWORD_REGEX = r"nox\s*rp"
MAX_REGEX_LENGTH = 200

# --- Health / backoff (milliseconds) ---
BACKOFF_BASE_MS = 30_000
BACKOFF_RATE_LIMITED_BASE_MS = 60_000
BACKOFF_MAX_DOUBLINGS = 6
BACKOFF_CAP_MS = 10 * 60_000
BACKOFF_JITTER_MS = 5_000
HEALTH_LOG_INTERVAL_MS = 5 * 60_000

# --- Tick scheduling ---
DEFAULT_CHECK_INTERVAL_SECONDS = 60
MIN_CHECK_INTERVAL_SECONDS = 10
MAX_CHECK_INTERVAL_SECONDS = 3600
FORCED_SAVE_INTERVAL_MS = 5 * 60_000
KICK_CATEGORY_CACHE_TTL_MS = 24 * 60 * 60 * 1000

# --- Discord ---
NOTIFY_CHANNEL_CACHE_TTL_SECONDS = 30
ROLE_CACHE_TTL_SECONDS = 60
DISCORD_UNKNOWN_MESSAGE_CODE = 10008

# --- FiveM ---
FIVEM_BACKOFF_BASE_MS = 5_000
FIVEM_BACKOFF_CAP_MS = 120_000
FIVEM_BACKOFF_JITTER_MS = 750
FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS = 300
FIVEM_DEFAULT_TIMEOUT_MS = 5000
FIVEM_USER_AGENT = "stream-notifier-bot/1.0"
FIVEM_MIN_CHECK_INTERVAL_SECONDS = 60
FIVEM_MAX_CHECK_INTERVAL_SECONDS = 3600
FIVEM_MAX_PLAYERS_SHOWN = 25
