import copy
import json
import logging
import os
import time

from .constants import (
    PLATFORMS, STREAMER_HANDLE_FIELD,
    DEFAULT_KEYWORD_REGEX, DEFAULT_CHECK_INTERVAL_SECONDS,
    FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS, FIVEM_DEFAULT_TIMEOUT_MS
)
from .stream_matching import normalize_name

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def default_platform_health() -> dict:
    return {
        "consecutiveFailures": 0,
        "nextAllowedAt": 0,
        "lastError": None,
        "lastErrorAt": 0,
        "lastSuccessAt": 0,
        "lastLoggedAt": 0,
    }


DEFAULT_DATA = {
    "settings": {
        "notifyChannelId": None,
        "mentionHere": True,
        "keywordRegex": DEFAULT_KEYWORD_REGEX,
        "checkIntervalSeconds": DEFAULT_CHECK_INTERVAL_SECONDS,
        "discoveryMode": False,
        "discoveryTwitchPages": 5,
        "discoveryKickLimit": 100,
        "twitchGameId": "32982",
        "kickCategoryName": "Grand Theft Auto V",
        "kickCategoryId": None,
        "kickCategoryResolvedAt": 0,
    },
    "kick": {"streamers": []},      # { slug, discordId|null }
    "twitch": {"streamers": []},    # { login, discordId|null }
    "state": {
        # handle -> { messageId, sessionKey, createdAt }
        "kickActiveMessages": {},
        "twitchActiveMessages": {},
        "kickHealth": default_platform_health(),
        "twitchHealth": default_platform_health(),
        "lastTickAt": 0,
        "lastTickDurationMs": 0,
    },
    "fivem": {
        "settings": {
            "enabled": False,
            "baseUrl": None,
            "statusChannelId": None,
            "statusMessageId": None,
            "checkIntervalSeconds": FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS,
            "timeoutMs": FIVEM_DEFAULT_TIMEOUT_MS,
            "title": "FiveM Server",
            "connectCommand": None,
            "showPlayers": True,
            "maxPlayersShown": 10,
            "restartTimes": [],
        },
        "state": {
            "consecutiveFailures": 0,
            "nextAllowedAt": 0,
            "lastError": None,
            "lastErrorAt": 0,
            "lastSuccessAt": 0,
            "lastCheckedAt": 0,
            "lastOnline": None,
            "wentOnlineAt": 0,
        },
    },
}

# Settings keys renamed since the first data file layout
_LEGACY_SETTING_KEYS = {
    "twitchGta5GameId": "twitchGameId",
    "kickGtaCategoryName": "kickCategoryName",
    "kickGtaCategoryId": "kickCategoryId",
    "kickGtaCategoryResolvedAt": "kickCategoryResolvedAt",
}


def _merge_defaults(defaults: dict, loaded: dict) -> dict:
    merged = copy.deepcopy(defaults)
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict) and merged[key]:
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_with_defaults(loaded: dict) -> dict:
    loaded = copy.deepcopy(loaded or {})
    settings = loaded.get("settings")
    if isinstance(settings, dict):
        for old_key, new_key in _LEGACY_SETTING_KEYS.items():
            if old_key in settings:
                value = settings.pop(old_key)
                settings.setdefault(new_key, value)

    data = _merge_defaults(DEFAULT_DATA, loaded)
    for platform in PLATFORMS:
        if not isinstance(data[platform].get("streamers"), list):
            data[platform]["streamers"] = []
        if not isinstance(data["state"].get(f"{platform}ActiveMessages"), dict):
            data["state"][f"{platform}ActiveMessages"] = {}
    return data


class NotifierState:
    """
    The single shared, JSON-backed structure every component reads and mutates.
    Persisted through JsonDataStore once per tick (or after a command edit).
    """

    def __init__(self, data: dict = None):
        self.data = merge_with_defaults(data or {})

    @property
    def settings(self) -> dict:
        return self.data["settings"]

    @property
    def runtime(self) -> dict:
        return self.data["state"]

    @property
    def fivem_settings(self) -> dict:
        return self.data["fivem"]["settings"]

    @property
    def fivem_state(self) -> dict:
        return self.data["fivem"]["state"]

    def streamers(self, platform: str) -> list:
        return self.data[platform]["streamers"]

    def set_streamers(self, platform: str, streamers: list):
        self.data[platform]["streamers"] = list(streamers)

    def handles(self, platform: str) -> list:
        field = STREAMER_HANDLE_FIELD[platform]
        seen = []
        for entry in self.streamers(platform):
            handle = normalize_name(entry.get(field))
            if handle and handle not in seen:
                seen.append(handle)
        return seen

    def find_streamer(self, platform: str, handle: str):
        field = STREAMER_HANDLE_FIELD[platform]
        handle = normalize_name(handle)
        for entry in self.streamers(platform):
            if normalize_name(entry.get(field)) == handle:
                return entry
        return None

    def discord_id_map(self, platform: str) -> dict:
        field = STREAMER_HANDLE_FIELD[platform]
        return {
            normalize_name(entry.get(field)): entry.get("discordId")
            for entry in self.streamers(platform)
            if normalize_name(entry.get(field))
        }

    def active_messages(self, platform: str) -> dict:
        key = f"{platform}ActiveMessages"
        active = self.runtime.get(key)
        if not isinstance(active, dict):
            active = {}
            self.runtime[key] = active
        return active

    def health(self, platform: str) -> dict:
        key = f"{platform}Health"
        health = self.runtime.get(key)
        if not isinstance(health, dict):
            health = default_platform_health()
            self.runtime[key] = health
        else:
            for field, value in default_platform_health().items():
                health.setdefault(field, value)
        return health

    def to_dict(self) -> dict:
        return copy.deepcopy(self.data)


class JsonDataStore:
    """Loads/saves NotifierState. Saves write a temp file and rename it over the real one."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> NotifierState:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.info(f"Data Store: {self.path} not found. Creating it with defaults.")
            state = NotifierState()
            self.save(state)
            return state
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} does not contain a JSON object.")
        return NotifierState(raw)

    def save(self, state: NotifierState):
        self.save_snapshot(state.to_dict())

    def save_snapshot(self, data: dict):
        """Writes a state dict copied on the event loop. Runs in a worker thread."""
        tmp_path = f"{self.path}.tmp"
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
        logger.debug(f"Data Store: Saved state to {self.path}.")
