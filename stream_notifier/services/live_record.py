from dataclasses import dataclass
from typing import Optional

from stream_notifier.utils.constants import PLATFORM_KICK, PLATFORM_TWITCH
from stream_notifier.utils.stream_matching import normalize_name, derive_session_key


@dataclass(frozen=True)
class LiveRecord:
    """Platform-neutral view of one channel/stream, built right after a fetch."""
    platform: str
    handle: str
    is_live: bool = False
    title: str = ""
    category_id: Optional[str] = None
    category_name: str = ""
    started_at: str = ""
    stream_id: str = ""

    @property
    def url(self) -> str:
        if self.platform == PLATFORM_TWITCH:
            return f"https://twitch.tv/{self.handle}"
        return f"https://kick.com/{self.handle}"

    @property
    def session_key(self) -> str:
        # Twitch hands out a stream id per broadcast; Kick only reports the start time.
        anchor = self.stream_id if self.platform == PLATFORM_TWITCH else self.started_at
        return derive_session_key(anchor, self.title)


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _str_or_empty(value) -> str:
    return "" if value is None else str(value)


def _id_or_none(value):
    if value is None or value == "":
        return None
    return str(value)


def kick_record_from_channel(channel: dict) -> LiveRecord:
    """GET /channels entry: stream info lives under 'stream', the title at the top level."""
    channel = _as_dict(channel)
    stream = _as_dict(channel.get("stream"))
    category = _as_dict(channel.get("category"))
    return LiveRecord(
        platform=PLATFORM_KICK,
        handle=normalize_name(channel.get("slug")),
        is_live=bool(stream.get("is_live")),
        title=_str_or_empty(channel.get("stream_title")),
        category_id=_id_or_none(category.get("id")),
        category_name=_str_or_empty(category.get("name")),
        started_at=_str_or_empty(stream.get("start_time")),
    )


def kick_record_from_livestream(livestream: dict) -> LiveRecord:
    """GET /livestreams entry: only live channels are listed."""
    livestream = _as_dict(livestream)
    category = _as_dict(livestream.get("category"))
    return LiveRecord(
        platform=PLATFORM_KICK,
        handle=normalize_name(livestream.get("slug")),
        is_live=True,
        title=_str_or_empty(livestream.get("stream_title")),
        category_id=_id_or_none(category.get("id")),
        category_name=_str_or_empty(category.get("name")),
        started_at=_str_or_empty(livestream.get("started_at")),
    )


def twitch_record_from_stream(stream: dict) -> LiveRecord:
    """Helix /streams entry. Helix only lists live streams; 'type' is 'live' or empty on error."""
    stream = _as_dict(stream)
    stream_type = stream.get("type")
    return LiveRecord(
        platform=PLATFORM_TWITCH,
        handle=normalize_name(stream.get("user_login")),
        is_live=stream_type in (None, "live") and bool(stream.get("id")),
        title=_str_or_empty(stream.get("title")),
        category_id=_id_or_none(stream.get("game_id")),
        category_name=_str_or_empty(stream.get("game_name")),
        started_at=_str_or_empty(stream.get("started_at")),
        stream_id=_str_or_empty(stream.get("id")),
    )
