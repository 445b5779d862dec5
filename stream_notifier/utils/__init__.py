from .constants import *
from .formatters import format_duration_human, format_discord_time, format_iso_time, truncate, chunk_lines, format_streamer_line
from .stream_matching import (
    normalize_name,
    safe_str,
    clamp_int,
    parse_on_off,
    compile_regex_or_fallback,
    validate_regex_pattern,
    derive_session_key,
    is_matching_broadcast,
    extract_discord_id,
    extract_channel_id,
    chunk_list,
)
from .data_store import NotifierState, JsonDataStore, now_ms
