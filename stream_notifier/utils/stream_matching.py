import re

from .constants import (
    DEFAULT_KEYWORD_REGEX, MAX_REGEX_LENGTH,
    ZERO_TIME_SENTINEL, SESSION_KEY_TITLE_PREFIX
)

DEFAULT_KEYWORD_PATTERN = re.compile(DEFAULT_KEYWORD_REGEX, re.IGNORECASE)

_DISCORD_MENTION_RE = re.compile(r"<@!?(\d{17,20})>")
_DISCORD_ID_RE = re.compile(r"^\d{17,20}$")
_CHANNEL_MENTION_RE = re.compile(r"^<#(\d{17,20})>$")

_TRUTHY = {"1", "true", "yes", "y", "on", "enable", "enabled"}
_FALSY = {"0", "false", "no", "n", "off", "disable", "disabled"}


def normalize_name(value) -> str:
    """Trim + lowercase. Every handle comparison and map key goes through this."""
    if value is None:
        return ""
    return str(value).strip().lower()


def safe_str(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def clamp_int(value, minimum: int, maximum: int, fallback: int) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return fallback
    return max(minimum, min(maximum, number))


def parse_on_off(value):
    """Returns True/False for recognised on/off words, None otherwise."""
    v = normalize_name(value)
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    return None


def compile_regex_or_fallback(pattern, fallback=DEFAULT_KEYWORD_PATTERN):
    """
    Compiles a case-insensitive keyword pattern.
    Empty, overlong or invalid patterns fall back to the default instead of raising.
    """
    p = safe_str(pattern)
    if not p or len(p) > MAX_REGEX_LENGTH:
        return fallback
    try:
        return re.compile(p, re.IGNORECASE)
    except re.error:
        return fallback


def validate_regex_pattern(pattern):
    """Returns (ok, error_message) for operator-supplied keyword patterns."""
    p = safe_str(pattern)
    if not p:
        return False, "Regex cannot be empty."
    if len(p) > MAX_REGEX_LENGTH:
        return False, f"Regex is too long (max {MAX_REGEX_LENGTH} chars)."
    try:
        re.compile(p, re.IGNORECASE)
    except re.error as e:
        return False, f"Invalid regex: {e}"
    return True, None


def derive_session_key(start_time_or_empty, title) -> str:
    """
    Identifies one broadcast. The platform-reported start is used verbatim unless it is
    empty or the zero-time sentinel; then the title is used.

    Two broadcasts sharing a title with no start time produce the same key and are
    treated as one session.
    """
    start = "" if start_time_or_empty is None else str(start_time_or_empty)
    if start and start != ZERO_TIME_SENTINEL:
        return start
    return f"{SESSION_KEY_TITLE_PREFIX}{'' if title is None else title}"


def is_matching_broadcast(record, keyword_pattern, target_category_id=None) -> bool:
    """
    A broadcast matches when it is live, its category equals the target (if one is
    resolved) and its title matches the keyword pattern.
    """
    if not record.is_live:
        return False
    if target_category_id not in (None, ""):
        if record.category_id is None or str(record.category_id) != str(target_category_id):
            return False
    return bool(keyword_pattern.search(record.title or ""))


def extract_discord_id(text: str, args=None):
    """Finds a Discord user id in a pasted mention (<@id> / <@!id>) or a raw numeric argument."""
    match = _DISCORD_MENTION_RE.search(text or "")
    if match:
        return match.group(1)
    for arg in args or []:
        if _DISCORD_ID_RE.match(str(arg)):
            return str(arg)
    return None


def extract_channel_id(arg, current_channel_id=None):
    """Accepts a #channel mention, a raw id, or 'here'/'this' for the current channel."""
    v = safe_str(arg)
    if not v:
        return None
    if v.lower() in ("here", "this"):
        return str(current_channel_id) if current_channel_id else None
    match = _CHANNEL_MENTION_RE.match(v)
    if match:
        return match.group(1)
    if _DISCORD_ID_RE.match(v):
        return v
    return None


def chunk_list(items, size: int):
    if size <= 0:
        return []
    return [items[i:i + size] for i in range(0, len(items), size)]
