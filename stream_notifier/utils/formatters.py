from datetime import datetime, timezone

import discord


def format_duration_human(total_seconds: int) -> str:
    """
    Formats a duration in total seconds into a human-readable string
    (e.g., "1 day, 2 hours, 30 minutes").
    """
    total_seconds = max(0, int(total_seconds))
    if total_seconds == 0:
        return "no time"

    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days} day{'s' if days > 1 else ''}")
    if hours > 0:
        parts.append(f"{hours} hour{'s' if hours > 1 else ''}")
    if minutes > 0:
        parts.append(f"{minutes} minute{'s' if minutes > 1 else ''}")
    # Seconds only matter for short durations
    if not days and not hours and (seconds > 0 or not parts):
        parts.append(f"{seconds} second{'s' if seconds > 1 else ''}")

    return ", ".join(parts)


def ms_to_datetime(ms):
    if not ms:
        return None
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)


def format_discord_time(ms, style: str = 'R') -> str:
    """Discord relative/absolute timestamp markup for a millisecond epoch, '-' when unset."""
    dt = ms_to_datetime(ms)
    if dt is None:
        return "-"
    return discord.utils.format_dt(dt, style)


def format_iso_time(ms) -> str:
    dt = ms_to_datetime(ms)
    return dt.isoformat() if dt else "-"


def truncate(text, limit: int) -> str:
    text = "" if text is None else str(text)
    if len(text) <= limit:
        return text
    return text[:max(0, limit - 1)] + "…"


def format_streamer_line(index: int, handle: str, discord_id=None) -> str:
    return f"{index}. {handle} <@{discord_id}>" if discord_id else f"{index}. {handle}"


def chunk_lines(header: str, lines, limit: int = 1900) -> list:
    """Packs lines into Discord-sized messages; the header starts the first one."""
    chunks = []
    current = header or ""
    for line in lines:
        line = str(line)
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit and current:
            chunks.append(current)
            current = line[:limit]
        else:
            current = candidate[:limit]
    if current:
        chunks.append(current)
    return chunks
