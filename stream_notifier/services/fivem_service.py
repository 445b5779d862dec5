import asyncio
import logging
import random
import re
from datetime import datetime, timedelta

import discord
import requests

from stream_notifier.utils.constants import (
    FIVEM_BACKOFF_BASE_MS, FIVEM_BACKOFF_CAP_MS, FIVEM_BACKOFF_JITTER_MS, BACKOFF_MAX_DOUBLINGS,
    FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS, FIVEM_DEFAULT_TIMEOUT_MS, FIVEM_USER_AGENT,
    FIVEM_MIN_CHECK_INTERVAL_SECONDS, FIVEM_MAX_CHECK_INTERVAL_SECONDS, FIVEM_MAX_PLAYERS_SHOWN
)
from stream_notifier.utils.data_store import now_ms
from stream_notifier.utils.stream_matching import clamp_int

logger = logging.getLogger(__name__)

_BASE_URL_RE = re.compile(r"^https?://[^/\s]+(:\d+)?$", re.IGNORECASE)
_RESTART_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_CLOCK_RE = re.compile(r"^(\d{1,3}):(\d{2})(?::(\d{2}))?$")
_UNIT_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(ms|milliseconds?|d|days?|h|hrs?|hours?|m|mins?|minutes?|s|secs?|seconds?)\b",
    re.IGNORECASE,
)
_UNIT_MS = {
    "ms": 1, "millisecond": 1, "milliseconds": 1,
    "d": 86_400_000, "day": 86_400_000, "days": 86_400_000,
    "h": 3_600_000, "hr": 3_600_000, "hrs": 3_600_000, "hour": 3_600_000, "hours": 3_600_000,
    "m": 60_000, "min": 60_000, "mins": 60_000, "minute": 60_000, "minutes": 60_000,
    "s": 1000, "sec": 1000, "secs": 1000, "second": 1000, "seconds": 1000,
}
_UPTIME_KEYS = (
    "uptimeMs", "uptime_ms", "uptimeMilliseconds", "uptimeSeconds", "uptime_sec",
    "uptime", "serverUptime", "server_uptime", "sv_uptime",
)
_EMPTY_BOX = "```--\n--\n```"


def normalize_base_url(value):
    """'http(s)://host[:port]' without a trailing slash, or None."""
    raw = str(value or "").strip().rstrip("/")
    if not raw or not _BASE_URL_RE.match(raw):
        return None
    return raw


def next_backoff_ms(consecutive_failures: int, jitter_ms=None) -> int:
    exponent = min(int(consecutive_failures), BACKOFF_MAX_DOUBLINGS)
    backoff = min(FIVEM_BACKOFF_CAP_MS, FIVEM_BACKOFF_BASE_MS * (2 ** exponent))
    if jitter_ms is None:
        jitter_ms = int(random.random() * FIVEM_BACKOFF_JITTER_MS)
    return backoff + jitter_ms


def clamp_check_interval(value) -> int:
    return clamp_int(value, FIVEM_MIN_CHECK_INTERVAL_SECONDS, FIVEM_MAX_CHECK_INTERVAL_SECONDS,
                     FIVEM_DEFAULT_CHECK_INTERVAL_SECONDS)


def parse_restart_times(value) -> list:
    """Accepts "04:00,16:00" or a list of HH:MM strings. Returns sorted, de-duplicated, zero-padded times."""
    if isinstance(value, (list, tuple)):
        parts = [str(p).strip() for p in value]
    else:
        parts = [p.strip() for p in str(value or "").split(",")]

    times = set()
    for part in parts:
        match = _RESTART_TIME_RE.match(part)
        if not match:
            continue
        hh, mm = int(match.group(1)), int(match.group(2))
        if 0 <= hh <= 23 and 0 <= mm <= 59:
            times.add(f"{hh:02d}:{mm:02d}")
    return sorted(times)


def compute_next_restart(now: datetime, restart_times):
    """Closest upcoming daily restart after `now` (same timezone as `now`), or None."""
    best = None
    for entry in parse_restart_times(restart_times):
        hh, mm = (int(x) for x in entry.split(":"))
        candidate = now.replace(hour=hh, minute=mm, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        if best is None or candidate < best:
            best = candidate
    return best


def format_duration_parts(ms) -> str:
    total_minutes = max(0, int(ms) // 60_000)
    days, remainder = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(remainder, 60)
    parts = []
    if days:
        parts.append(f"{days} days")
    if hours:
        parts.append(f"{hours} hrs")
    parts.append(f"{minutes} mins")
    return ", ".join(parts)


def parse_uptime_to_ms(value):
    """
    Reads an uptime published by the server: plain numbers (seconds, or ms when >= 1e9),
    "hh:mm:ss" / "mm:ss", or unit strings like "1d 2h 3m".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return int(value) if value >= 1e9 else int(value * 1000)

    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        return parse_uptime_to_ms(number)

    clock = _CLOCK_RE.match(text)
    if clock:
        a, b = int(clock.group(1)), int(clock.group(2))
        if clock.group(3) is None:
            total = a * 60 + b
        else:
            total = a * 3600 + b * 60 + int(clock.group(3))
        return total * 1000 if total > 0 else None

    total_ms = 0.0
    for amount, unit in _UNIT_RE.findall(text):
        total_ms += float(amount) * _UNIT_MS[unit.lower()]
    return int(total_ms) if total_ms > 0 else None


def _uptime_from_vars(variables):
    if not isinstance(variables, dict):
        return None
    for key in _UPTIME_KEYS:
        if key in variables:
            ms = parse_uptime_to_ms(variables[key])
            if ms:
                return ms
    for key, value in variables.items():
        if "uptime" in key.lower():
            ms = parse_uptime_to_ms(value)
            if ms:
                return ms
    return None


def extract_server_uptime_ms(status: dict):
    """Only uptime explicitly published by the server is used; never the bot's own observation."""
    dynamic = status.get("dynamic") if isinstance(status.get("dynamic"), dict) else {}
    info = status.get("info") if isinstance(status.get("info"), dict) else {}
    for source in (dynamic, info):
        for key in ("uptimeMs", "uptime_ms", "uptimeSeconds", "uptime_sec", "uptime"):
            ms = parse_uptime_to_ms(source.get(key))
            if ms:
                return ms
    return _uptime_from_vars(dynamic.get("vars")) or _uptime_from_vars(info.get("vars"))


def guess_connect_command(base_url, explicit=None):
    if explicit and str(explicit).strip():
        return str(explicit).strip()
    base = normalize_base_url(base_url)
    if not base:
        return None
    host = base.split("://", 1)[1].split(":", 1)[0]
    return f"connect {host}" if host else None


def _fetch_json_sync(url: str, timeout_seconds: float) -> dict:
    try:
        response_obj = requests.get(url, timeout=timeout_seconds, headers={"User-Agent": FIVEM_USER_AGENT})
    except requests.exceptions.RequestException as e:
        return {"ok": False, "status": 0, "data": None, "error": str(e)}

    text = response_obj.text or ""
    # Servers that hide their endpoints answer "Nope." even with HTTP 200
    if "nope" in text.lower():
        return {"ok": False, "status": response_obj.status_code, "data": text, "blocked": True}

    if 200 <= response_obj.status_code < 300:
        try:
            data = response_obj.json()
        except ValueError:
            data = text
        return {"ok": True, "status": response_obj.status_code, "data": data}
    return {"ok": False, "status": response_obj.status_code, "data": text}


async def fetch_json(url: str, timeout_seconds: float) -> dict:
    return await asyncio.to_thread(_fetch_json_sync, url, timeout_seconds)


async def get_server_status(base_url, timeout_ms) -> dict:
    base = normalize_base_url(base_url)
    if not base:
        return {"online": False, "blocked": False, "reason": "Invalid endpoint URL.",
                "info": None, "dynamic": None, "players": None}

    timeout_seconds = max(1, int(timeout_ms or FIVEM_DEFAULT_TIMEOUT_MS)) / 1000
    results = await asyncio.gather(
        fetch_json(f"{base}/dynamic.json", timeout_seconds),
        fetch_json(f"{base}/info.json", timeout_seconds),
        fetch_json(f"{base}/players.json", timeout_seconds),
        return_exceptions=True,
    )
    dynamic, info, players = [r if isinstance(r, dict) else {"ok": False, "data": None} for r in results]

    blocked = any(r.get("blocked") for r in (dynamic, info, players))
    online = any(r.get("ok") for r in (dynamic, info, players)) and not blocked
    reason = None
    if blocked:
        reason = "Server blocks info endpoints (Nope)."
    elif not online:
        errors = [r.get("error") or (f"HTTP {r.get('status')}" if r.get("status") else None) for r in (dynamic, info, players)]
        reason = next((e for e in errors if e), "Fetch failed/offline.")

    return {
        "online": online,
        "blocked": blocked,
        "reason": reason,
        "info": info["data"] if info.get("ok") else None,
        "dynamic": dynamic["data"] if dynamic.get("ok") else None,
        "players": players["data"] if players.get("ok") else None,
    }


class FivemStatusService:
    """Polls one FiveM server and keeps a single status message up to date."""

    def __init__(self, bot_instance, state, store, time_func=now_ms, jitter_func=None, local_now_func=datetime.now):
        self.bot = bot_instance
        self.state = state
        self.store = store
        self._now = time_func
        self._jitter = jitter_func
        self._local_now = local_now_func

    @property
    def settings(self) -> dict:
        return self.state.fivem_settings

    @property
    def runtime(self) -> dict:
        return self.state.fivem_state

    async def _persist(self):
        try:
            await asyncio.to_thread(self.store.save_snapshot, self.state.to_dict())
        except Exception as e:
            logger.error(f"FiveM: Failed to save state: {e}", exc_info=True)

    async def do_poll(self, force: bool = False, update_message: bool = True) -> dict:
        s, st = self.settings, self.runtime
        now = self._now()

        if not s.get("enabled") and not force:
            return {"ok": False, "reason": "disabled"}
        if not force and st.get("nextAllowedAt") and now < int(st["nextAllowedAt"]):
            return {"ok": False, "reason": "backoff", "nextAllowedAt": st["nextAllowedAt"]}
        if not s.get("baseUrl"):
            return {"ok": False, "reason": "no_endpoint"}

        status = await get_server_status(s["baseUrl"], s.get("timeoutMs"))
        prev_online = st.get("lastOnline")

        st["lastCheckedAt"] = now
        st["lastOnline"] = bool(status["online"])

        if status["online"]:
            # An unknown -> online change is just the bot starting up
            if prev_online is False:
                st["wentOnlineAt"] = now
            st["consecutiveFailures"] = 0
            st["nextAllowedAt"] = 0
            st["lastError"] = None
            st["lastErrorAt"] = 0
            st["lastSuccessAt"] = now
        else:
            if prev_online is True:
                st["wentOnlineAt"] = 0
                logger.warning(f"FiveM: Server {s['baseUrl']} went offline: {status['reason']}")
            st["consecutiveFailures"] = int(st.get("consecutiveFailures") or 0) + 1
            st["lastError"] = status["reason"] or "Fetch failed/offline."
            st["lastErrorAt"] = now
            if not force:
                jitter = self._jitter() if self._jitter else None
                st["nextAllowedAt"] = now + next_backoff_ms(st["consecutiveFailures"], jitter)

        await self._persist()

        message = None
        if update_message and s.get("enabled"):
            message = await self.ensure_status_message(self.build_status_embed(status))
        return {"ok": True, "status": status, "message": message}

    def build_status_embed(self, status: dict) -> discord.Embed:
        s = self.settings
        dynamic = status.get("dynamic") if isinstance(status.get("dynamic"), dict) else {}
        info = status.get("info") if isinstance(status.get("info"), dict) else {}
        info_vars = info.get("vars") if isinstance(info.get("vars"), dict) else {}
        players = status.get("players") if isinstance(status.get("players"), list) else []
        online = bool(status.get("online"))

        detected_hostname = (dynamic.get("hostname") or info_vars.get("sv_projectName")
                             or info_vars.get("sv_hostname") or info.get("server") or "FiveM Server")
        title = str(s.get("title") or detected_hostname)[:256]

        try:
            max_clients = int(dynamic.get("sv_maxclients") or info_vars.get("sv_maxclients") or 0) or None
        except (TypeError, ValueError):
            max_clients = None
        try:
            clients = int(dynamic.get("clients") or len(players))
        except (TypeError, ValueError):
            clients = len(players)

        embed = discord.Embed(
            title=title,
            color=discord.Color.green() if online else discord.Color.red(),
        )
        embed.add_field(name="STATUS", value="```diff\n+ Online\n```" if online else "```diff\n- Offline\n```", inline=True)
        players_text = f"{clients}/{max_clients}" if max_clients else str(clients)
        embed.add_field(name="PLAYERS", value=f"```\n{players_text}\n```" if online else _EMPTY_BOX, inline=True)

        connect_cmd = guess_connect_command(s.get("baseUrl"), s.get("connectCommand"))
        embed.add_field(name="F8 CONNECT COMMAND", value=f"```\n{connect_cmd}\n```" if connect_cmd else _EMPTY_BOX, inline=False)

        local_now = self._local_now()
        next_restart = compute_next_restart(local_now, s.get("restartTimes"))
        if next_restart is not None:
            remaining_ms = int((next_restart - local_now).total_seconds() * 1000)
            embed.add_field(name="NEXT RESTART", value=f"```\nin {format_duration_parts(remaining_ms)}\n```", inline=True)
        else:
            embed.add_field(name="NEXT RESTART", value=_EMPTY_BOX, inline=True)

        uptime_ms = extract_server_uptime_ms(status) if online else None
        embed.add_field(name="UPTIME", value=f"```\n{format_duration_parts(uptime_ms)}\n```" if uptime_ms else _EMPTY_BOX, inline=True)

        if online and s.get("showPlayers") and players:
            max_shown = clamp_int(s.get("maxPlayersShown"), 0, FIVEM_MAX_PLAYERS_SHOWN, 10)
            names = []
            for i, player in enumerate(players[:max_shown], start=1):
                name = " ".join(str((player or {}).get("name") or "unknown").split()) if isinstance(player, dict) else "unknown"
                names.append(f"{i}. {name or 'unknown'}")
            if names:
                embed.add_field(
                    name=f"PLAYERS LIST (top {min(len(players), max_shown)}/{len(players)})",
                    value="```\n" + "\n".join(names)[:1000] + "\n```",
                    inline=False,
                )

        interval = clamp_check_interval(s.get("checkIntervalSeconds"))
        every = "Every minute" if interval < 120 else f"Every {round(interval / 60)} min"
        embed.set_footer(text=f"{every} • {local_now.strftime('%Y-%m-%d %H:%M')}")
        return embed

    async def _get_status_channel(self):
        channel_id = self.settings.get("statusChannelId")
        try:
            channel_id = int(channel_id)
        except (TypeError, ValueError):
            return None
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.HTTPException as e:
                logger.error(f"FiveM: Could not fetch status channel {channel_id}: {e}")
                return None
        return channel if hasattr(channel, "send") else None

    async def ensure_status_message(self, embed: discord.Embed) -> dict:
        s = self.settings
        if not s.get("enabled"):
            return {"ok": False, "reason": "disabled"}
        if not s.get("statusChannelId"):
            return {"ok": False, "reason": "no_channel"}

        channel = await self._get_status_channel()
        if channel is None:
            return {"ok": False, "reason": "invalid_channel"}

        if s.get("statusMessageId") and hasattr(channel, "fetch_message"):
            message = None
            try:
                message = await channel.fetch_message(int(s["statusMessageId"]))
            except discord.NotFound:
                message = None
            except discord.HTTPException as e:
                logger.error(f"FiveM: Could not fetch status message {s['statusMessageId']}: {e}")
                return {"ok": False, "reason": "fetch_failed", "error": str(e)}
            if message is not None:
                try:
                    await message.edit(embed=embed)
                    return {"ok": True, "mode": "edited"}
                except discord.HTTPException as e:
                    logger.error(f"FiveM: Failed to edit status message: {e}")
                    return {"ok": False, "reason": "edit_failed", "error": str(e)}
            s["statusMessageId"] = None

        try:
            sent = await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"FiveM: Failed to send status message: {e}")
            return {"ok": False, "reason": "send_failed", "error": str(e)}
        s["statusMessageId"] = str(sent.id)
        await self._persist()
        logger.info(f"FiveM: Posted new status message {sent.id} in channel {channel.id}.")
        return {"ok": True, "mode": "sent"}
