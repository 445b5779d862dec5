import asyncio
import logging

from stream_notifier.utils.constants import (
    PLATFORM_KICK, PLATFORM_TWITCH,
    KICK_MAX_BATCH_SIZE, TWITCH_MAX_BATCH_SIZE,
    KICK_DISCOVERY_MAX_LIMIT, TWITCH_DISCOVERY_PAGE_SIZE, TWITCH_DISCOVERY_MAX_PAGES,
    FORCED_SAVE_INTERVAL_MS, KICK_CATEGORY_CACHE_TTL_MS
)
from stream_notifier.utils.data_store import now_ms
from stream_notifier.utils.stream_matching import (
    normalize_name, clamp_int, chunk_list, compile_regex_or_fallback, is_matching_broadcast
)
from .platform_errors import CategoryNotFoundError
from .reconciler import build_notification_payload

logger = logging.getLogger(__name__)

_CATEGORY_LOOKUP_FAILED = object()


def _client_enabled(client) -> bool:
    return client is not None and bool(getattr(client, "enabled", False))


class TickOrchestrator:
    """
    Runs one poll cycle over Kick and Twitch: maintained-list check, then discovery,
    per platform. At most one cycle runs at a time; state is saved once at the end.
    """

    def __init__(self, state, store, kick_client, twitch_client, reconciler, health, time_func=now_ms):
        self.state = state
        self.store = store
        self.kick_client = kick_client
        self.twitch_client = twitch_client
        self.reconciler = reconciler
        self.health = health
        self._now = time_func

        self.tick_running = False
        self.settings_dirty = False
        self.last_save_at = 0

    # --- helpers ---

    def keyword_pattern(self):
        return compile_regex_or_fallback(self.state.settings.get("keywordRegex"))

    def discovery_enabled(self) -> bool:
        return bool(self.state.settings.get("discoveryMode"))

    def twitch_game_id(self) -> str:
        return str(self.state.settings.get("twitchGameId") or "").strip()

    def kick_category_name(self) -> str:
        return str(self.state.settings.get("kickCategoryName") or "").strip()

    async def _reconcile_live(self, platform, handle, session_key, payload) -> bool:
        try:
            return await self.reconciler.ensure_live_message(platform, handle, session_key, payload)
        except Exception as e:
            logger.error(f"Tick: Failed to reconcile live {platform}/{handle}: {e}", exc_info=True)
            return False

    async def _reconcile_offline(self, platform, handle, discord_id) -> bool:
        try:
            return await self.reconciler.ensure_offline_message_deleted(platform, handle, discord_id)
        except Exception as e:
            logger.error(f"Tick: Failed to reconcile offline {platform}/{handle}: {e}", exc_info=True)
            return False

    async def _reconcile_record(self, record, discord_ids, pattern, target_category_id) -> bool:
        discord_id = discord_ids.get(record.handle)
        if not is_matching_broadcast(record, pattern, target_category_id):
            return await self._reconcile_offline(record.platform, record.handle, discord_id)
        payload = build_notification_payload(record, discord_id, self._fallback_category_name(record.platform))
        return await self._reconcile_live(record.platform, record.handle, record.session_key, payload)

    def _fallback_category_name(self, platform: str) -> str:
        return self.kick_category_name() if platform == PLATFORM_KICK else ""

    # --- Kick ---

    async def ensure_kick_category_id(self):
        """
        Cached Kick category id for the configured name, re-resolved every 24h.
        Returns None when nothing matches and _CATEGORY_LOOKUP_FAILED when the lookup raised.
        """
        if not _client_enabled(self.kick_client):
            return None

        settings = self.state.settings
        now = self._now()
        cached_id = settings.get("kickCategoryId")
        resolved_at = int(settings.get("kickCategoryResolvedAt") or 0)
        if cached_id and resolved_at and now - resolved_at < KICK_CATEGORY_CACHE_TTL_MS:
            return cached_id
        if self.health.is_in_backoff(PLATFORM_KICK):
            return cached_id or None

        name = self.kick_category_name()
        try:
            category_id = await self.kick_client.find_category_id_by_name(name)
        except Exception as e:
            self.health.record_failure(PLATFORM_KICK, e, "kick.find_category_id_by_name")
            return _CATEGORY_LOOKUP_FAILED

        settings["kickCategoryId"] = category_id
        settings["kickCategoryResolvedAt"] = now
        self.settings_dirty = True

        if category_id is None:
            self.health.record_failure(PLATFORM_KICK, CategoryNotFoundError(name), "kick.find_category_id_by_name")
            logger.warning(f"Tick: No Kick category matches '{name}'. Checking Kick without a category filter.")
            return None

        logger.info(f"Tick: Resolved Kick category '{name}' to id {category_id}.")
        return category_id

    async def check_kick(self) -> bool:
        if not _client_enabled(self.kick_client) or self.health.is_in_backoff(PLATFORM_KICK):
            return False
        slugs = self.state.handles(PLATFORM_KICK)
        if not slugs:
            return False

        category_id = await self.ensure_kick_category_id()
        if category_id is _CATEGORY_LOOKUP_FAILED:
            return False

        pattern = self.keyword_pattern()
        discord_ids = self.state.discord_id_map(PLATFORM_KICK)
        changed = False
        had_error = False

        for group in chunk_list(slugs, KICK_MAX_BATCH_SIZE):
            try:
                records = await self.kick_client.fetch_live_records(group)
            except Exception as e:
                had_error = True
                self.health.record_failure(PLATFORM_KICK, e, "kick.fetch_live_records")
                break

            seen = set()
            for record in records:
                if record.handle in seen:
                    continue
                seen.add(record.handle)
                changed = await self._reconcile_record(record, discord_ids, pattern, category_id) or changed

            for slug in group:
                if slug not in seen:
                    deleted = await self._reconcile_offline(PLATFORM_KICK, slug, discord_ids.get(slug))
                    changed = deleted or changed

        # An unresolved category was recorded as a failure this cycle; keep that count
        if not had_error and category_id is not None:
            self.health.record_success(PLATFORM_KICK)
        return changed

    async def discover_kick(self) -> bool:
        if not _client_enabled(self.kick_client) or not self.discovery_enabled():
            return False
        if self.health.is_in_backoff(PLATFORM_KICK):
            return False

        category_id = await self.ensure_kick_category_id()
        if category_id is _CATEGORY_LOOKUP_FAILED or not category_id:
            return False

        limit = clamp_int(self.state.settings.get("discoveryKickLimit"), 1, KICK_DISCOVERY_MAX_LIMIT, KICK_DISCOVERY_MAX_LIMIT)
        try:
            records = await self.kick_client.fetch_live_records_by_category(category_id, limit, "started_at")
        except Exception as e:
            self.health.record_failure(PLATFORM_KICK, e, "kick.fetch_live_records_by_category")
            return False
        self.health.record_success(PLATFORM_KICK)

        return await self._discover_records(PLATFORM_KICK, records, None)

    # --- Twitch ---

    async def check_twitch(self) -> bool:
        if not _client_enabled(self.twitch_client) or self.health.is_in_backoff(PLATFORM_TWITCH):
            return False
        logins = self.state.handles(PLATFORM_TWITCH)
        if not logins:
            return False

        pattern = self.keyword_pattern()
        game_id = self.twitch_game_id() or None
        discord_ids = self.state.discord_id_map(PLATFORM_TWITCH)
        changed = False
        had_error = False

        for group in chunk_list(logins, TWITCH_MAX_BATCH_SIZE):
            try:
                # Helix only returns live streams, already filtered by game_id
                records = await self.twitch_client.fetch_live_records(group, game_id=game_id)
            except Exception as e:
                had_error = True
                self.health.record_failure(PLATFORM_TWITCH, e, "twitch.fetch_live_records")
                break

            live_by_login = {r.handle: r for r in records}
            for login in group:
                record = live_by_login.get(login)
                if record is None:
                    deleted = await self._reconcile_offline(PLATFORM_TWITCH, login, discord_ids.get(login))
                    changed = deleted or changed
                    continue
                changed = await self._reconcile_record(record, discord_ids, pattern, None) or changed

        if not had_error:
            self.health.record_success(PLATFORM_TWITCH)
        return changed

    async def discover_twitch(self) -> bool:
        if not _client_enabled(self.twitch_client) or not self.discovery_enabled():
            return False
        if self.health.is_in_backoff(PLATFORM_TWITCH):
            return False
        game_id = self.twitch_game_id()
        if not game_id:
            return False

        pages = clamp_int(self.state.settings.get("discoveryTwitchPages"), 1, TWITCH_DISCOVERY_MAX_PAGES, 5)
        cursor = None
        changed = False

        for _ in range(pages):
            try:
                records, cursor = await self.twitch_client.fetch_live_records_by_game(game_id, TWITCH_DISCOVERY_PAGE_SIZE, cursor)
            except Exception as e:
                self.health.record_failure(PLATFORM_TWITCH, e, "twitch.fetch_live_records_by_game")
                return changed
            changed = await self._discover_records(PLATFORM_TWITCH, records, None) or changed
            if not cursor:
                break

        self.health.record_success(PLATFORM_TWITCH)
        return changed

    async def _discover_records(self, platform, records, target_category_id) -> bool:
        """Only creates or keeps notifications; offline handling belongs to the maintained-list check."""
        pattern = self.keyword_pattern()
        discord_ids = self.state.discord_id_map(platform)
        changed = False
        for record in records:
            if not record.handle or not is_matching_broadcast(record, pattern, target_category_id):
                continue
            payload = build_notification_payload(record, discord_ids.get(record.handle), self._fallback_category_name(platform))
            created = await self._reconcile_live(platform, record.handle, record.session_key, payload)
            changed = created or changed
        return changed

    # --- tick ---

    async def _kick_cycle(self) -> bool:
        checked = await self.check_kick()
        discovered = await self.discover_kick()
        return checked or discovered

    async def _twitch_cycle(self) -> bool:
        checked = await self.check_twitch()
        discovered = await self.discover_twitch()
        return checked or discovered

    async def run_tick(self) -> dict:
        if self.tick_running:
            logger.debug("Tick: Previous tick still running. Skipping.")
            return {"changed": False}
        self.tick_running = True

        started_at = self._now()
        self.state.runtime["lastTickAt"] = started_at
        changed = False
        try:
            results = await asyncio.gather(self._kick_cycle(), self._twitch_cycle(), return_exceptions=True)
            for label, result in zip((PLATFORM_KICK, PLATFORM_TWITCH), results):
                if isinstance(result, Exception):
                    logger.error(f"Tick: Unexpected error in {label} cycle: {result}", exc_info=result)
                elif result:
                    changed = True
        except Exception as e:
            logger.error(f"Tick: Unexpected error: {e}", exc_info=True)
        finally:
            now = self._now()
            self.state.runtime["lastTickDurationMs"] = now - started_at

            health_dirty = self.health.consume_dirty()
            if changed or health_dirty or self.settings_dirty or now - self.last_save_at > FORCED_SAVE_INTERVAL_MS:
                try:
                    await asyncio.to_thread(self.store.save_snapshot, self.state.to_dict())
                    self.last_save_at = now
                except Exception as e:
                    logger.error(f"Tick: Failed to save state: {e}", exc_info=True)
            self.settings_dirty = False
            self.tick_running = False

        if changed:
            logger.info(f"Tick: Notifications changed ({self.state.runtime['lastTickDurationMs']} ms).")
        return {"changed": changed}

    # --- diagnosis ---

    async def kick_status(self, slug_raw):
        slug = normalize_name(slug_raw)
        if not slug:
            return False, "Usage: `k status <kickSlug>`"
        if not _client_enabled(self.kick_client):
            return False, "Kick API is not configured."

        category_id = await self.ensure_kick_category_id()
        if category_id is _CATEGORY_LOOKUP_FAILED:
            category_id = None
        settings_regex = self.state.settings.get("keywordRegex")
        pattern = self.keyword_pattern()

        try:
            records = await self.kick_client.fetch_live_records([slug])
        except Exception as e:
            return False, f"Kick API error: {e}"
        record = next((r for r in records if r.handle == slug), None)
        if record is None:
            return False, f"Kick channel not found for slug: {slug}"

        category_match = str(record.category_id) == str(category_id) if category_id else True
        keyword_match = bool(pattern.search(record.title))
        return True, (
            f"**Kick Status: {slug}**\n"
            f"Live: **{'YES' if record.is_live else 'NO'}**\n"
            f"Category: **{record.category_name or '?'}** (id: {record.category_id or '?'})\n"
            f"Category match ({self.kick_category_name() or '?'}): **{'YES' if category_match else 'NO'}**\n"
            f"Regex (`{settings_regex}`) match: **{'YES' if keyword_match else 'NO'}**\n"
            f"Title: {record.title or '(empty)'}\n"
            f"URL: {record.url}"
        )

    async def twitch_status(self, login_raw):
        login = normalize_name(login_raw)
        if not login:
            return False, "Usage: `t status <twitchLogin>`"
        if not _client_enabled(self.twitch_client):
            return False, "Twitch API is not configured."

        game_id = self.twitch_game_id()
        settings_regex = self.state.settings.get("keywordRegex")
        pattern = self.keyword_pattern()

        # No game filter here, so a streamer live in another category still shows up
        try:
            records = await self.twitch_client.fetch_live_records([login])
        except Exception as e:
            return False, f"Twitch API error: {e}"
        record = next((r for r in records if r.handle == login), None)
        if record is None or not record.is_live:
            return True, (
                f"**Twitch Status: {login}**\n"
                f"Live: **NO**\n"
                f"URL: https://twitch.tv/{login}"
            )

        category_match = str(record.category_id) == game_id if record.category_id else False
        keyword_match = bool(pattern.search(record.title))
        return True, (
            f"**Twitch Status: {login}**\n"
            f"Live: **YES** (id: {record.stream_id or '?'})\n"
            f"Category: **{record.category_name or '?'}** (game_id: {record.category_id or '?'})\n"
            f"Category match (expected {game_id or '?'}): **{'YES' if category_match else 'NO'}**\n"
            f"Regex (`{settings_regex}`) match: **{'YES' if keyword_match else 'NO'}**\n"
            f"Title: {record.title or '(empty)'}\n"
            f"URL: {record.url}"
        )
