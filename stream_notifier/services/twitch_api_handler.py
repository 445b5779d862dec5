import logging

from stream_notifier.utils.constants import (
    TWITCH_OAUTH_URL, TWITCH_API_BASE_URL, TWITCH_MAX_BATCH_SIZE, TWITCH_DISCOVERY_PAGE_SIZE
)
from stream_notifier.utils.stream_matching import normalize_name
from .api_client_base import AppTokenAPIClient
from .live_record import twitch_record_from_stream

logger = logging.getLogger(__name__)


class TwitchClient(AppTokenAPIClient):
    """Minimal Twitch Helix client using an app access token."""

    platform_name = "Twitch"
    oauth_url = TWITCH_OAUTH_URL
    api_base_url = TWITCH_API_BASE_URL

    def _build_headers(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def fetch_live_records(self, logins, game_id=None):
        """
        Live streams for up to 100 logins. Helix omits offline channels from the response,
        and drops streams outside game_id when one is given.
        """
        chunk = [normalize_name(l) for l in (logins or [])][:TWITCH_MAX_BATCH_SIZE]
        chunk = [l for l in chunk if l]
        if not chunk:
            return []

        params = {"user_login": chunk}
        if game_id:
            params["game_id"] = str(game_id)

        payload = await self._get("/streams", params)
        records = [twitch_record_from_stream(st) for st in self._data_list(payload)]
        return [r for r in records if r.handle]

    async def fetch_live_records_by_game(self, game_id, page_size: int = TWITCH_DISCOVERY_PAGE_SIZE, cursor=None):
        """One page of live streams in a game. Returns (records, next_cursor_or_None)."""
        params = {"game_id": str(game_id), "first": int(page_size)}
        if cursor:
            params["after"] = cursor

        payload = await self._get("/streams", params)
        records = [twitch_record_from_stream(st) for st in self._data_list(payload)]
        next_cursor = None
        if isinstance(payload, dict):
            next_cursor = (payload.get("pagination") or {}).get("cursor") or None
        return [r for r in records if r.handle], next_cursor
