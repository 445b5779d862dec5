import logging

from stream_notifier.utils.constants import (
    KICK_OAUTH_URL, KICK_API_BASE_URL, KICK_MAX_BATCH_SIZE, KICK_DISCOVERY_MAX_LIMIT
)
from stream_notifier.utils.stream_matching import normalize_name
from .api_client_base import AppTokenAPIClient
from .live_record import kick_record_from_channel, kick_record_from_livestream

logger = logging.getLogger(__name__)


class KickClient(AppTokenAPIClient):
    """Minimal client for Kick's public API (https://docs.kick.com/)."""

    platform_name = "Kick"
    oauth_url = KICK_OAUTH_URL
    api_base_url = KICK_API_BASE_URL

    async def fetch_live_records(self, slugs):
        """
        Channel records for up to 50 slugs. Kick expects the multi query format
        (slug=a&slug=b), so params go out as a list of pairs.
        """
        chunk = [normalize_name(s) for s in (slugs or [])][:KICK_MAX_BATCH_SIZE]
        params = [("slug", s) for s in chunk if s]
        if not params:
            return []

        payload = await self._get("/channels", params)
        records = [kick_record_from_channel(ch) for ch in self._data_list(payload)]
        return [r for r in records if r.handle]

    async def search_categories(self, query: str, page: int = 1) -> list:
        payload = await self._get("/categories", {"q": query, "page": page})
        return self._data_list(payload)

    async def find_category_id_by_name(self, name: str):
        """Exact (case-insensitive) name match first, otherwise the top search result."""
        results = await self.search_categories(name, 1)
        target = normalize_name(name)

        for category in results:
            if isinstance(category, dict) and normalize_name(category.get("name")) == target and category.get("id"):
                return str(category["id"])

        if results and isinstance(results[0], dict) and results[0].get("id"):
            return str(results[0]["id"])
        return None

    async def fetch_live_records_by_category(self, category_id, limit: int = KICK_DISCOVERY_MAX_LIMIT, sort: str = "viewer_count"):
        limit = max(1, min(KICK_DISCOVERY_MAX_LIMIT, int(limit)))
        payload = await self._get("/livestreams", {
            "category_id": category_id,
            "limit": limit,
            "sort": sort,
        })
        records = [kick_record_from_livestream(lv) for lv in self._data_list(payload)]
        return [r for r in records if r.handle]
