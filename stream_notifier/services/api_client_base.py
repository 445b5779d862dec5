import asyncio
import logging
import time

import requests

from stream_notifier.utils.constants import (
    API_REQUEST_TIMEOUT_SECONDS, TOKEN_REFRESH_MARGIN_SECONDS, TOKEN_MIN_LIFETIME_SECONDS
)
from .platform_errors import PlatformNotConfiguredError, TokenError

logger = logging.getLogger(__name__)

AUTH_RETRY_STATUSES = (401, 403)


class AppTokenAPIClient:
    """
    Shared client-credentials plumbing for the Kick and Twitch clients.

    The app token is cached and refreshed 30s before it expires. A 401/403 on a request
    drops the token, fetches a new one and retries exactly once. Every other HTTP or
    network error is raised to the caller; retry policy lives in the health tracker.
    """

    platform_name = "API"
    oauth_url = None
    api_base_url = None

    def __init__(self, client_id, client_secret, time_func=time.time):
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_token = None
        self.token_expires_at = 0.0
        self._time = time_func

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _log_api_error(self, e, context_msg):
        logger.error(f"{self.platform_name} API: {context_msg}: {e}")
        response_obj = getattr(e, 'response', None)
        if response_obj is not None and hasattr(response_obj, 'text'):
            logger.debug(f"{self.platform_name} API: Response content: {response_obj.text}")

    def invalidate_token(self):
        self.access_token = None
        self.token_expires_at = 0.0

    def _build_headers(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    async def _get_app_access_token(self) -> str:
        if not self.enabled:
            raise PlatformNotConfiguredError(
                f"{self.platform_name} is not configured (missing client id/secret)."
            )

        now = self._time()
        if self.access_token and now < self.token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self.access_token

        logger.info(f"{self.platform_name} API: Fetching/refreshing app access token...")
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        response_obj = await asyncio.to_thread(
            requests.post,
            self.oauth_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=API_REQUEST_TIMEOUT_SECONDS,
        )
        response_obj.raise_for_status()
        try:
            payload = response_obj.json()
        except ValueError as e:
            raise TokenError(f"{self.platform_name} token response is not JSON: {e}") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise TokenError(f"{self.platform_name} token response missing access_token")

        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        self.access_token = token
        self.token_expires_at = self._time() + max(TOKEN_MIN_LIFETIME_SECONDS, expires_in)
        logger.info(f"{self.platform_name} API: Obtained app access token.")
        return token

    async def _do_get(self, path: str, params, token: str):
        response_obj = await asyncio.to_thread(
            requests.get,
            f"{self.api_base_url}{path}",
            params=params,
            headers=self._build_headers(token),
            timeout=API_REQUEST_TIMEOUT_SECONDS,
        )
        response_obj.raise_for_status()
        return response_obj.json()

    async def _get(self, path: str, params=None):
        token = await self._get_app_access_token()
        try:
            return await self._do_get(path, params, token)
        except requests.exceptions.HTTPError as http_err:
            status = http_err.response.status_code if http_err.response is not None else None
            if status not in AUTH_RETRY_STATUSES:
                raise
            logger.warning(
                f"{self.platform_name} API: Request to {path} returned {status}. Refreshing token and retrying once."
            )
            self.invalidate_token()
            token = await self._get_app_access_token()
            return await self._do_get(path, params, token)

    @staticmethod
    def _data_list(payload) -> list:
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return payload["data"]
        return []
