import logging

from stream_notifier.utils.constants import PLATFORM_DISPLAY_NAMES
from stream_notifier.utils.data_store import now_ms
from stream_notifier.utils.stream_matching import normalize_name

logger = logging.getLogger(__name__)


def build_notification_payload(record, discord_id=None, fallback_category_name: str = "") -> dict:
    return {
        "platform": record.platform,
        "platform_name": PLATFORM_DISPLAY_NAMES.get(record.platform, record.platform.title()),
        "handle": record.handle,
        "discord_id": discord_id,
        "title": record.title,
        "category_name": record.category_name or fallback_category_name,
        "url": record.url,
    }


class LiveMessageReconciler:
    """
    Keeps one notification message per live (platform, handle), keyed by session.

    The persisted ActiveMessageRecord is the source of truth for "already notified";
    an existence probe repairs it when the message was removed out of band. A record
    is only dropped after Discord confirms the message is gone, and the live role is
    only revoked at that point.
    """

    def __init__(self, state, notifier, role_manager, time_func=now_ms):
        self.state = state
        self.notifier = notifier
        self.role_manager = role_manager
        self._now = time_func

    def active_record(self, platform: str, handle: str):
        return self.state.active_messages(platform).get(normalize_name(handle))

    async def _sync_role(self, role_call, platform: str, handle: str, discord_id):
        # Role sync never blocks the notification itself
        try:
            await role_call(discord_id)
        except Exception as e:
            logger.error(f"Reconciler: Live role update failed for {platform}/{handle} ({discord_id}): {e}", exc_info=True)

    async def ensure_live_message(self, platform: str, handle: str, session_key: str, payload: dict) -> bool:
        """Returns True when a new notification was recorded."""
        handle = normalize_name(handle)
        active = self.state.active_messages(platform)
        prev = active.get(handle)

        discord_id = payload.get("discord_id")
        if discord_id:
            await self._sync_role(self.role_manager.grant_live_role, platform, handle, discord_id)

        if prev and prev.get("messageId") and prev.get("sessionKey") == session_key:
            if await self.notifier.notification_exists(prev["messageId"]):
                return False
            logger.info(f"Reconciler: {platform}/{handle} notification {prev['messageId']} is gone. Re-sending.")
            active.pop(handle, None)
            prev = None

        if prev and prev.get("messageId") and prev.get("sessionKey") != session_key:
            logger.info(
                f"Reconciler: {platform}/{handle} started a new session "
                f"({prev.get('sessionKey')!r} -> {session_key!r}). Replacing notification."
            )
            await self.notifier.delete_notification(prev["messageId"])

        message_id = await self.notifier.send_live_notification(payload)
        if not message_id:
            logger.warning(f"Reconciler: Could not send live notification for {platform}/{handle}. Will retry next tick.")
            return False

        active[handle] = {"messageId": str(message_id), "sessionKey": session_key, "createdAt": self._now()}
        logger.info(f"Reconciler: {platform}/{handle} is live. Notification {message_id} recorded.")
        return True

    async def ensure_offline_message_deleted(self, platform: str, handle: str, discord_id=None) -> bool:
        """Returns True when an active record was cleared."""
        handle = normalize_name(handle)
        active = self.state.active_messages(platform)
        prev = active.get(handle)
        if not prev or not prev.get("messageId"):
            return False

        deleted = await self.notifier.delete_notification(prev["messageId"])
        if not deleted:
            logger.warning(
                f"Reconciler: Could not delete notification {prev['messageId']} for {platform}/{handle}. "
                "Keeping it tracked and retrying next tick."
            )
            return False

        if discord_id:
            await self._sync_role(self.role_manager.revoke_live_role, platform, handle, discord_id)

        active.pop(handle, None)
        logger.info(f"Reconciler: {platform}/{handle} went offline. Notification {prev['messageId']} removed.")
        return True
