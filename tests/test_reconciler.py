from dataclasses import replace

import pytest

from stream_notifier.services.reconciler import build_notification_payload

from conftest import kick_record, twitch_record


def payload_for(record, discord_id=None):
    return build_notification_payload(record, discord_id)


class TestNotificationPayload:
    def test_payload_fields(self):
        payload = build_notification_payload(twitch_record("streamer"), "123456789012345678")
        assert payload == {
            "platform": "twitch",
            "platform_name": "Twitch",
            "handle": "streamer",
            "discord_id": "123456789012345678",
            "title": "NoxRP | day 12",
            "category_name": "Grand Theft Auto V",
            "url": "https://twitch.tv/streamer",
        }

    def test_missing_category_name_uses_fallback(self):
        record = replace(kick_record("a"), category_name="")
        assert build_notification_payload(record, None, "GTA V")["category_name"] == "GTA V"


class TestEnsureLiveMessage:
    @pytest.mark.asyncio
    async def test_new_broadcast_is_announced(self, state, notifier, role_manager, reconciler, clock):
        record = kick_record("alpha")
        created = await reconciler.ensure_live_message("kick", "Alpha", record.session_key, payload_for(record, "111111111111111111"))

        assert created is True
        assert len(notifier.sent) == 1
        assert role_manager.granted == ["111111111111111111"]
        active = state.active_messages("kick")["alpha"]
        assert active == {"messageId": "1001", "sessionKey": record.session_key, "createdAt": clock.now}

    @pytest.mark.asyncio
    async def test_same_session_is_not_announced_twice(self, notifier, reconciler):
        record = kick_record("alpha")
        await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))
        created = await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))

        assert created is False
        assert len(notifier.sent) == 1
        assert notifier.deleted == []

    @pytest.mark.asyncio
    async def test_manually_deleted_message_is_resent(self, state, notifier, reconciler):
        record = kick_record("alpha")
        await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))
        notifier.existing.clear()

        created = await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))

        assert created is True
        assert len(notifier.sent) == 2
        assert state.active_messages("kick")["alpha"]["messageId"] == "1002"

    @pytest.mark.asyncio
    async def test_new_session_replaces_old_message(self, state, notifier, reconciler):
        first = twitch_record("beta", stream_id="1")
        second = twitch_record("beta", stream_id="2")
        await reconciler.ensure_live_message("twitch", "beta", first.session_key, payload_for(first))
        created = await reconciler.ensure_live_message("twitch", "beta", second.session_key, payload_for(second))

        assert created is True
        assert notifier.deleted == ["1001"]
        assert state.active_messages("twitch")["beta"] == {
            "messageId": "1002", "sessionKey": "2", "createdAt": state.active_messages("twitch")["beta"]["createdAt"],
        }

    @pytest.mark.asyncio
    async def test_new_session_sends_even_when_old_delete_fails(self, state, notifier, reconciler):
        first = twitch_record("beta", stream_id="1")
        second = twitch_record("beta", stream_id="2")
        await reconciler.ensure_live_message("twitch", "beta", first.session_key, payload_for(first))
        notifier.fail_delete.add("1001")

        created = await reconciler.ensure_live_message("twitch", "beta", second.session_key, payload_for(second))

        assert created is True
        assert state.active_messages("twitch")["beta"]["sessionKey"] == "2"

    @pytest.mark.asyncio
    async def test_failed_send_leaves_no_record(self, state, notifier, reconciler):
        notifier.fail_send = True
        record = kick_record("alpha")
        created = await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))

        assert created is False
        assert "alpha" not in state.active_messages("kick")

    @pytest.mark.asyncio
    async def test_no_role_grant_without_discord_id(self, role_manager, reconciler):
        record = kick_record("alpha")
        await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record))
        assert role_manager.granted == []


class TestEnsureOfflineMessageDeleted:
    @pytest.mark.asyncio
    async def test_offline_deletes_message_and_revokes_role(self, state, notifier, role_manager, reconciler):
        record = kick_record("alpha")
        await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record, "111111111111111111"))

        cleared = await reconciler.ensure_offline_message_deleted("kick", "ALPHA", "111111111111111111")

        assert cleared is True
        assert notifier.deleted == ["1001"]
        assert role_manager.revoked == ["111111111111111111"]
        assert "alpha" not in state.active_messages("kick")

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_record_and_role(self, state, notifier, role_manager, reconciler):
        record = kick_record("alpha")
        await reconciler.ensure_live_message("kick", "alpha", record.session_key, payload_for(record, "111111111111111111"))
        notifier.fail_delete.add("1001")

        cleared = await reconciler.ensure_offline_message_deleted("kick", "alpha", "111111111111111111")

        assert cleared is False
        assert role_manager.revoked == []
        assert state.active_messages("kick")["alpha"]["messageId"] == "1001"

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, notifier, reconciler):
        assert await reconciler.ensure_offline_message_deleted("twitch", "nobody") is False
        assert notifier.deleted == []
