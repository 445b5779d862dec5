from unittest.mock import MagicMock, patch

import pytest
import requests

from stream_notifier.services.kick_api_handler import KickClient
from stream_notifier.services.twitch_api_handler import TwitchClient
from stream_notifier.services.platform_errors import PlatformNotConfiguredError, TokenError


def fake_response(status=200, payload=None):
    response_obj = MagicMock()
    response_obj.status_code = status
    response_obj.json.return_value = payload
    if status >= 400:
        response_obj.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error", response=response_obj)
    else:
        response_obj.raise_for_status.return_value = None
    return response_obj


def token_response(token="tok-1", expires_in=3600):
    return fake_response(200, {"access_token": token, "expires_in": expires_in})


class FakeTime:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestAppToken:
    @pytest.mark.asyncio
    async def test_token_is_cached(self):
        client = TwitchClient("id", "secret", time_func=FakeTime())
        with patch("requests.post", return_value=token_response()) as post, \
             patch("requests.get", return_value=fake_response(200, {"data": []})) as get:
            await client.fetch_live_records(["a"])
            await client.fetch_live_records(["b"])

        assert post.call_count == 1
        assert get.call_count == 2
        assert post.call_args.kwargs["data"]["grant_type"] == "client_credentials"

    @pytest.mark.asyncio
    async def test_token_refreshed_thirty_seconds_before_expiry(self):
        clock = FakeTime()
        client = KickClient("id", "secret", time_func=clock)
        with patch("requests.post", side_effect=[token_response("tok-1"), token_response("tok-2")]) as post, \
             patch("requests.get", return_value=fake_response(200, {"data": []})) as get:
            await client.fetch_live_records(["a"])
            clock.now += 3600 - 29
            await client.fetch_live_records(["a"])

        assert post.call_count == 2
        assert get.call_args.kwargs["headers"]["Authorization"] == "Bearer tok-2"

    @pytest.mark.asyncio
    async def test_short_lived_token_gets_minimum_lifetime(self):
        clock = FakeTime()
        client = KickClient("id", "secret", time_func=clock)
        with patch("requests.post", return_value=token_response(expires_in=0)):
            await client._get_app_access_token()
        assert client.token_expires_at == clock.now + 60

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_token_and_retries_once(self):
        client = TwitchClient("id", "secret", time_func=FakeTime())
        responses = [fake_response(401), fake_response(200, {"data": []})]
        with patch("requests.post", side_effect=[token_response("tok-1"), token_response("tok-2")]) as post, \
             patch("requests.get", side_effect=responses) as get:
            records = await client.fetch_live_records(["a"])

        assert records == []
        assert post.call_count == 2
        assert get.call_count == 2
        assert get.call_args.kwargs["headers"]["Authorization"] == "Bearer tok-2"

    @pytest.mark.asyncio
    async def test_second_unauthorized_is_raised(self):
        client = TwitchClient("id", "secret", time_func=FakeTime())
        with patch("requests.post", side_effect=[token_response("tok-1"), token_response("tok-2")]), \
             patch("requests.get", side_effect=[fake_response(403), fake_response(403)]) as get:
            with pytest.raises(requests.exceptions.HTTPError):
                await client.fetch_live_records(["a"])
        assert get.call_count == 2

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(500)) as get:
            with pytest.raises(requests.exceptions.HTTPError):
                await client.fetch_live_records(["a"])
        assert get.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = KickClient("id", None)
        assert client.enabled is False
        with pytest.raises(PlatformNotConfiguredError):
            await client._get_app_access_token()

    @pytest.mark.asyncio
    async def test_token_response_without_access_token(self):
        client = KickClient("id", "secret")
        with patch("requests.post", return_value=fake_response(200, {"expires_in": 10})):
            with pytest.raises(TokenError):
                await client._get_app_access_token()


class TestKickClient:
    @pytest.mark.asyncio
    async def test_fetch_live_records_uses_repeated_slug_params(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        payload = {"data": [{
            "slug": "alpha", "stream_title": "NoxRP",
            "stream": {"is_live": True, "start_time": "2024-05-01T18:00:00Z"},
            "category": {"id": 15, "name": "Grand Theft Auto V"},
        }]}
        slugs = [f"s{i}" for i in range(60)]
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)) as get:
            records = await client.fetch_live_records(slugs)

        params = get.call_args.kwargs["params"]
        assert len(params) == 50
        assert params[0] == ("slug", "s0")
        assert get.call_args.args[0].endswith("/public/v1/channels")
        assert records[0].handle == "alpha"
        assert records[0].category_id == "15"

    @pytest.mark.asyncio
    async def test_empty_slug_list_makes_no_request(self):
        client = KickClient("id", "secret")
        with patch("requests.get") as get:
            assert await client.fetch_live_records(["", "  "]) == []
        get.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_category_prefers_exact_name(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        payload = {"data": [{"id": 1, "name": "GTA Online"}, {"id": 15, "name": "grand theft auto v"}]}
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)):
            assert await client.find_category_id_by_name("Grand Theft Auto V") == "15"

    @pytest.mark.asyncio
    async def test_find_category_falls_back_to_top_result(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        payload = {"data": [{"id": 7, "name": "Grand Theft Auto VI"}]}
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)):
            assert await client.find_category_id_by_name("Grand Theft Auto V") == "7"

    @pytest.mark.asyncio
    async def test_find_category_without_results(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, {"data": []})):
            assert await client.find_category_id_by_name("Nothing") is None

    @pytest.mark.asyncio
    async def test_livestreams_by_category(self):
        client = KickClient("id", "secret", time_func=FakeTime())
        payload = {"data": [{"slug": "found", "stream_title": "NoxRP", "started_at": "2024-05-01T18:00:00Z",
                             "category": {"id": 15}}]}
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)) as get:
            records = await client.fetch_live_records_by_category("15", 250, "started_at")

        assert get.call_args.kwargs["params"] == {"category_id": "15", "limit": 100, "sort": "started_at"}
        assert records[0].is_live is True


class TestTwitchClient:
    @pytest.mark.asyncio
    async def test_fetch_live_records_sends_client_id_and_game(self):
        client = TwitchClient("cid", "secret", time_func=FakeTime())
        payload = {"data": [{"id": "40001", "user_login": "beta", "type": "live", "title": "NoxRP", "game_id": "32982"}]}
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)) as get:
            records = await client.fetch_live_records(["Beta"], game_id=32982)

        kwargs = get.call_args.kwargs
        assert kwargs["headers"]["Client-Id"] == "cid"
        assert kwargs["params"] == {"user_login": ["beta"], "game_id": "32982"}
        assert records[0].session_key == "40001"

    @pytest.mark.asyncio
    async def test_fetch_by_game_returns_cursor(self):
        client = TwitchClient("cid", "secret", time_func=FakeTime())
        payload = {"data": [{"id": "1", "user_login": "a", "type": "live"}], "pagination": {"cursor": "abc"}}
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, payload)) as get:
            records, cursor = await client.fetch_live_records_by_game("32982", 100, "prev")

        assert get.call_args.kwargs["params"] == {"game_id": "32982", "first": 100, "after": "prev"}
        assert cursor == "abc"
        assert [r.handle for r in records] == ["a"]

    @pytest.mark.asyncio
    async def test_last_page_has_no_cursor(self):
        client = TwitchClient("cid", "secret", time_func=FakeTime())
        with patch("requests.post", return_value=token_response()), \
             patch("requests.get", return_value=fake_response(200, {"data": [], "pagination": {}})):
            records, cursor = await client.fetch_live_records_by_game("32982")
        assert records == []
        assert cursor is None
