from stream_notifier.services.live_record import (
    kick_record_from_channel, kick_record_from_livestream, twitch_record_from_stream
)
from stream_notifier.utils.stream_matching import (
    DEFAULT_KEYWORD_PATTERN, normalize_name, clamp_int, parse_on_off, compile_regex_or_fallback,
    validate_regex_pattern, derive_session_key, is_matching_broadcast, extract_discord_id,
    extract_channel_id, chunk_list
)

from conftest import kick_record


class TestSessionKeys:
    def test_start_time_is_used_verbatim(self):
        assert derive_session_key("2024-05-01T18:00:00Z", "NoxRP") == "2024-05-01T18:00:00Z"

    def test_empty_start_falls_back_to_title(self):
        assert derive_session_key("", "NoxRP day 3") == "live:NoxRP day 3"
        assert derive_session_key(None, "NoxRP day 3") == "live:NoxRP day 3"

    def test_zero_time_sentinel_falls_back_to_title(self):
        assert derive_session_key("0001-01-01T00:00:00Z", "NoxRP") == "live:NoxRP"

    def test_missing_title_still_yields_key(self):
        assert derive_session_key("", None) == "live:"

    def test_same_title_without_start_collides(self):
        # Two broadcasts with the same title and no start time are one session
        assert derive_session_key("", "NoxRP") == derive_session_key(None, "NoxRP")

    def test_kick_channel_record_uses_start_time(self):
        record = kick_record_from_channel({
            "slug": " SomeStreamer ",
            "stream_title": "NoxRP",
            "stream": {"is_live": True, "start_time": "2024-05-01T18:00:00Z"},
            "category": {"id": 15, "name": "Grand Theft Auto V"},
        })
        assert record.handle == "somestreamer"
        assert record.is_live is True
        assert record.category_id == "15"
        assert record.session_key == "2024-05-01T18:00:00Z"
        assert record.url == "https://kick.com/somestreamer"

    def test_kick_offline_channel_with_zero_start(self):
        record = kick_record_from_channel({
            "slug": "quiet",
            "stream_title": "resting",
            "stream": {"is_live": False, "start_time": "0001-01-01T00:00:00Z"},
        })
        assert record.is_live is False
        assert record.category_id is None
        assert record.session_key == "live:resting"

    def test_kick_livestream_record_is_live(self):
        record = kick_record_from_livestream({
            "slug": "found", "stream_title": "NoxRP", "started_at": "2024-05-01T19:00:00Z",
            "category": {"id": "15"},
        })
        assert record.is_live is True
        assert record.session_key == "2024-05-01T19:00:00Z"

    def test_twitch_record_uses_stream_id(self):
        record = twitch_record_from_stream({
            "id": "40001", "user_login": "Streamer", "type": "live", "title": "NoxRP",
            "game_id": "32982", "game_name": "Grand Theft Auto V", "started_at": "2024-05-01T18:00:00Z",
        })
        assert record.handle == "streamer"
        assert record.is_live is True
        assert record.session_key == "40001"
        assert record.url == "https://twitch.tv/streamer"

    def test_twitch_record_with_error_type_is_not_live(self):
        record = twitch_record_from_stream({"id": "1", "user_login": "x", "type": ""})
        assert record.is_live is False


class TestMatching:
    def test_live_title_and_category_match(self):
        assert is_matching_broadcast(kick_record("a"), DEFAULT_KEYWORD_PATTERN, "15")

    def test_offline_never_matches(self):
        assert not is_matching_broadcast(kick_record("a", live=False), DEFAULT_KEYWORD_PATTERN, None)

    def test_category_mismatch(self):
        assert not is_matching_broadcast(kick_record("a", category_id="99"), DEFAULT_KEYWORD_PATTERN, "15")

    def test_no_target_category_skips_category_check(self):
        assert is_matching_broadcast(kick_record("a", category_id=None), DEFAULT_KEYWORD_PATTERN, None)

    def test_keyword_is_case_insensitive_and_spacing_tolerant(self):
        assert is_matching_broadcast(kick_record("a", title="playing NOX   rp tonight"), DEFAULT_KEYWORD_PATTERN, None)
        assert not is_matching_broadcast(kick_record("a", title="just chatting"), DEFAULT_KEYWORD_PATTERN, None)

    def test_invalid_regex_falls_back_to_default(self):
        assert compile_regex_or_fallback("(unclosed") is DEFAULT_KEYWORD_PATTERN
        assert compile_regex_or_fallback("") is DEFAULT_KEYWORD_PATTERN
        assert compile_regex_or_fallback("a" * 201) is DEFAULT_KEYWORD_PATTERN

    def test_custom_regex_compiles_case_insensitive(self):
        assert compile_regex_or_fallback("eclipse").search("ECLIPSE RP")

    def test_validate_regex_pattern(self):
        assert validate_regex_pattern("nox\\s*rp") == (True, None)
        ok, error = validate_regex_pattern("[")
        assert not ok and error.startswith("Invalid regex")
        ok, error = validate_regex_pattern("   ")
        assert not ok and "empty" in error
        ok, error = validate_regex_pattern("x" * 201)
        assert not ok and "too long" in error


class TestArgumentParsing:
    def test_normalize_name(self):
        assert normalize_name("  SomeOne ") == "someone"
        assert normalize_name(None) == ""

    def test_clamp_int(self):
        assert clamp_int("7", 1, 5, 3) == 5
        assert clamp_int(-4, 1, 5, 3) == 1
        assert clamp_int("abc", 1, 5, 3) == 3
        assert clamp_int(None, 1, 5, 3) == 3

    def test_parse_on_off(self):
        assert parse_on_off("ON") is True
        assert parse_on_off("disable") is False
        assert parse_on_off("maybe") is None

    def test_extract_discord_id_from_mention(self):
        assert extract_discord_id("<@!123456789012345678>", []) == "123456789012345678"
        assert extract_discord_id("<@123456789012345678>") == "123456789012345678"

    def test_extract_discord_id_from_raw_argument(self):
        assert extract_discord_id("123456789012345678", ["123456789012345678"]) == "123456789012345678"

    def test_extract_discord_id_rejects_garbage(self):
        assert extract_discord_id("@someone", ["@someone", "42"]) is None

    def test_extract_channel_id(self):
        assert extract_channel_id("<#223456789012345678>") == "223456789012345678"
        assert extract_channel_id("223456789012345678") == "223456789012345678"
        assert extract_channel_id("this", 323456789012345678) == "323456789012345678"
        assert extract_channel_id("#general") is None
        assert extract_channel_id(None) is None

    def test_chunk_list(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk_list([], 50) == []
