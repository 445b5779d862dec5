import json
import logging

import pytest

from stream_notifier import config_manager
from stream_notifier.services.service_manager import seed_settings_from_config, persist_state
from stream_notifier.utils.data_store import JsonDataStore, NotifierState


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    monkeypatch.setattr(config_manager, "CONFIG_FILE", str(path))
    return path


@pytest.fixture
def restore_globals(monkeypatch):
    names = [n for n in vars(config_manager) if n.isupper()]
    names += ["kick_client", "twitch_client", "tick_orchestrator", "role_manager", "config_data", "owner_id_from_config"]
    for name in names:
        monkeypatch.setattr(config_manager, name, getattr(config_manager, name))
    root_logger = logging.getLogger()
    level = root_logger.level
    yield
    root_logger.setLevel(level)


class TestLoadConfig:
    def test_valid_config(self, config_file):
        config_file.write_text(json.dumps({"DISCORD_TOKEN": "abc"}), encoding="utf-8")
        ok, data = config_manager.load_config(initial_load=False)
        assert ok is True
        assert data == {"DISCORD_TOKEN": "abc"}

    def test_placeholder_token_is_rejected(self, config_file):
        config_file.write_text(json.dumps({"DISCORD_TOKEN": "YOUR_DISCORD_BOT_TOKEN"}), encoding="utf-8")
        ok, message = config_manager.load_config(initial_load=False)
        assert ok is False
        assert "DISCORD_TOKEN" in message

    def test_missing_file(self, config_file):
        ok, message = config_manager.load_config(initial_load=False)
        assert ok is False
        assert "not found" in message

    def test_broken_json(self, config_file):
        config_file.write_text("{nope", encoding="utf-8")
        ok, message = config_manager.load_config(initial_load=False)
        assert ok is False
        assert "JSON" in message

    def test_initial_load_exits_on_error(self, config_file):
        with pytest.raises(SystemExit):
            config_manager.load_config(initial_load=True)


class TestApplyConfig:
    def test_values_are_coerced(self, restore_globals):
        config_manager.apply_config_globally({
            "DISCORD_TOKEN": "abc",
            "COMMAND_PREFIX": "!",
            "MENTION_HERE": "off",
            "DISCOVERY_MODE": "true",
            "ALLOWED_ROLE_IDS": "1, 2 ,",
            "STREAMER_LIVE_ROLE_ID": 12345,
            "LOG_LEVEL": "debug",
        })
        assert config_manager.COMMAND_PREFIX == "!"
        assert config_manager.MENTION_HERE is False
        assert config_manager.DISCOVERY_MODE is True
        assert config_manager.ALLOWED_ROLE_IDS == ["1", "2"]
        assert config_manager.STREAMER_LIVE_ROLE_ID == "12345"
        assert config_manager.LOG_LEVEL == "DEBUG"

    def test_platform_clients_follow_credentials(self, restore_globals):
        config_manager.kick_client = None
        config_manager.twitch_client = None
        config_manager.apply_config_globally({"KICK_CLIENT_ID": "k", "KICK_CLIENT_SECRET": "ks"})
        kick = config_manager.kick_client
        assert kick is not None and kick.client_id == "k"
        assert config_manager.twitch_client is None

        config_manager.apply_config_globally({"KICK_CLIENT_ID": "k", "KICK_CLIENT_SECRET": "ks"})
        assert config_manager.kick_client is kick

        config_manager.apply_config_globally({"KICK_CLIENT_ID": "k", "KICK_CLIENT_SECRET": "new"})
        assert config_manager.kick_client is not kick

        config_manager.apply_config_globally({})
        assert config_manager.kick_client is None

    def test_settings_values_only_include_present_keys(self, restore_globals):
        source = {"KEYWORD_REGEX": "eclipse", "TWITCH_GAME_ID": 123}
        config_manager.apply_config_globally(source)
        assert config_manager.config_settings_values(source) == {"keywordRegex": "eclipse", "twitchGameId": "123"}


class TestSeedSettings:
    def test_fills_only_empty_values(self):
        state = NotifierState()
        state.settings["notifyChannelId"] = None
        state.settings["keywordRegex"] = "stored"

        changed = seed_settings_from_config(state, {"notifyChannelId": "5", "keywordRegex": "from-config"})

        assert changed is True
        assert state.settings["notifyChannelId"] == "5"
        assert state.settings["keywordRegex"] == "stored"

    def test_overwrite(self):
        state = NotifierState()
        state.settings["keywordRegex"] = "stored"
        assert seed_settings_from_config(state, {"keywordRegex": "from-config"}, overwrite=True) is True
        assert state.settings["keywordRegex"] == "from-config"

    def test_no_change(self):
        state = NotifierState()
        assert seed_settings_from_config(state, {"mentionHere": True}, overwrite=True) is False

    def test_new_kick_category_clears_cached_id(self):
        state = NotifierState()
        state.settings.update({"kickCategoryId": "15", "kickCategoryResolvedAt": 99})
        seed_settings_from_config(state, {"kickCategoryName": "Just Chatting"}, overwrite=True)
        assert state.settings["kickCategoryId"] is None
        assert state.settings["kickCategoryResolvedAt"] == 0


class TestPersistState:
    @pytest.mark.asyncio
    async def test_without_runtime_nothing_is_saved(self, monkeypatch):
        monkeypatch.setattr(config_manager, "data_store", None)
        monkeypatch.setattr(config_manager, "notifier_state", None)
        assert await persist_state() is False

    @pytest.mark.asyncio
    async def test_saves_shared_state(self, monkeypatch, tmp_path):
        store = JsonDataStore(str(tmp_path / "data.json"))
        monkeypatch.setattr(config_manager, "data_store", store)
        monkeypatch.setattr(config_manager, "notifier_state", NotifierState())
        assert await persist_state() is True
        assert (tmp_path / "data.json").exists()


class TestLiveRoleId:
    def test_numeric_role_id_is_kept(self, restore_globals):
        config_manager.apply_config_globally({"STREAMER_LIVE_ROLE_ID": " 999 "})
        assert config_manager.STREAMER_LIVE_ROLE_ID == "999"

    def test_pasted_role_mention_is_ignored(self, restore_globals):
        config_manager.apply_config_globally({"STREAMER_LIVE_ROLE_ID": "<@&999>"})
        assert config_manager.STREAMER_LIVE_ROLE_ID is None
