import json

from chatfeed.config.loader import (
    camel_to_snake,
    convert_keys,
    load_config,
    save_config,
    snake_to_camel,
)
from chatfeed.config.schema import Config


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "nope.json")

    assert config.chat.channel_name == "general"
    assert config.chat.page_size == 200
    assert config.feed.with_bots is False
    assert config.feed.chronological is True
    assert config.bots.script


def test_save_writes_camel_case_and_round_trips(tmp_path):
    path = tmp_path / "config.json"
    config = Config()
    config.chat.username = "alice"
    config.feed.with_bots = True

    save_config(config, path)
    raw = json.loads(path.read_text())

    assert raw["chat"]["pageSize"] == 200
    assert raw["bots"]["usernamePrefix"] == "bot-"
    assert raw["bots"]["script"][0]["offsetS"] == 1

    loaded = load_config(path)
    assert loaded.chat.username == "alice"
    assert loaded.feed.with_bots is True
    assert len(loaded.bots.script) == len(config.bots.script)


def test_legacy_keys_are_migrated(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "withBots": True,
        "chat": {"conversationId": "lobby"},
    }))

    config = load_config(path)

    assert config.feed.with_bots is True
    assert config.chat.channel_name == "lobby"


def test_invalid_json_falls_back(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(path).chat.channel_name == "general"


def test_invalid_values_fall_back(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"chat": {"pageSize": 0}}))

    assert load_config(path).chat.page_size == 200


def test_env_override(monkeypatch):
    monkeypatch.setenv("CHATFEED_FEED__WITH_BOTS", "true")
    monkeypatch.setenv("CHATFEED_CHAT__USERNAME", "envuser")

    config = Config()

    assert config.feed.with_bots is True
    assert config.chat.username == "envuser"


def test_key_helpers():
    assert camel_to_snake("usernamePrefix") == "username_prefix"
    assert snake_to_camel("default_anchor") == "defaultAnchor"


def test_key_helpers_leave_values_alone():
    data = {"script": [{"offsetS": 1, "body": "keep camelCase here"}]}

    assert camel_to_snake("offsetS") == "offset_s"
    assert snake_to_camel("offset_s") == "offsetS"
    assert camel_to_snake("username") == "username"
    assert convert_keys(data) == {"script": [{"offset_s": 1, "body": "keep camelCase here"}]}
