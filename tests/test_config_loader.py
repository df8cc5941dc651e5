from __future__ import annotations

import json
from pathlib import Path

from core.config_loader import ConfigLoader, load_config
from shared.config.system import load_system_config


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "system.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_defaults_when_config_missing(tmp_path: Path) -> None:
    config = load_config(config_path=tmp_path / "absent.json", environ={})

    assert config.api.port == 4100
    assert config.buffer.max_regular_messages == 200
    assert config.query.max_page_size == 500
    assert config.ingestion.live_id is None
    assert config.ingestion.mock_enabled is True
    assert config.overlay.heartbeat_seconds == 15.0


def test_bundled_config_is_schema_valid() -> None:
    loader = ConfigLoader(environ={})
    payload = json.loads(ConfigLoader.CONFIG_PATH.read_text(encoding="utf-8"))

    assert loader.validate(payload) == []


def test_file_values_are_applied(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {
            "api": {"port": 5000, "allow_origins": ["https://studio.example"]},
            "buffer": {"max_regular_messages": 50},
            "ingestion": {"live_id": "abcdefghijk", "mock_enabled": False},
        },
    )

    config = load_config(config_path=path, environ={})

    assert config.api.port == 5000
    assert config.api.allow_origins == ["https://studio.example"]
    assert config.buffer.max_regular_messages == 50
    assert config.ingestion.live_id == "abcdefghijk"
    assert config.ingestion.mock_enabled is False


def test_schema_violations_are_reported_but_not_fatal(tmp_path: Path) -> None:
    payload = {"buffer": {"max_regular_messages": "lots"}, "api": {"port": 0}}
    path = _write(tmp_path, payload)
    loader = ConfigLoader(config_path=path, environ={})

    messages = loader.validate(payload)
    config = loader.load()

    assert any(message.startswith("buffer/max_regular_messages") for message in messages)
    assert any(message.startswith("api/port") for message in messages)
    assert config.buffer.max_regular_messages == 200
    assert config.api.port == 4100


def test_environment_overrides_win(tmp_path: Path) -> None:
    path = _write(tmp_path, {"api": {"port": 5000}})
    env = {
        "PORT": "6000",
        "HOST": "127.0.0.1",
        "YOUTUBE_LIVE_ID": " https://youtu.be/abcdefghijk ",
        "CHAT_MAX_REGULAR_MESSAGES": "25",
        "CHAT_MOCK_ENABLED": "false",
    }

    config = load_config(config_path=path, environ=env)

    assert config.api.port == 6000
    assert config.api.host == "127.0.0.1"
    assert config.ingestion.live_id == "https://youtu.be/abcdefghijk"
    assert config.buffer.max_regular_messages == 25
    assert config.ingestion.mock_enabled is False


def test_invalid_environment_values_are_ignored(tmp_path: Path) -> None:
    env = {"PORT": "eighty", "CHAT_MAX_REGULAR_MESSAGES": "-4"}

    config = load_config(config_path=tmp_path / "absent.json", environ=env)

    assert config.api.port == 4100
    assert config.buffer.max_regular_messages == 200


def test_query_default_page_clamped_to_max() -> None:
    config = load_system_config({"query": {"default_page_size": 900, "max_page_size": 300}})

    assert config.query.default_page_size == 300
    assert config.query.max_page_size == 300
