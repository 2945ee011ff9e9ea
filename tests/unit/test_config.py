"""Tests for configuration resolution."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from parley.config import (
    DEFAULT_MODEL,
    ConfigFlags,
    ConfigLoadError,
    EffectiveConfig,
    dump_config,
    load_config_file,
    parse_config,
    resolve_config,
    write_default_config,
)


def _write_config(path: Path, data: dict, name: str = "config.json") -> Path:
    config_file = path / name
    config_file.write_text(json.dumps(data))
    return config_file


def _resolve(tmp_path: Path, flags: ConfigFlags | None = None, config_path: Path | None = None, environ=None):
    return resolve_config(
        flags,
        config_path,
        environ=environ if environ is not None else {},
        default_path=tmp_path / "config.json",
    )


class TestPrecedence:
    @pytest.mark.parametrize(
        ("flag", "file", "env", "expected"),
        [
            ("flag-key", "file-key", "env-key", "flag-key"),
            ("", "file-key", "env-key", "file-key"),
            ("", "", "env-key", "env-key"),
            ("", "", "", ""),
            ("flag-key", "", "env-key", "flag-key"),
            ("flag-key", "", "", "flag-key"),
        ],
    )
    def test_openai_api_key(self, tmp_path: Path, flag: str, file: str, env: str, expected: str) -> None:
        cfg_file = _write_config(tmp_path, {"openai": {"api_key": file}})
        environ = {"OPENAI_API_KEY": env} if env else {}
        config = _resolve(tmp_path, ConfigFlags(openai_api_key=flag), cfg_file, environ)
        assert config.openai.api_key == expected

    def test_anthropic_env_fills_missing_key(self, tmp_path: Path) -> None:
        config = _resolve(tmp_path, environ={"ANTHROPIC_API_KEY": "sk-ant"})
        assert config.anthropic.api_key == "sk-ant"

    def test_google_prefers_google_api_key(self, tmp_path: Path) -> None:
        config = _resolve(tmp_path, environ={"GOOGLE_API_KEY": "g-key", "GEMINI_API_KEY": "gem-key"})
        assert config.google.api_key == "g-key"

    def test_google_falls_back_to_gemini_key(self, tmp_path: Path) -> None:
        config = _resolve(tmp_path, environ={"GEMINI_API_KEY": "gem-key"})
        assert config.google.api_key == "gem-key"

    def test_google_flag_beats_env(self, tmp_path: Path) -> None:
        config = _resolve(tmp_path, ConfigFlags(google_api_key="flag"), environ={"GEMINI_API_KEY": "gem-key"})
        assert config.google.api_key == "flag"

    def test_model_flag_overrides_file(self, tmp_path: Path) -> None:
        cfg_file = _write_config(tmp_path, {"model": "openai:gpt-4o"})
        config = _resolve(tmp_path, ConfigFlags(model="ollama:qwen2.5:3b"), cfg_file)
        assert config.model == "ollama:qwen2.5:3b"

    def test_empty_flag_never_clears_file_value(self, tmp_path: Path) -> None:
        cfg_file = _write_config(
            tmp_path,
            {"model": "openai:gpt-4o", "message_window": 8, "openai": {"base_url": "http://proxy/v1"}},
        )
        config = _resolve(tmp_path, ConfigFlags(model="", message_window=0, openai_url=""), cfg_file)
        assert config.model == "openai:gpt-4o"
        assert config.message_window == 8
        assert config.openai.base_url == "http://proxy/v1"

    def test_url_flags(self, tmp_path: Path) -> None:
        flags = ConfigFlags(openai_url="http://o/v1", anthropic_url="http://a/v1")
        config = _resolve(tmp_path, flags)
        assert config.openai.base_url == "http://o/v1"
        assert config.anthropic.base_url == "http://a/v1"

    def test_debug_flag_only_turns_debug_on(self, tmp_path: Path) -> None:
        cfg_file = _write_config(tmp_path, {"debug_mode": True})
        assert _resolve(tmp_path, ConfigFlags(debug=False), cfg_file).debug_mode is True
        assert _resolve(tmp_path, ConfigFlags(debug=True)).debug_mode is True


class TestDefaults:
    def test_empty_base_gets_default_model(self, tmp_path: Path) -> None:
        config = _resolve(tmp_path)
        assert config.model == DEFAULT_MODEL
        assert config.message_window == 0
        assert config.tool_servers == {}

    def test_no_default_file_is_not_created(self, tmp_path: Path) -> None:
        _resolve(tmp_path)
        assert not (tmp_path / "config.json").exists()

    def test_default_location_is_used(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"model": "openai:gpt-4o"})
        assert _resolve(tmp_path).model == "openai:gpt-4o"

    def test_missing_explicit_path_is_created(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "nested" / "parley.json"
        config = _resolve(tmp_path, config_path=cfg_file)
        assert cfg_file.exists()
        assert config.model == DEFAULT_MODEL
        assert json.loads(cfg_file.read_text())["model"] == DEFAULT_MODEL

    def test_created_file_round_trips_to_empty_base(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "created.json"
        created = _resolve(tmp_path, config_path=cfg_file)
        reloaded = _resolve(tmp_path, config_path=cfg_file)
        assert reloaded == created == _resolve(tmp_path)

    def test_created_yaml_file(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.yaml"
        write_default_config(cfg_file)
        assert yaml.safe_load(cfg_file.read_text())["model"] == DEFAULT_MODEL
        assert load_config_file(cfg_file).model == DEFAULT_MODEL


class TestLoadErrors:
    def test_malformed_json_raises(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.json"
        cfg_file.write_text("{not json")
        with pytest.raises(ConfigLoadError, match="cannot parse"):
            _resolve(tmp_path, config_path=cfg_file)

    def test_malformed_default_location_raises(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text("[1, 2")
        with pytest.raises(ConfigLoadError):
            _resolve(tmp_path)

    def test_top_level_must_be_object(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.json"
        cfg_file.write_text("[1, 2]")
        with pytest.raises(ConfigLoadError, match="object at the top level"):
            load_config_file(cfg_file)

    def test_negative_window_rejected(self) -> None:
        with pytest.raises(ConfigLoadError, match="message_window"):
            parse_config({"message_window": -1})

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(ConfigLoadError, match="model"):
            parse_config({"model": 42})

    @pytest.mark.parametrize("value", ["false", "0", 1, "yes"])
    def test_debug_mode_must_be_boolean(self, value) -> None:
        with pytest.raises(ConfigLoadError, match="debug_mode"):
            parse_config({"debug_mode": value})

    def test_debug_mode_from_yaml(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("debug_mode: false\n")
        assert load_config_file(cfg_file).debug_mode is False
        cfg_file.write_text('debug_mode: "false"\n')
        with pytest.raises(ConfigLoadError, match="debug_mode"):
            load_config_file(cfg_file)

    def test_server_needs_command_or_url(self) -> None:
        with pytest.raises(ConfigLoadError, match="either 'command' or 'url'"):
            parse_config({"mcpServers": {"empty": {}}})


class TestToolServers:
    def test_stdio_and_sse_servers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARLEY_TEST_TOKEN", "secret")
        config = parse_config(
            {
                "mcpServers": {
                    "files": {
                        "command": "npx",
                        "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
                        "env": {"TOKEN": "$PARLEY_TEST_TOKEN"},
                    },
                    "remote": {
                        "url": "https://mcp.example.com/sse",
                        "headers": ["Authorization: Bearer abc"],
                        "interface": "memory",
                    },
                }
            }
        )
        files = config.tool_servers["files"]
        assert files.transport == "stdio"
        assert files.args == ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
        assert files.env == {"TOKEN": "secret"}
        remote = config.tool_servers["remote"]
        assert remote.transport == "sse"
        assert remote.headers == ["Authorization: Bearer abc"]
        assert remote.interface == "memory"

    def test_dump_parse_round_trip(self) -> None:
        raw = {
            "model": "openai:gpt-4o",
            "system_instruction": "Be brief.",
            "openai": {"api_key": "sk", "base_url": "", "default_model": "gpt-4o"},
            "mcpServers": {"s": {"url": "http://x/sse", "headers": []}},
        }
        config = parse_config(raw)
        assert parse_config(dump_config(config)) == config

    def test_yaml_file(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.yml"
        cfg_file.write_text(yaml.dump({"model": "google:gemini-2.0-flash", "message_window": 4}))
        config = load_config_file(cfg_file)
        assert config.model == "google:gemini-2.0-flash"
        assert config.message_window == 4

    def test_provider_lookup(self) -> None:
        config = EffectiveConfig()
        assert config.provider("ollama") is config.ollama
        with pytest.raises(KeyError):
            config.provider("mistral")
