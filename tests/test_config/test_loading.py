from pathlib import Path

import pytest

import harmony_agent.config as config_module
from harmony_agent.config import Config
from harmony_agent.exceptions import ConfigurationError


def test_defaults_match_agent_contract(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.agent.max_turns == 4
    assert cfg.agent.chunk_size == 80
    assert cfg.agent.chunk_delay_ms == 8
    assert cfg.agent.max_tool_result_length == 8000
    assert cfg.mcp.server_wait_ms == 7000
    assert cfg.mcp.server_wait_interval_ms == 500
    assert cfg.mcp.enable_stdio is False
    assert cfg.upstream.use_responses_api is False


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("upstream:\n  model: from-home\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "upstream:\n"
            "  model: gpt-oss-20b\n"
            "  responses_url: http://localhost:3000/v1/\n"
            "  streaming_mode: native\n"
            "mcp:\n"
            "  default_servers:\n"
            "    - name: exa\n"
            "      url: https://mcp.example.com/mcp\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.upstream.model == "gpt-oss-20b"
    assert cfg.upstream.use_responses_api is True
    assert cfg.upstream.endpoint == "http://localhost:3000/v1"
    assert cfg.upstream.streaming_mode == "native"
    assert cfg.mcp.default_servers == [{"name": "exa", "url": "https://mcp.example.com/mcp"}]


def test_env_vars_fill_unset_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("HARMONY_AGENT__MAX_TURNS", "7")
    monkeypatch.setenv("HARMONY_UPSTREAM__API_KEY", "sk-env")

    cfg = Config.load()

    assert cfg.agent.max_turns == 7
    assert cfg.upstream.api_key == "sk-env"


def test_non_mapping_yaml_is_rejected(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        Config.from_yaml(path)


def test_yaml_syntax_error_is_a_configuration_error(tmp_path: Path):
    path = tmp_path / "broken.yaml"
    path.write_text("upstream: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not valid YAML"):
        Config.from_yaml(path)


def test_invalid_value_is_a_configuration_error(tmp_path: Path):
    path = tmp_path / "typo.yaml"
    path.write_text("agent:\n  max_turns: lots\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="max_turns"):
        Config.from_yaml(path)


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.server.port = 9123
    path = tmp_path / "out" / "config.yaml"

    cfg.save(path)

    assert Config.from_yaml(path).server.port == 9123
