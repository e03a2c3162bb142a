import json
import logging

from fabric_core.config.settings import load_settings
from fabric_core.infrastructure.logging.logger import JsonFormatter


def test_model_alias_and_directories(monkeypatch, tmp_path):
    monkeypatch.setenv("FABRIC_MODEL", "claude-3-opus-20240229")
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    extra = tmp_path / "more"
    extra.mkdir()
    monkeypatch.setenv("EXTRA_DIR", str(extra))
    settings = load_settings(extra_patterns="$EXTRA_DIR;;/does/not/exist")
    assert settings.default_model == "claude-3-opus-20240229"
    assert settings.sessions_path == tmp_path / "sessions"
    assert settings.patterns_path == tmp_path / "patterns"
    assert settings.log_path == tmp_path / "logs"
    assert settings.extra_pattern_dirs == [extra]


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("MAX_TOKENS", "100")
    settings = load_settings(max_tokens=None, temperature=0.1, default_model="claude-2.1")
    assert settings.max_tokens == 100
    assert settings.temperature == 0.1
    assert settings.default_model == "claude-2.1"


def test_yaml_config_file(monkeypatch, tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("stream_buffer_size: 3\nanthropic_version: '2099-01-01'\n", encoding="utf-8")
    monkeypatch.setenv("FABRIC_CONFIG_FILE", str(cfg))
    monkeypatch.delenv("STREAM_BUFFER_SIZE", raising=False)
    monkeypatch.delenv("ANTHROPIC_VERSION", raising=False)
    settings = load_settings()
    assert settings.stream_buffer_size == 3
    assert settings.anthropic_version == "2099-01-01"


def test_json_formatter_includes_extra():
    record = logging.LogRecord("fabric_core.test", logging.INFO, __file__, 1, "hello world", None, None)
    record.extra = {"session": "notes"}
    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["session"] == "notes"
    assert payload["ts"].endswith("Z")

    long_record = logging.LogRecord("fabric_core.test", logging.INFO, __file__, 1, "x" * 100, None, None)
    assert len(json.loads(JsonFormatter(redact=True).format(long_record))["msg"]) == 64
