"""Tests for environment configuration."""

from pathlib import Path

from tthblock.config import Config, load_config, validate_config


def test_load_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setattr("tthblock.config.load_dotenv", lambda: None)
    monkeypatch.setenv("BLOCKLIST_DIR", str(tmp_path / "lists"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SYNC_RETRIES", "5")
    monkeypatch.setenv("SYNC_RETRY_DELAY", "0.5")
    monkeypatch.setenv("WATCH_ENABLED", "false")
    monkeypatch.setenv("AUTO_ENABLE_NEW_SOURCES", "False")
    monkeypatch.setenv("HEALTH_PORT", "9000")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = load_config()

    assert config.blocklist_dir == tmp_path / "lists"
    assert config.sync_retries == 5
    assert config.sync_retry_delay == 0.5
    assert config.watch_enabled is False
    assert config.auto_enable_new_sources is False
    assert config.health_port == 9000
    assert config.log_level == "DEBUG"
    assert config.sync_state_file == tmp_path / "data" / "sync_state.json"
    assert (tmp_path / "data").is_dir()


def test_validate_config_flags_bad_values(tmp_path):
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x", encoding="utf-8")
    config = Config(
        blocklist_dir=not_a_dir,
        data_dir=tmp_path / "data",
        sync_retries=0,
        sync_retry_delay=-1,
        fetch_timeout=0,
        log_level="LOUD",
    )

    errors = validate_config(config)

    assert "SYNC_RETRIES must be at least 1" in errors
    assert "SYNC_RETRY_DELAY must not be negative" in errors
    assert "FETCH_TIMEOUT must be at least 1 second" in errors
    assert any("is not a directory" in e for e in errors)
    assert any("LOG_LEVEL" in e for e in errors)


def test_validate_config_accepts_defaults(tmp_path):
    config = Config(blocklist_dir=tmp_path / "lists", data_dir=Path(tmp_path / "data"))
    assert validate_config(config) == []
