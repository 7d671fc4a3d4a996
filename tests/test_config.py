from __future__ import annotations

from pathlib import Path

from fryler.config import ensure_runtime_config, read_config_snapshot


def _clear_env(monkeypatch, tmp_path: Path) -> None:
    for name in (
        "FRYLER_HEARTBEAT_INTERVAL",
        "FRYLER_LOG_LEVEL",
        "FRYLER_CLAUDE_MODEL",
        "FRYLER_CLAUDE_MAX_TURNS",
        "FRYLER_CLAUDE_BINARY",
        "FRYLER_OUTBOX_DIR",
        "FRYLER_IDENTITY_DIR",
        "FRYLER_CONTAINER",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FRYLER_HOME", str(tmp_path / "home"))


def test_missing_file_uses_defaults(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    snapshot = read_config_snapshot(tmp_path / "nope.toml")

    assert snapshot.valid is True
    assert snapshot.exists is False
    assert snapshot.warnings
    config = snapshot.effective_config
    assert config.heartbeat.interval_seconds == 60
    assert config.claude.model == "sonnet"
    assert config.claude.max_turns == 25
    assert config.outbox.settle_ms == 50
    assert config.paths.home_path == tmp_path / "home"
    assert config.paths.db_path == tmp_path / "home" / "fryler.db"
    assert config.paths.identity_dir == str(tmp_path / "home")
    assert config.paths.outbox_dir == str(tmp_path / "home" / "data" / "outbox")


def test_container_outbox_location(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    monkeypatch.setenv("FRYLER_CONTAINER", "1")
    config = read_config_snapshot(tmp_path / "nope.toml").effective_config
    assert config.paths.outbox_dir == str(tmp_path / "home" / "outbox")


def test_file_env_and_cli_merge_in_order(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "config.toml"
    path.write_text(
        '[heartbeat]\ninterval_seconds = 30\n\n[claude]\nmodel = "haiku"\nmax_turns = 10\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("FRYLER_CLAUDE_MODEL", "opus")

    snapshot = read_config_snapshot(path, cli_overrides={"claude.max_turns": "7"})

    assert snapshot.valid is True
    config = snapshot.effective_config
    assert config.heartbeat.interval_seconds == 30
    assert config.claude.model == "opus"
    assert config.claude.max_turns == 7


def test_flat_keys_are_accepted(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "config.toml"
    path.write_text('heartbeat_interval_seconds = 15\nclaude_model = "haiku"\nlog_level = "debug"\n', encoding="utf-8")

    config = read_config_snapshot(path).effective_config

    assert config.heartbeat.interval_seconds == 15
    assert config.claude.model == "haiku"
    assert config.logging.level == "debug"


def test_invalid_values_fall_back_to_bootstrap(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "config.toml"
    path.write_text('bogus = 1\n[claude]\nmax_turns = 0\n[logging]\nlevel = "loud"\n', encoding="utf-8")

    snapshot = read_config_snapshot(path)

    assert snapshot.valid is False
    assert snapshot.effective_config is None
    assert any("Unknown top-level keys" in issue for issue in snapshot.issues)
    runtime = ensure_runtime_config(snapshot)
    assert runtime.claude.max_turns == 25


def test_field_validation_issues(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "config.toml"
    path.write_text('[claude]\nmax_turns = 0\n[logging]\nlevel = "loud"\n[heartbeat]\ninterval_seconds = -1\n', encoding="utf-8")

    issues = read_config_snapshot(path).issues

    assert "claude.max_turns must be a positive integer" in issues
    assert "logging.level must be debug|info|warn|error" in issues
    assert "heartbeat.interval_seconds must be a non-negative integer" in issues


def test_unparseable_toml_is_invalid(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "config.toml"
    path.write_text("[heartbeat\n", encoding="utf-8")

    snapshot = read_config_snapshot(path)

    assert snapshot.valid is False
    assert snapshot.issues[0].startswith("Failed to parse config TOML")


def test_env_interval_override(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch, tmp_path)
    monkeypatch.setenv("FRYLER_HEARTBEAT_INTERVAL", "5")
    config = read_config_snapshot(tmp_path / "nope.toml").effective_config
    assert config.heartbeat.interval_seconds == 5
