"""Configuration loading and validation."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class PathsSection:
    home: str
    identity_dir: str
    outbox_dir: str

    @property
    def home_path(self) -> Path:
        return Path(self.home).expanduser()

    @property
    def db_path(self) -> Path:
        return self.home_path / "fryler.db"

    @property
    def pid_path(self) -> Path:
        return self.home_path / "fryler.pid"

    @property
    def log_dir(self) -> Path:
        return self.home_path / "logs"


@dataclass(slots=True)
class HeartbeatSection:
    interval_seconds: int


@dataclass(slots=True)
class LoggingSection:
    level: str


@dataclass(slots=True)
class ClaudeSection:
    binary: str
    model: str
    max_turns: int
    timeout_seconds: int | None = None


@dataclass(slots=True)
class OutboxSection:
    settle_ms: int
    say_binary: str


@dataclass(slots=True)
class ContainerSection:
    image: str
    name: str


@dataclass(slots=True)
class AppConfig:
    paths: PathsSection
    heartbeat: HeartbeatSection
    logging: LoggingSection
    claude: ClaudeSection
    outbox: OutboxSection
    container: ContainerSection = field(
        default_factory=lambda: ContainerSection(image="fry-claude:latest", name="fryler-runtime")
    )


@dataclass(slots=True)
class ConfigSnapshot:
    path: str
    exists: bool
    valid: bool
    issues: list[str]
    warnings: list[str]
    effective_config: AppConfig | None
    effective_raw: dict[str, Any] | None = None


_LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}
_SECTIONS = {"paths", "heartbeat", "logging", "claude", "outbox", "container"}

# Flat keys accepted at the top level of config.toml.
_FLAT_KEYS = {
    "heartbeat_interval_seconds": "heartbeat.interval_seconds",
    "log_level": "logging.level",
    "claude_model": "claude.model",
    "claude_max_turns": "claude.max_turns",
    "claude_binary": "claude.binary",
    "container_image": "container.image",
    "container_name": "container.name",
}


def fryler_home() -> Path:
    return Path(os.getenv("FRYLER_HOME") or Path.home() / ".fryler")


def default_config_path() -> Path:
    return fryler_home() / "config.toml"


def _default_outbox_dir(home: str) -> str:
    if os.getenv("FRYLER_CONTAINER") == "1":
        return str(Path(home) / "outbox")
    return str(Path(home) / "data" / "outbox")


def default_raw() -> dict[str, Any]:
    home = str(fryler_home())
    return {
        "paths": {"home": home, "identity_dir": "", "outbox_dir": ""},
        "heartbeat": {"interval_seconds": 60},
        "logging": {"level": "info"},
        "claude": {"binary": "claude", "model": "sonnet", "max_turns": 25, "timeout_seconds": None},
        "outbox": {"settle_ms": 50, "say_binary": "say"},
        "container": {"image": "fry-claude:latest", "name": "fryler-runtime"},
    }


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_update(out[key], value)
        else:
            out[key] = value
    return out


def _parse_override_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_path(target: dict[str, Any], dotted: str, value: Any) -> None:
    parts = [p for p in dotted.split(".") if p]
    node: dict[str, Any] = target
    for part in parts[:-1]:
        current = node.get(part)
        if not isinstance(current, dict):
            current = {}
            node[part] = current
        node = current
    if parts:
        node[parts[-1]] = value


def _unflatten(file_raw: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in file_raw.items():
        dotted = _FLAT_KEYS.get(key)
        if dotted is not None:
            _set_path(out, dotted, value)
        else:
            out[key] = value
    return out


def _env_overrides() -> dict[str, Any]:
    mapping = {
        "FRYLER_HOME": "paths.home",
        "FRYLER_IDENTITY_DIR": "paths.identity_dir",
        "FRYLER_OUTBOX_DIR": "paths.outbox_dir",
        "FRYLER_HEARTBEAT_INTERVAL": "heartbeat.interval_seconds",
        "FRYLER_LOG_LEVEL": "logging.level",
        "FRYLER_CLAUDE_BINARY": "claude.binary",
        "FRYLER_CLAUDE_MODEL": "claude.model",
        "FRYLER_CLAUDE_MAX_TURNS": "claude.max_turns",
    }
    out: dict[str, Any] = {}
    for env_name, cfg_path in mapping.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        if cfg_path.startswith("paths.") or cfg_path in {"claude.binary", "claude.model"}:
            _set_path(out, cfg_path, raw)
        else:
            _set_path(out, cfg_path, _parse_override_value(raw))
    return out


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate(raw: dict[str, Any]) -> tuple[list[str], list[str]]:
    issues: list[str] = []
    warnings: list[str] = []
    unknown = set(raw.keys()) - _SECTIONS
    if unknown:
        issues.append(f"Unknown top-level keys: {', '.join(sorted(unknown))}")
    for key in sorted(_SECTIONS):
        if not isinstance(raw.get(key), dict):
            issues.append(f"{key} must be a table")
    if issues:
        return issues, warnings

    interval = raw["heartbeat"].get("interval_seconds")
    if not _is_int(interval) or interval < 0:
        issues.append("heartbeat.interval_seconds must be a non-negative integer")
    elif 0 < interval < 5:
        warnings.append("heartbeat.interval_seconds below 5 will keep the AI subprocess busy")

    level = raw["logging"].get("level")
    if not isinstance(level, str) or level.strip().lower() not in _LOG_LEVELS:
        issues.append("logging.level must be debug|info|warn|error")

    claude = raw["claude"]
    if not str(claude.get("binary", "")).strip():
        issues.append("claude.binary is required and cannot be empty")
    if not str(claude.get("model", "")).strip():
        issues.append("claude.model is required and cannot be empty")
    max_turns = claude.get("max_turns")
    if not _is_int(max_turns) or max_turns < 1:
        issues.append("claude.max_turns must be a positive integer")
    timeout = claude.get("timeout_seconds")
    if timeout is not None and (not _is_int(timeout) or timeout < 1):
        issues.append("claude.timeout_seconds must be a positive integer when provided")

    settle_ms = raw["outbox"].get("settle_ms")
    if not _is_int(settle_ms) or settle_ms < 0:
        issues.append("outbox.settle_ms must be a non-negative integer")
    if not str(raw["outbox"].get("say_binary", "")).strip():
        issues.append("outbox.say_binary cannot be empty")

    if not str(raw["paths"].get("home", "")).strip():
        issues.append("paths.home cannot be empty")
    return issues, warnings


def _to_config(raw: dict[str, Any]) -> AppConfig:
    paths = raw["paths"]
    home = str(paths["home"])
    timeout = raw["claude"].get("timeout_seconds")
    return AppConfig(
        paths=PathsSection(
            home=home,
            identity_dir=str(paths.get("identity_dir") or home),
            outbox_dir=str(paths.get("outbox_dir") or _default_outbox_dir(home)),
        ),
        heartbeat=HeartbeatSection(interval_seconds=int(raw["heartbeat"]["interval_seconds"])),
        logging=LoggingSection(level=str(raw["logging"]["level"]).strip().lower()),
        claude=ClaudeSection(
            binary=str(raw["claude"]["binary"]),
            model=str(raw["claude"]["model"]),
            max_turns=int(raw["claude"]["max_turns"]),
            timeout_seconds=int(timeout) if timeout is not None else None,
        ),
        outbox=OutboxSection(
            settle_ms=int(raw["outbox"]["settle_ms"]),
            say_binary=str(raw["outbox"]["say_binary"]),
        ),
        container=ContainerSection(
            image=str(raw["container"]["image"]),
            name=str(raw["container"]["name"]),
        ),
    )


def _invalid(path: Path, exists: bool, issues: list[str], warnings: list[str] | None = None) -> ConfigSnapshot:
    return ConfigSnapshot(
        path=str(path),
        exists=exists,
        valid=False,
        issues=issues,
        warnings=warnings or [],
        effective_config=None,
        effective_raw=None,
    )


def read_config_snapshot(
    config_path: str | Path | None = None,
    cli_overrides: dict[str, str] | None = None,
) -> ConfigSnapshot:
    """Merge defaults, config.toml, environment and CLI overrides, then validate."""
    path = Path(config_path).expanduser() if config_path is not None else default_config_path()
    warnings: list[str] = []
    merged = default_raw()
    exists = path.exists()
    if exists:
        try:
            file_raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            return _invalid(path, True, [f"Failed to parse config TOML: {exc}"])
        merged = _deep_update(merged, _unflatten(file_raw))
    else:
        warnings.append(f"Config file does not exist, using defaults: {path}")
    merged = _deep_update(merged, _env_overrides())
    if cli_overrides:
        cli_tree: dict[str, Any] = {}
        for key, value in cli_overrides.items():
            _set_path(cli_tree, key, _parse_override_value(value))
        merged = _deep_update(merged, cli_tree)

    issues, validation_warnings = _validate(merged)
    warnings.extend(validation_warnings)
    if issues:
        return _invalid(path, exists, issues, warnings)
    return ConfigSnapshot(
        path=str(path),
        exists=exists,
        valid=True,
        issues=[],
        warnings=warnings,
        effective_config=_to_config(merged),
        effective_raw=merged,
    )


def _bootstrap_config() -> AppConfig:
    """Runtime-safe config used when the file config is invalid."""
    return _to_config(default_raw())


def ensure_runtime_config(snapshot: ConfigSnapshot) -> AppConfig:
    """Return valid runtime config; fall back to the bootstrap config when the snapshot is invalid."""
    if snapshot.effective_config is not None:
        return snapshot.effective_config
    return _bootstrap_config()
