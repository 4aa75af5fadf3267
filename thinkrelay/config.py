"""Relay configuration loader."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import yaml

logger = logging.getLogger("thinkrelay.config")


DEFAULT_CONFIG = Path.home() / ".thinkrelay" / "config.yaml"
DEFAULT_MODEL = "deepseek-r1:8b"
DEFAULT_PORT = 5776
DEFAULT_ENGINE_URL = "http://127.0.0.1:11434"
DEFAULT_HISTORY_LIMIT = 100


@dataclass
class RelayConfig:
    model: str = DEFAULT_MODEL
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    engine_url: str = DEFAULT_ENGINE_URL
    #: Root for ``models/`` and ``logs/``.  Only needed when spawning the engine.
    data_dir: str | None = None
    spawn_engine: bool = True
    engine_binary: str = "ollama"
    #: Maximum turns kept per session; ``0`` keeps everything.  Trimming never
    #: leaves an Assistant turn first, so an odd limit keeps one turn fewer.
    history_limit: int = DEFAULT_HISTORY_LIMIT
    #: Seconds a single turn may take before the session gives up on it.
    turn_timeout: float | None = None
    #: Emit fragments inside a ``<think>`` span as Token events.  They are
    #: never stored in history either way.
    stream_thinking: bool = True
    public_dir: str | None = "public"

    @property
    def models_dir(self) -> Path | None:
        return Path(self.data_dir) / "models" if self.data_dir else None

    @property
    def logs_dir(self) -> Path | None:
        return Path(self.data_dir) / "logs" if self.data_dir else None


def parse_bool(raw: str, name: str) -> bool:
    """Parse a boolean environment value strictly (``true``/``false`` only)."""
    value = raw.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(f"Failed to parse {name!r}: expected 'true' or 'false', got {raw!r}")


def validate_engine_url(url: str) -> str:
    """Reject engine URLs that are not plain http(s) with a host."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Engine URL must use http or https, got {url!r}")
    if not parsed.hostname:
        raise ValueError(f"Engine URL has no host: {url!r}")
    return url.rstrip("/")


def _normalize_engine_url(raw: str) -> str:
    # OLLAMA_HOST is commonly set as a bare host:port
    if "://" not in raw:
        raw = f"http://{raw}"
    return validate_engine_url(raw)


def _optional_float(raw: object, name: str) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name}: {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _as_bool(raw: object, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return parse_bool(raw, name)
    raise ValueError(f"{name} must be true or false, got {raw!r}")


def _as_int(raw: object, name: str) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name}: {raw!r}") from exc


def load_config_from_env(base: RelayConfig | None = None) -> RelayConfig:
    """Overlay environment variables on *base* (or the defaults)."""
    cfg = base or RelayConfig()
    env = os.environ

    model = env.get("MODEL_NAME")
    if model:
        cfg.model = model
    elif base is None:
        logger.warning(
            "MODEL_NAME environment variable not set, defaulting to %r", DEFAULT_MODEL
        )

    if "THINKRELAY_HOST" in env:
        cfg.host = env["THINKRELAY_HOST"]
    if "PORT" in env:
        cfg.port = int(env["PORT"])
    if env.get("OLLAMA_HOST"):
        cfg.engine_url = _normalize_engine_url(env["OLLAMA_HOST"])
    if env.get("DATA_DIR_PATH"):
        cfg.data_dir = env["DATA_DIR_PATH"]
    if "SPAWN_OLLAMA" in env:
        cfg.spawn_engine = parse_bool(env["SPAWN_OLLAMA"], "SPAWN_OLLAMA")
    if env.get("OLLAMA_BINARY"):
        cfg.engine_binary = env["OLLAMA_BINARY"]
    if "THINKRELAY_HISTORY_LIMIT" in env:
        cfg.history_limit = int(env["THINKRELAY_HISTORY_LIMIT"])
    if "THINKRELAY_TURN_TIMEOUT" in env:
        cfg.turn_timeout = _optional_float(
            env["THINKRELAY_TURN_TIMEOUT"], "THINKRELAY_TURN_TIMEOUT"
        )
    if "THINKRELAY_STREAM_THINKING" in env:
        cfg.stream_thinking = parse_bool(
            env["THINKRELAY_STREAM_THINKING"], "THINKRELAY_STREAM_THINKING"
        )
    if "THINKRELAY_PUBLIC_DIR" in env:
        cfg.public_dir = env["THINKRELAY_PUBLIC_DIR"] or None

    if cfg.history_limit < 0:
        raise ValueError(f"history_limit must be >= 0, got {cfg.history_limit}")
    return cfg


def load_config(path: str | Path | None = None) -> RelayConfig:
    """Load relay config from YAML, then apply environment overrides.

    A missing config file is not an error: the relay runs from environment
    variables and defaults alone.
    """
    config_path = Path(path) if path else Path(
        os.environ.get("THINKRELAY_CONFIG", DEFAULT_CONFIG)
    )

    if not config_path.exists():
        if path:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return load_config_from_env()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    r = raw.get("relay", {})
    engine = raw.get("engine", {})

    cfg = RelayConfig(
        model=r.get("model", DEFAULT_MODEL),
        host=r.get("host", "0.0.0.0"),
        port=_as_int(r.get("port", DEFAULT_PORT), "relay.port"),
        engine_url=validate_engine_url(engine.get("url", DEFAULT_ENGINE_URL)),
        data_dir=engine.get("data_dir"),
        spawn_engine=_as_bool(engine.get("spawn", True), "engine.spawn"),
        engine_binary=engine.get("binary", "ollama"),
        history_limit=_as_int(
            r.get("history_limit", DEFAULT_HISTORY_LIMIT), "relay.history_limit"
        ),
        turn_timeout=_optional_float(r.get("turn_timeout"), "turn_timeout"),
        stream_thinking=_as_bool(
            r.get("stream_thinking", True), "relay.stream_thinking"
        ),
        public_dir=r.get("public_dir", "public"),
    )
    logger.debug("Loaded config from %s", config_path)

    # Environment values win so deployments can override a checked-in file.
    return load_config_from_env(cfg)
