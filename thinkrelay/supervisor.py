"""Supervisor: bootstraps the data directory and runs ``ollama serve``."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx

from .config import RelayConfig

logger = logging.getLogger("thinkrelay.supervisor")


def build_file_structure(data_dir: str | Path) -> tuple[Path, Path]:
    """Create ``<data_dir>/models`` and ``<data_dir>/logs``.

    Returns (models_dir, logs_dir).
    """
    root = Path(data_dir)
    models_dir = root / "models"
    logs_dir = root / "logs"

    logger.info("Building models directory...")
    models_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Building logs directory...")
    logs_dir.mkdir(parents=True, exist_ok=True)
    return models_dir, logs_dir


def build_engine_args(config: RelayConfig) -> list[str]:
    return [config.engine_binary, "serve"]


def build_engine_env(config: RelayConfig, models_dir: Path) -> dict[str, str]:
    """Environment for the engine: model storage and bind address."""
    env = dict(os.environ)
    env["OLLAMA_MODELS"] = str(models_dir)
    env["OLLAMA_HOST"] = urlparse(config.engine_url).netloc
    return env


@dataclass
class EngineProcess:
    proc: subprocess.Popen
    log_path: Path

    @property
    def pid(self) -> int:
        return self.proc.pid

    def running(self) -> bool:
        return self.proc.poll() is None

    def stop(self, timeout: float = 10.0) -> int | None:
        """Terminate the engine, escalating to SIGKILL after *timeout*.

        Returns the exit code, or None if the process could not be reaped.
        """
        if not self.running():
            return self.proc.returncode
        logger.info("Killing Ollama server (PID %d)...", self.proc.pid)
        self.proc.terminate()
        try:
            return self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Ollama did not exit within %.0fs, sending SIGKILL", timeout)
            self.proc.kill()
            try:
                return self.proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                return None


def start_engine(config: RelayConfig) -> EngineProcess:
    """Spawn ``ollama serve`` with output captured to a timestamped log file."""
    if not config.data_dir:
        raise ValueError(
            "'DATA_DIR_PATH' environment variable not set! "
            "It is required when spawning the engine."
        )
    models_dir, logs_dir = build_file_structure(config.data_dir)
    log_path = logs_dir / f"ollama-{int(time.time())}.log"

    logger.info("Starting Ollama serve with models directory '%s'...", models_dir)
    # The child keeps its own handle to the log file; the parent's copy is
    # closed right away.
    log_fh = open(log_path, "ab")
    try:
        proc = subprocess.Popen(
            build_engine_args(config),
            stdout=log_fh,
            stderr=subprocess.STDOUT,
            env=build_engine_env(config, models_dir),
        )
    except OSError as exc:
        raise RuntimeError(f"Failed to start Ollama serve: {exc}") from exc
    finally:
        log_fh.close()

    logger.info("Writing Ollama logs to %s", log_path)
    return EngineProcess(proc=proc, log_path=log_path)


def check_engine_health(engine_url: str, timeout: float = 2.0) -> dict:
    try:
        resp = httpx.get(f"{engine_url}/", timeout=timeout)
        return {"alive": resp.status_code == 200, "status": resp.text.strip()}
    except Exception as e:
        return {"alive": False, "error": str(e)}


def wait_until_ready(
    engine_url: str,
    timeout: float = 30.0,
    interval: float = 0.5,
    process: EngineProcess | None = None,
) -> bool:
    """Poll the engine until it answers, it exits, or *timeout* passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if check_engine_health(engine_url).get("alive"):
            return True
        if process is not None and not process.running():
            logger.error(
                "Ollama exited with code %s; see %s",
                process.proc.returncode, process.log_path,
            )
            return False
        time.sleep(interval)
    return check_engine_health(engine_url).get("alive", False)
