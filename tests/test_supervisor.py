"""Tests for the engine process supervisor."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from thinkrelay.config import RelayConfig
from thinkrelay.supervisor import (
    EngineProcess,
    build_engine_args,
    build_engine_env,
    build_file_structure,
    start_engine,
    wait_until_ready,
)


@pytest.fixture
def config(tmp_path):
    return RelayConfig(
        data_dir=str(tmp_path / "data"),
        engine_url="http://127.0.0.1:11500",
        engine_binary="/usr/local/bin/ollama",
    )


def test_build_file_structure(tmp_path):
    models_dir, logs_dir = build_file_structure(tmp_path / "data")
    assert models_dir.is_dir()
    assert logs_dir.is_dir()
    assert models_dir == tmp_path / "data" / "models"

    # Idempotent
    build_file_structure(tmp_path / "data")


def test_engine_args_and_env(config, tmp_path):
    assert build_engine_args(config) == ["/usr/local/bin/ollama", "serve"]

    env = build_engine_env(config, tmp_path / "models")
    assert env["OLLAMA_MODELS"] == str(tmp_path / "models")
    assert env["OLLAMA_HOST"] == "127.0.0.1:11500"


def test_start_engine_requires_data_dir():
    with pytest.raises(ValueError, match="DATA_DIR_PATH"):
        start_engine(RelayConfig(data_dir=None))


def test_start_engine_spawns_with_log(config, tmp_path):
    fake_proc = MagicMock(pid=4242)
    with patch("thinkrelay.supervisor.subprocess.Popen", return_value=fake_proc) as popen:
        engine = start_engine(config)

    args, kwargs = popen.call_args
    assert args[0] == ["/usr/local/bin/ollama", "serve"]
    assert kwargs["stderr"] == subprocess.STDOUT
    assert kwargs["env"]["OLLAMA_MODELS"] == str(tmp_path / "data" / "models")
    assert engine.pid == 4242
    assert engine.log_path.parent == tmp_path / "data" / "logs"
    assert engine.log_path.name.startswith("ollama-")
    assert engine.log_path.exists()
    # Parent-side handle must be closed after spawning
    assert kwargs["stdout"].closed


def test_start_engine_missing_binary(config):
    with patch("thinkrelay.supervisor.subprocess.Popen", side_effect=FileNotFoundError("ollama")):
        with pytest.raises(RuntimeError, match="Failed to start Ollama serve"):
            start_engine(config)


def test_stop_terminates(tmp_path):
    proc = MagicMock()
    proc.poll.return_value = None
    proc.wait.return_value = 0
    engine = EngineProcess(proc=proc, log_path=tmp_path / "x.log")

    assert engine.stop(timeout=1) == 0
    proc.terminate.assert_called_once()
    proc.kill.assert_not_called()


def test_stop_escalates_to_kill(tmp_path):
    proc = MagicMock()
    proc.poll.return_value = None
    proc.wait.side_effect = [subprocess.TimeoutExpired("ollama", 1), -9]
    engine = EngineProcess(proc=proc, log_path=tmp_path / "x.log")

    assert engine.stop(timeout=1) == -9
    proc.kill.assert_called_once()


def test_stop_already_exited(tmp_path):
    proc = MagicMock(returncode=1)
    proc.poll.return_value = 1
    engine = EngineProcess(proc=proc, log_path=tmp_path / "x.log")

    assert engine.stop() == 1
    proc.terminate.assert_not_called()


def test_wait_until_ready():
    health = iter([{"alive": False}, {"alive": True}])
    with patch("thinkrelay.supervisor.check_engine_health", side_effect=lambda url: next(health)), \
         patch("thinkrelay.supervisor.time.sleep"):
        assert wait_until_ready("http://127.0.0.1:11434", timeout=5) is True


def test_wait_until_ready_engine_exited(tmp_path):
    proc = MagicMock(returncode=1)
    proc.poll.return_value = 1
    engine = EngineProcess(proc=proc, log_path=tmp_path / "x.log")
    with patch("thinkrelay.supervisor.check_engine_health", return_value={"alive": False}):
        assert wait_until_ready("http://127.0.0.1:11434", timeout=5, process=engine) is False
