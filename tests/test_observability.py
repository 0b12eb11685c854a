"""
Tests for logging configuration.
"""

import logging
from pathlib import Path

import pytest

from provisioner.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_LEVEL,
    level_number,
    resolve_level,
    setup_from_env,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLevel:
    def test_flags_win(self):
        env = {ENV_LOG_LEVEL: "ERROR"}
        assert resolve_level(debug=True, verbose=True, env=env) == "DEBUG"
        assert resolve_level(verbose=True, quiet=True, env=env) == "INFO"
        assert resolve_level(quiet=True, env={}) == "ERROR"

    def test_env_fallback(self):
        assert resolve_level(env={ENV_LOG_LEVEL: "INFO"}) == "INFO"

    def test_default(self):
        assert resolve_level(env={}) == "WARNING"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging(level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back(self):
        setup_logging(level="LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "provision.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2

        logging.getLogger("provisioner.test").debug("apt-get update")
        for handler in root.handlers:
            handler.flush()
        assert "apt-get update" in log_file.read_text()

    def test_setup_from_env(self, tmp_path: Path, monkeypatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv(ENV_LOG_FILE, str(log_file))
        setup_from_env("ERROR")
        assert any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)

    def test_debug_file_level(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv(ENV_LOG_FILE, str(tmp_path / "debug.log"))
        monkeypatch.delenv("PROVISION_LOG_FILE_LEVEL", raising=False)
        setup_from_env("WARNING", debug=True)
        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert file_handlers[0].level == logging.DEBUG


class TestLevelNumber:
    def test_names(self):
        assert level_number("debug") == logging.DEBUG
        assert level_number("ERROR") == logging.ERROR

    def test_unknown_or_empty(self):
        assert level_number("LOUD") == logging.WARNING
        assert level_number(None) == logging.WARNING
