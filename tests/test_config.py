# tests/test_config.py
"""
Tests for settings, logging setup and the exception hierarchy.
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from guided_dialogue.core.config import (
    BUNDLED_FLOWS_PATH,
    Settings,
    settings,
    validate_required_settings,
)
from guided_dialogue.core.exceptions import (
    DialogueBaseException,
    FlowNotFoundError,
    SessionError,
    SessionNotFoundError,
    persistence_conflict,
    session_not_found,
    step_not_found,
)
from guided_dialogue.core.logging_config import setup_logging


@pytest.mark.unit
class TestSettings:

    def test_defaults(self, monkeypatch):
        for key in ("REJECT_CYCLIC_FLOWS", "SESSION_TTL_SECONDS", "FLOW_DEFINITIONS_PATH"):
            monkeypatch.delenv(key, raising=False)

        config = Settings(_env_file=None)

        assert config.REJECT_CYCLIC_FLOWS is False
        assert config.SESSION_TTL_SECONDS == 7 * 24 * 3600
        assert Path(config.FLOW_DEFINITIONS_PATH) == BUNDLED_FLOWS_PATH

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("REJECT_CYCLIC_FLOWS", "true")
        monkeypatch.setenv("session_key_prefix", "custom:")

        config = Settings(_env_file=None)

        assert config.REJECT_CYCLIC_FLOWS is True
        assert config.SESSION_KEY_PREFIX == "custom:"

    def test_validate_required_settings(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "REDIS_URL", None)
        monkeypatch.setattr(settings, "FLOW_DEFINITIONS_PATH", str(BUNDLED_FLOWS_PATH))

        with caplog.at_level(logging.WARNING):
            assert validate_required_settings() is False
        assert "REDIS_URL" in caplog.text

        monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
        assert validate_required_settings() is True


@pytest.mark.unit
class TestLogging:

    @pytest.fixture
    def clean_root(self):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        yield root
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers = handlers
        root.setLevel(level)

    def test_setup_logging_is_idempotent(self, tmp_path, monkeypatch, clean_root):
        monkeypatch.setenv("LOG_DIR", str(tmp_path))
        monkeypatch.setenv("LOG_LEVEL", "debug")

        setup_logging()
        setup_logging()

        log_file = str((tmp_path / "dialogue.log").resolve())
        file_handlers = [
            h for h in clean_root.handlers
            if isinstance(h, RotatingFileHandler) and h.baseFilename == log_file
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 5 * 1024 * 1024
        assert clean_root.level == logging.DEBUG
        assert logging.getLogger("redis").level == logging.WARNING

    def test_explicit_arguments_win(self, tmp_path, monkeypatch, clean_root):
        monkeypatch.setenv("LOG_LEVEL", "debug")

        setup_logging(level="warning", log_dir=str(tmp_path / "custom"))

        assert clean_root.level == logging.WARNING
        assert (tmp_path / "custom" / "dialogue.log").exists()

    def test_debug_setting_lowers_default_level(self, tmp_path, monkeypatch, clean_root):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setattr(settings, "DEBUG", True)

        setup_logging(log_dir=str(tmp_path))

        assert clean_root.level == logging.DEBUG


@pytest.mark.unit
class TestExceptions:

    def test_details_in_str(self):
        error = step_not_found("ghost", "contact")
        assert str(error) == (
            "Step 'ghost' not found in flow 'contact' | Details: {'step_id': 'ghost', 'flow_id': 'contact'}"
        )

    def test_hierarchy(self):
        assert issubclass(SessionNotFoundError, SessionError)
        assert isinstance(session_not_found("x"), DialogueBaseException)
        assert FlowNotFoundError("plain").details == {}

    def test_persistence_conflict(self):
        error = persistence_conflict("s-1", 2, 3)

        assert error.details == {"session_id": "s-1", "expected_version": 2, "actual_version": 3}
