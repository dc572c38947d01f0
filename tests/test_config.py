"""Tests for settings and logging setup."""

import io
import logging
from datetime import timedelta
from pathlib import Path

import pytest

from spend_assistant import logging_setup
from spend_assistant.config import DEFAULT_DB_PATH, Settings, parse_duration


class TestParseDuration:
    """Test duration strings from the environment."""

    @pytest.mark.parametrize("value,expected", [
        ("24h", timedelta(hours=24)),
        ("30m", timedelta(minutes=30)),
        ("90s", timedelta(seconds=90)),
        ("500ms", timedelta(milliseconds=500)),
        ("45", timedelta(seconds=45)),
        (" 2H ", timedelta(hours=2)),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value, timedelta(0)) == expected

    @pytest.mark.parametrize("value", [None, "", "forever", "1d", "-5s"])
    def test_invalid_falls_back(self, value):
        assert parse_duration(value, timedelta(seconds=7)) == timedelta(seconds=7)


class TestSettings:
    """Test Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.db_path == DEFAULT_DB_PATH
        assert settings.user_id == "default"
        assert settings.gemini_model == "gemini-2.5-flash"
        assert settings.ai_ttl == timedelta(hours=24)
        assert settings.ai_model_timeout == timedelta(seconds=60)
        assert settings.ai_history_limit == 8
        assert settings.plaid_environment == "sandbox"
        assert settings.gemini_api_key is None

    def test_from_env(self):
        settings = Settings.from_env({
            "SPEND_ASSISTANT_DB_PATH": "/tmp/spend.db",
            "SPEND_ASSISTANT_USER_ID": "alice",
            "GEMINI_API_KEY": "key",
            "GEMINI_MODEL": "gemini-2.5-pro",
            "AI_TTL": "2h",
            "AI_MODEL_TIMEOUT": "15s",
            "AI_HISTORY_LIMIT": "4",
            "PLAID_CLIENT_ID": "client",
            "PLAID_SECRET": "secret",
            "PLAID_ENVIRONMENT": "production",
        })

        assert settings.db_path == Path("/tmp/spend.db")
        assert settings.user_id == "alice"
        assert settings.gemini_api_key == "key"
        assert settings.gemini_model == "gemini-2.5-pro"
        assert settings.ai_ttl == timedelta(hours=2)
        assert settings.ai_model_timeout == timedelta(seconds=15)
        assert settings.ai_history_limit == 4
        assert (settings.plaid_client_id, settings.plaid_secret) == ("client", "secret")
        assert settings.plaid_environment == "production"

    def test_bad_history_limit_uses_default(self):
        assert Settings.from_env({"AI_HISTORY_LIMIT": "lots"}).ai_history_limit == 8


class TestLogging:
    """Test package logging configuration."""

    @pytest.fixture
    def fresh_logging(self, monkeypatch):
        monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
        logger = logging.getLogger("spend_assistant")
        saved = (list(logger.handlers), logger.level, logger.propagate)
        yield logger
        logger.handlers[:] = saved[0]
        logger.setLevel(saved[1])
        logger.propagate = saved[2]

    def test_parse_level(self, monkeypatch):
        monkeypatch.delenv("SPEND_ASSISTANT_LOG_LEVEL", raising=False)
        assert logging_setup._parse_level("debug") == logging.DEBUG
        assert logging_setup._parse_level(logging.WARNING) == logging.WARNING
        assert logging_setup._parse_level("nonsense") == logging.INFO

    def test_parse_level_from_env(self, monkeypatch):
        monkeypatch.setenv("SPEND_ASSISTANT_LOG_LEVEL", "ERROR")
        assert logging_setup._parse_level(None) == logging.ERROR

    def test_configure_once(self, fresh_logging):
        stream = io.StringIO()
        logging_setup.configure_logging("INFO", fmt="%(name)s %(message)s", stream=stream)
        logging_setup.configure_logging("DEBUG", stream=io.StringIO())

        logging_setup.get_logger("spend_assistant.tools").info("executing tool %s", "get_top_n")

        assert stream.getvalue() == "spend_assistant.tools executing tool get_top_n\n"
        assert fresh_logging.level == logging.INFO
        assert fresh_logging.propagate is False
        assert not any(isinstance(h, logging.NullHandler) for h in fresh_logging.handlers)
