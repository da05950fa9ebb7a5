#!/usr/bin/env python3
"""
Test: Settings and Logging
Purpose: Verify environment configuration and structlog setup

Tests:
- SWARM_* environment overrides
- OPENAI_API_KEY alias
- Invalid values are rejected
- configure_logging levels and renderers
"""

import asyncio
import os
import sys

import structlog
from pydantic import ValidationError

from fixtures import (
    run_tests,
    assert_equal, assert_true, assert_raises
)

from agent_swarm.config.logging import configure_logging, get_logger
from agent_swarm.config.settings import Settings


class environ:
    """Temporarily set environment variables"""

    def __init__(self, **values):
        self.values = values
        self.saved = {}

    def __enter__(self):
        for key, value in self.values.items():
            self.saved[key] = os.environ.get(key)
            os.environ[key] = value
        return self

    def __exit__(self, *exc):
        for key, value in self.saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


async def test_environment_overrides():
    """Test SWARM_* variables override defaults"""
    with environ(SWARM_DEFAULT_MAX_TURNS="7", SWARM_RETURN_TO_QUEEN="true", SWARM_DEFAULT_MODEL="gpt-test"):
        loaded = Settings(_env_file=None)

    assert_equal(loaded.default_max_turns, 7)
    assert_true(loaded.return_to_queen, "Boolean parsed from env")
    assert_equal(loaded.default_model, "gpt-test")
    assert_equal(Settings(_env_file=None).default_max_turns, 100, "Defaults restored")


async def test_api_key_alias():
    """Test the OpenAI key is read from OPENAI_API_KEY"""
    with environ(OPENAI_API_KEY="sk-test"):
        loaded = Settings(_env_file=None)

    assert_equal(loaded.openai_api_key, "sk-test")


async def test_invalid_values():
    """Test out-of-range and malformed values are rejected"""
    assert_raises(ValidationError, Settings, _env_file=None, default_max_turns=0)
    assert_raises(ValidationError, Settings, _env_file=None, context_parameter_name="not an identifier")

    with environ(SWARM_DEFAULT_MAX_TURNS="many"):
        assert_raises(ValidationError, Settings, _env_file=None)


async def test_configure_logging():
    """Test level validation and bound loggers"""
    assert_raises(ValueError, configure_logging, "chatty")

    try:
        configure_logging("debug", json=False)
        logger = get_logger(swarm="test")
        logger.debug("logging_configured", check=True)
        assert_equal(structlog.get_config()["logger_factory"].__class__, structlog.PrintLoggerFactory)

        configure_logging("warning")
        get_logger(swarm="test").info("filtered_out")
    finally:
        structlog.reset_defaults()


async def main():
    """Run all settings tests"""
    return await run_tests("Settings and Logging Tests", [
        ("Environment overrides", test_environment_overrides),
        ("API key alias", test_api_key_alias),
        ("Invalid values", test_invalid_values),
        ("configure_logging", test_configure_logging),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
