"""Shared test configuration and fixtures."""

import logging

import pytest

from discpipe.cli import cleanup_logging
from discpipe.config import DiscPipeConfig


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


@pytest.fixture(autouse=True)
def clear_credential_env(monkeypatch):
    """Keep host credentials out of the tests."""
    for name in ("DISCPIPE_AI_API_KEY", "OMDB_API_KEY", "TMDB_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return DiscPipeConfig(
        raw_dir=tmp_path / "raw",
        transcode_dir=tmp_path / "transcode",
        completed_dir=tmp_path / "completed",
        log_dir=tmp_path / "logs",
        ai_api_key="test-key",
    )


@pytest.fixture
def job_config(config):
    return config.snapshot()
