"""Shared test fixtures for the Stepwise test suite."""

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from stepwise.config import get_settings
from stepwise.config.settings import set_toml_config


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory for testing."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def mock_toml_files(test_config_dir: Path) -> Callable[[dict[str, str]], None]:
    """Factory fixture writing TOML files into the test config directory.

    Usage:
        def test_something(mock_toml_files):
            mock_toml_files({"default.toml": "[queue]\\nbatch_size = 4"})
    """

    def _create_toml_files(files: dict[str, str]) -> None:
        for filename, content in files.items():
            (test_config_dir / filename).write_text(content)

    return _create_toml_files


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Hide STEPWISE_* variables from the host and reset cached settings."""
    for key in list(os.environ):
        if key.upper().startswith("STEPWISE_"):
            monkeypatch.delenv(key)

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    set_toml_config({})
